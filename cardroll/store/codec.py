"""
Session codec - JSON documents for the store.

Sessions are dataclasses in the engine and pydantic documents at rest.
The phase is a discriminated union keyed on "name", so a stored
document can only hold the fields valid for its phase.
"""

from __future__ import annotations
from dataclasses import asdict
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..engine_core.state import (
    Session, Player, Card, Commitment, LeaderLease, PhaseName,
    WaitingPhase, CommitPhase, RollingPhase, ResolvePhase, EndedPhase, FailedPhase,
)


class CardDoc(BaseModel):
    value: int
    burned: bool = False


class PlayerDoc(BaseModel):
    player_id: str
    display_name: str
    ordinal: int
    avatar_ref: Optional[str] = None
    hand: list[CardDoc] = Field(default_factory=list)
    credits: int = 0
    first_correct_round: Optional[int] = None
    connected: bool = True


class CommitmentDoc(BaseModel):
    skip: bool = False
    selected_value: Optional[int] = None


class LeaseDoc(BaseModel):
    leader_id: Optional[str] = None
    expires_at: float


class WaitingDoc(BaseModel):
    name: Literal["waiting"] = "waiting"
    start_deadline: float


class CommitDoc(BaseModel):
    name: Literal["commit"] = "commit"
    commit_deadline: float
    recovered: bool = False
    last_failure: Optional[str] = None


class RollingDoc(BaseModel):
    name: Literal["rolling"] = "rolling"
    commit_deadline: float
    round_id: int
    started_at: float
    lease: LeaseDoc
    roll_requested: bool = True
    submission_claimed: bool = False
    request_ref: Optional[str] = None
    requested_at: Optional[float] = None


class ResolveDoc(BaseModel):
    name: Literal["resolve"] = "resolve"
    resolve_deadline: float
    outcome: int
    proof_ref: Optional[str] = None


class EndedDoc(BaseModel):
    name: Literal["ended"] = "ended"
    ended_at: float


class FailedDoc(BaseModel):
    name: Literal["failed"] = "failed"
    failed_at: float
    reason: str


PhaseDoc = Annotated[
    Union[WaitingDoc, CommitDoc, RollingDoc, ResolveDoc, EndedDoc, FailedDoc],
    Field(discriminator="name"),
]


class SessionDocument(BaseModel):
    """Stored form of a Session."""
    code: str
    phase: PhaseDoc
    round: int = 0
    players: list[PlayerDoc] = Field(default_factory=list)
    commitments: dict[str, CommitmentDoc] = Field(default_factory=dict)
    last_roll: Optional[int] = None
    last_roll_proof: Optional[str] = None
    stats_recorded: bool = False
    roll_attempts: int = 0
    created_at: float = 0.0
    updated_at: float = 0.0
    version: int = 0


_PHASE_TYPES = {
    PhaseName.WAITING.value: WaitingPhase,
    PhaseName.COMMIT.value: CommitPhase,
    PhaseName.ROLLING.value: RollingPhase,
    PhaseName.RESOLVE.value: ResolvePhase,
    PhaseName.ENDED.value: EndedPhase,
    PhaseName.FAILED.value: FailedPhase,
}


def to_document(session: Session) -> SessionDocument:
    data = asdict(session)
    data["phase"] = {"name": session.phase_name.value, **asdict(session.phase)}
    return SessionDocument.model_validate(data)


def from_document(doc: SessionDocument) -> Session:
    data = doc.model_dump()

    phase_data = data.pop("phase")
    phase_type = _PHASE_TYPES[phase_data.pop("name")]
    if phase_type is RollingPhase:
        phase_data["lease"] = LeaderLease(**phase_data["lease"])

    players = [
        Player(
            **{k: v for k, v in p.items() if k != "hand"},
            hand=[Card(**c) for c in p["hand"]],
        )
        for p in data.pop("players")
    ]
    commitments = {
        pid: Commitment(**c) for pid, c in data.pop("commitments").items()
    }
    return Session(
        phase=phase_type(**phase_data),
        players=players,
        commitments=commitments,
        **data,
    )


def dump_session(session: Session) -> str:
    return to_document(session).model_dump_json()


def load_session(text: str | bytes) -> Session:
    return from_document(SessionDocument.model_validate_json(text))
