"""
Pydantic Schemas for API - Request/response models for OpenAPI.

These models define the contract between game clients and the server.
The public view is the only session shape clients ever see; raw
sessions never leave the server.

Error Codes:
- INVALID_PHASE: Operation not allowed in the current phase
- SESSION_NOT_FOUND: Session does not exist or has expired
- PLAYER_NOT_FOUND: Player is not in the session
- CARD_UNAVAILABLE: Card is burned or not in hand
- COMMITMENT_EXISTS: Player already committed this round
- STALE_FULFILLMENT: Outcome is for a round that is no longer pending
- CONCURRENT_UPDATE: Too many concurrent writers, retry
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field, model_validator


# =============================================================================
# Enums
# =============================================================================

class PhaseValue(str, Enum):
    """Session phases as shown to clients."""
    WAITING = "waiting"
    COMMIT = "commit"
    ROLLING = "rolling"
    RESOLVE = "resolve"
    ENDED = "ended"
    FAILED = "failed"


class ErrorCode(str, Enum):
    """Structured error codes. Values match cardroll.errors."""
    INVALID_PHASE = "INVALID_PHASE"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
    CARD_UNAVAILABLE = "CARD_UNAVAILABLE"
    COMMITMENT_EXISTS = "COMMITMENT_EXISTS"
    COMMITMENT_SUBMISSION_FAILED = "COMMITMENT_SUBMISSION_FAILED"
    FULFILLMENT_TIMEOUT = "FULFILLMENT_TIMEOUT"
    DUPLICATE_REQUEST = "DUPLICATE_REQUEST"
    STALE_FULFILLMENT = "STALE_FULFILLMENT"
    NOT_LEADER = "NOT_LEADER"
    CONCURRENT_UPDATE = "CONCURRENT_UPDATE"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# =============================================================================
# Shared Models
# =============================================================================

class CardView(BaseModel):
    value: int
    burned: bool = False

    model_config = {"from_attributes": True}


class CommitmentView(BaseModel):
    skip: bool
    selected_value: Optional[int] = None

    model_config = {"from_attributes": True}


class PlayerView(BaseModel):
    """
    Player as seen by one viewer.

    commitment is filled for the viewer's own entry, and for everyone
    once the round is revealed (resolve or ended).
    """
    player_id: str
    display_name: str
    ordinal: int
    avatar_ref: Optional[str] = None
    cards: list[CardView] = Field(default_factory=list)
    credits: int = 0
    connected: bool = True
    has_committed: bool = False
    commitment: Optional[CommitmentView] = None


class PublicView(BaseModel):
    """Redacted session snapshot returned by GET /state."""
    code: str
    round: int
    max_rounds: int
    phase: PhaseValue
    players: list[PlayerView] = Field(default_factory=list)
    me: Optional[PlayerView] = None

    # Deadlines (only the active phase's is set)
    start_deadline: Optional[float] = None
    commit_deadline: Optional[float] = None
    resolve_deadline: Optional[float] = None
    server_time: float

    last_roll: Optional[int] = None
    last_roll_proof: Optional[str] = None

    retry_in_progress: bool = False
    failure_reason: Optional[str] = None
    winner: Optional[PlayerView] = None
    leader_id: Optional[str] = None

    api_version: str = "v1"


# =============================================================================
# Request Models
# =============================================================================

class CreateSessionRequest(BaseModel):
    start_delay: Optional[float] = Field(
        None, ge=0, le=3600, description="Seconds until the lobby closes (default 60)"
    )


class JoinRequest(BaseModel):
    """Join or re-join. Supplying a known player_id re-joins."""
    player_id: Optional[str] = Field(None, max_length=64)
    display_name: Optional[str] = Field(None, max_length=32)
    avatar_ref: Optional[str] = Field(None, max_length=256)


class CommitRequest(BaseModel):
    player_id: str
    skip: bool = False
    selected_value: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def _choice_present(self):
        if not self.skip and self.selected_value is None:
            raise ValueError("selected_value is required unless skip is set")
        return self


class FulfillmentRequest(BaseModel):
    """Push resolution: an outcome observed for a pending round."""
    session_code: str
    round_id: int
    outcome: int = Field(..., ge=1)
    proof_ref: Optional[str] = None


class SecretRequest(BaseModel):
    """Side-channel reveal upload for a round."""
    round_id: int
    reveal: str = Field(..., pattern=r"^(0x)?[0-9a-fA-F]{64}$")


# =============================================================================
# Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str = Field(..., description="Human-readable error message")
    error_code: ErrorCode = Field(..., description="Machine-readable error code")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error context")
    api_version: str = Field("v1", description="API version")


class SessionCreatedResponse(BaseModel):
    code: str
    phase: PhaseValue
    start_deadline: float
    server_time: float
    api_version: str = "v1"


class JoinResponse(BaseModel):
    code: str
    player_id: str
    view: PublicView
    api_version: str = "v1"


class FulfillmentResponse(BaseModel):
    applied: bool = Field(..., description="False when the outcome was stale or a duplicate")
    round_id: int


class SecretResponse(BaseModel):
    stored: bool
    round_id: int


class LeaderboardEntryInfo(BaseModel):
    rank: int
    player_id: str
    display_name: str
    games: int
    wins: int
    win_rate: float = Field(..., description="Percentage of games won")

    model_config = {"from_attributes": True}


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntryInfo] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
