"""
Randomness Bridge - Connects the state machine to the oracle.

Flow for one round:
1. submit_request: build the commitment, store the reveal in the
   side-channel, send the request with the fee
2. complete: wait for the request to be mined, then submit the reveal
3. The oracle emits DiceRolled; subscribe() hands it on as a Fulfillment

If no event shows up, fetch_result() reads the contract directly.
If the original submitter disappeared, complete() can be called by any
instance: the reveal is loaded from the side-channel.

Only the submission step reports success or failure synchronously.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable
import logging

from ..config import GameConfig
from ..errors import CommitmentSubmissionFailed, DuplicateRequest, FulfillmentTimeout, InvalidPhase
from .commitment import create_commitment
from .oracle import RandomnessOracle, OracleError, OracleResult, DiceRequested, DiceRolled

if TYPE_CHECKING:
    from ..engine_core.state import Session
    from ..store.base import SecretStore

logger = logging.getLogger(__name__)


@dataclass
class SubmissionReceipt:
    """What the submitter learns once the request is accepted."""
    round_id: int
    session_code: str
    request_ref: str
    sequence_number: int
    commitment: str
    fee: int


@dataclass
class Fulfillment:
    """A resolved round, from an event or from polling."""
    round_id: int
    session_code: str
    outcome: int
    proof_ref: str | None


class RandomnessBridge:
    """
    Mediates between sessions and the randomness oracle.

    Usage:
        bridge = RandomnessBridge(oracle, store)
        bridge.subscribe(manager.handle_fulfillment)

        receipt = bridge.submit_request(session, requester="0xabc...")
        bridge.complete(receipt.round_id, receipt.request_ref)
    """

    def __init__(
        self,
        oracle: RandomnessOracle,
        secret_store: SecretStore,
        config: GameConfig | None = None,
    ):
        self.oracle = oracle
        self.secret_store = secret_store
        self.config = config or GameConfig()
        self._reveals: dict[int, bytes] = {}

    def submit_request(self, session: Session, requester: str) -> SubmissionReceipt:
        """
        Commit and request randomness for the session's pending round.

        The reveal is written to the side-channel before the request goes
        out, so the round can be finished even if this process dies
        right after submitting.
        """
        round_id = session.current_round_id
        if round_id is None:
            raise InvalidPhase(f"Session {session.code} has no pending round")
        if self.secret_store.get_secret(round_id) is not None:
            raise DuplicateRequest(f"Round {round_id} already has a stored reveal")

        bundle = create_commitment(round_id, session.code, requester)
        try:
            fee = self.oracle.estimate_fee()
            self.secret_store.set_secret(round_id, bundle.reveal_hex, self.config.secret_ttl)
            handle = self.oracle.request_random(round_id, session.code, bundle.commitment, fee)
        except OracleError as e:
            logger.warning(f"Randomness request for {session.code} round {round_id} failed: {e}")
            raise CommitmentSubmissionFailed(str(e)) from e

        self._reveals[round_id] = bundle.reveal
        logger.info(
            f"Requested randomness for {session.code} round {round_id} "
            f"(tx={handle.tx_ref}, fee={fee})"
        )
        return SubmissionReceipt(
            round_id=round_id,
            session_code=session.code,
            request_ref=handle.tx_ref,
            sequence_number=handle.sequence_number,
            commitment=bundle.commitment_hex,
            fee=fee,
        )

    def complete(self, round_id: int, tx_ref: str | None = None) -> str:
        """
        Submit the reveal for a requested round.

        Uses the local reveal when this instance made the request,
        otherwise the side-channel copy. Returns the reveal tx reference.
        """
        reveal = self._reveals.get(round_id)
        if reveal is None:
            stored = self.secret_store.get_secret(round_id)
            if stored is None:
                raise FulfillmentTimeout(f"No reveal secret stored for round {round_id}")
            reveal = bytes.fromhex(stored)

        try:
            if tx_ref:
                self.oracle.wait_for_receipt(tx_ref, timeout=self.config.fulfillment_timeout)
            reveal_tx = self.oracle.reveal(round_id, reveal)
        except OracleError as e:
            logger.warning(f"Reveal for round {round_id} failed: {e}")
            raise FulfillmentTimeout(f"Reveal for round {round_id} failed: {e}") from e

        self._reveals.pop(round_id, None)
        return reveal_tx

    def fetch_result(self, round_id: int) -> OracleResult:
        """Direct contract read, used by the fallback poller."""
        try:
            return self.oracle.get_result(round_id)
        except OracleError as e:
            logger.warning(f"Result query for round {round_id} failed: {e}")
            return OracleResult(fulfilled=False)

    def subscribe(self, handler: Callable[[Fulfillment], object]) -> Callable[[], None]:
        """Forward DiceRolled events to handler as Fulfillment objects."""

        def on_event(event):
            if isinstance(event, DiceRequested):
                logger.info(
                    f"DiceRequested: round {event.round_id} "
                    f"(session {event.session_code}, seq {event.sequence_number})"
                )
            elif isinstance(event, DiceRolled):
                logger.info(f"DiceRolled: round {event.round_id} -> {event.outcome}")
                handler(Fulfillment(
                    round_id=event.round_id,
                    session_code=event.session_code,
                    outcome=event.outcome,
                    proof_ref=event.proof_ref,
                ))

        return self.oracle.subscribe(on_event)
