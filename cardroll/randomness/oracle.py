"""
Randomness Oracle - The on-chain request/fulfill service, seen from Python.

RandomnessOracle is the contract surface the bridge consumes:
    estimate_fee()                    -> fee in wei
    request_random(round_id, code, commitment, fee) -> RequestHandle
    wait_for_receipt(tx_ref)          block until the tx is mined
    reveal(round_id, reveal)          submit the reveal, triggers fulfillment
    get_result(round_id)              -> OracleResult (read-only query)
    subscribe(listener)               DiceRequested / DiceRolled events

SimulatedOracle runs the same protocol in-process: it checks the
reveal against the commitment, mixes in a provider secret and emits
DiceRolled. It backs local play, the CLI simulator and the tests.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Union
import hashlib
import logging
import secrets
import threading

from .commitment import verify_commitment, combine_randomness, outcome_from_randomness

logger = logging.getLogger(__name__)


class OracleError(Exception):
    """RPC failure, reverted transaction or rejected fee."""


@dataclass
class RequestHandle:
    tx_ref: str
    sequence_number: int


@dataclass
class OracleResult:
    fulfilled: bool
    outcome: int | None = None
    proof_ref: str | None = None


@dataclass
class DiceRequested:
    round_id: int
    session_code: str
    sequence_number: int


@dataclass
class DiceRolled:
    round_id: int
    session_code: str
    outcome: int
    proof_ref: str


OracleEvent = Union[DiceRequested, DiceRolled]
OracleListener = Callable[[OracleEvent], None]


class RandomnessOracle(ABC):
    """Abstract oracle contract client."""

    def __init__(self):
        self._listeners: list[OracleListener] = []

    @abstractmethod
    def estimate_fee(self) -> int:
        ...

    @abstractmethod
    def request_random(
        self,
        round_id: int,
        session_code: str,
        commitment: bytes,
        fee: int,
    ) -> RequestHandle:
        ...

    @abstractmethod
    def wait_for_receipt(self, tx_ref: str, timeout: float | None = None) -> bool:
        ...

    @abstractmethod
    def reveal(self, round_id: int, reveal: bytes) -> str:
        ...

    @abstractmethod
    def get_result(self, round_id: int) -> OracleResult:
        ...

    def subscribe(self, listener: OracleListener) -> Callable[[], None]:
        """Register an event listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: OracleEvent):
        for listener in list(self._listeners):
            listener(event)


@dataclass
class _PendingRequest:
    session_code: str
    commitment: bytes
    fee: int
    sequence_number: int
    tx_ref: str


class SimulatedOracle(RandomnessOracle):
    """
    In-process oracle.

    Args:
        fee: Fee returned by estimate_fee and required by request_random
        fail_requests: Number of upcoming request_random calls to reject
        deliver_events: When False, DiceRolled is recorded but never
            emitted, so only get_result sees it (lost-event scenario)
        provider_secret: Provider contribution; random when omitted
    """

    def __init__(
        self,
        fee: int = 1_000,
        fail_requests: int = 0,
        deliver_events: bool = True,
        provider_secret: bytes | None = None,
        faces: int = 3,
    ):
        super().__init__()
        self.fee = fee
        self.fail_requests = fail_requests
        self.deliver_events = deliver_events
        self.provider_secret = provider_secret or secrets.token_bytes(32)
        self.faces = faces
        self._requests: dict[int, _PendingRequest] = {}
        self._results: dict[int, OracleResult] = {}
        self._mined: set[str] = set()
        self._sequence = 0
        self._lock = threading.Lock()

    @property
    def request_count(self) -> int:
        return len(self._requests)

    def estimate_fee(self) -> int:
        return self.fee

    def request_random(
        self,
        round_id: int,
        session_code: str,
        commitment: bytes,
        fee: int,
    ) -> RequestHandle:
        with self._lock:
            if self.fail_requests > 0:
                self.fail_requests -= 1
                raise OracleError("execution reverted")
            if fee < self.fee:
                raise OracleError(f"insufficient fee: {fee} < {self.fee}")
            if round_id in self._requests:
                raise OracleError(f"round {round_id} already requested")

            self._sequence += 1
            tx_ref = "0x" + hashlib.sha256(f"request:{round_id}:{self._sequence}".encode()).hexdigest()
            self._requests[round_id] = _PendingRequest(
                session_code=session_code,
                commitment=commitment,
                fee=fee,
                sequence_number=self._sequence,
                tx_ref=tx_ref,
            )
            self._mined.add(tx_ref)
            sequence = self._sequence

        self._emit(DiceRequested(round_id=round_id, session_code=session_code, sequence_number=sequence))
        return RequestHandle(tx_ref=tx_ref, sequence_number=sequence)

    def wait_for_receipt(self, tx_ref: str, timeout: float | None = None) -> bool:
        if tx_ref not in self._mined:
            raise OracleError(f"unknown transaction {tx_ref}")
        return True

    def reveal(self, round_id: int, reveal: bytes) -> str:
        with self._lock:
            request = self._requests.get(round_id)
            if request is None:
                raise OracleError(f"no request for round {round_id}")
            if round_id in self._results:
                raise OracleError(f"round {round_id} already fulfilled")
            if not verify_commitment(request.commitment, reveal):
                raise OracleError("reveal does not match commitment")

            randomness = combine_randomness(reveal, self.provider_secret)
            outcome = outcome_from_randomness(randomness, self.faces)
            proof_ref = "0x" + hashlib.sha256(f"reveal:{round_id}:{randomness}".encode()).hexdigest()
            self._results[round_id] = OracleResult(fulfilled=True, outcome=outcome, proof_ref=proof_ref)
            self._mined.add(proof_ref)

        if self.deliver_events:
            self._emit(DiceRolled(
                round_id=round_id,
                session_code=request.session_code,
                outcome=outcome,
                proof_ref=proof_ref,
            ))
        return proof_ref

    def get_result(self, round_id: int) -> OracleResult:
        return self._results.get(round_id, OracleResult(fulfilled=False))
