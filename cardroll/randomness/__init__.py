"""
Randomness - Commit/reveal binding and the oracle bridge.

A round's die outcome comes from an external oracle:
1. The leader commits to H(reveal) on-chain
2. The reveal is stored in a side-channel for fallback fulfillers
3. Submitting the reveal triggers fulfillment (DiceRolled)
"""

from .commitment import (
    CommitmentBundle,
    create_commitment,
    compute_reveal,
    compute_commitment,
    verify_commitment,
    verify_binding,
    outcome_from_randomness,
)
from .oracle import (
    RandomnessOracle,
    SimulatedOracle,
    OracleError,
    OracleResult,
    RequestHandle,
    DiceRequested,
    DiceRolled,
)
from .bridge import RandomnessBridge, SubmissionReceipt, Fulfillment

__all__ = [
    "CommitmentBundle",
    "create_commitment",
    "compute_reveal",
    "compute_commitment",
    "verify_commitment",
    "verify_binding",
    "outcome_from_randomness",
    "RandomnessOracle",
    "SimulatedOracle",
    "OracleError",
    "OracleResult",
    "RequestHandle",
    "DiceRequested",
    "DiceRolled",
    "RandomnessBridge",
    "SubmissionReceipt",
    "Fulfillment",
]
