"""
Error taxonomy.

Validation errors (InvalidPhase, CardUnavailable, ...) are raised before
any state is touched. Rolling-phase failures (CommitmentSubmissionFailed,
FulfillmentTimeout) are turned into the rolling -> commit recovery edge by
the session manager.

Each error carries an error_code that matches api.schemas.ErrorCode.
"""

from __future__ import annotations


class CardrollError(Exception):
    """Base class for all game errors."""
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


class InvalidPhase(CardrollError):
    """Operation attempted outside its valid phase."""
    error_code = "INVALID_PHASE"


class SessionNotFound(CardrollError):
    error_code = "SESSION_NOT_FOUND"


class PlayerNotFound(CardrollError):
    error_code = "PLAYER_NOT_FOUND"


class CardUnavailable(CardrollError):
    """Selected card value is burned or not in the hand."""
    error_code = "CARD_UNAVAILABLE"


class CommitmentExists(CardrollError):
    """Player already committed this round."""
    error_code = "COMMITMENT_EXISTS"


class CommitmentSubmissionFailed(CardrollError):
    """The oracle rejected the randomness request."""
    error_code = "COMMITMENT_SUBMISSION_FAILED"


class FulfillmentTimeout(CardrollError):
    """No outcome arrived within the retry budget."""
    error_code = "FULFILLMENT_TIMEOUT"


class DuplicateRequest(CardrollError):
    """A randomness request for this round was already claimed or sent."""
    error_code = "DUPLICATE_REQUEST"


class StaleFulfillment(CardrollError):
    """Fulfillment for a round id that is no longer pending."""
    error_code = "STALE_FULFILLMENT"


class NotLeader(CardrollError):
    """Client does not hold the submission lease."""
    error_code = "NOT_LEADER"


class ConcurrentUpdate(CardrollError):
    """Optimistic write kept losing to other writers."""
    error_code = "CONCURRENT_UPDATE"
