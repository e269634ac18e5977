"""
API Module - HTTP interface for game clients.

Clients:
1. Create a session and share its code
2. Join while the lobby is open
3. Poll state once a second (polling advances deadlines)
4. Commit a card or skip each round

Clients only ever receive the redacted PublicView.
"""

from .schemas import (
    # Requests
    CreateSessionRequest,
    JoinRequest,
    CommitRequest,
    FulfillmentRequest,
    SecretRequest,
    # Responses
    SessionCreatedResponse,
    JoinResponse,
    PublicView,
    PlayerView,
    FulfillmentResponse,
    SecretResponse,
    LeaderboardResponse,
    ErrorResponse,
    ErrorCode,
)
from .view import get_public_view
from .service import APIService, build_session_manager
from .app import create_app

__all__ = [
    # Requests
    "CreateSessionRequest",
    "JoinRequest",
    "CommitRequest",
    "FulfillmentRequest",
    "SecretRequest",
    # Responses
    "SessionCreatedResponse",
    "JoinResponse",
    "PublicView",
    "PlayerView",
    "FulfillmentResponse",
    "SecretResponse",
    "LeaderboardResponse",
    "ErrorResponse",
    "ErrorCode",
    # Service
    "get_public_view",
    "APIService",
    "build_session_manager",
    "create_app",
]
