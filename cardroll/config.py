"""
Runtime configuration.

Every timing constant of the game lives here so the state machine,
the randomness bridge and the leader coordinator agree on one set of
numbers. Values come from CARDROLL_* environment variables with the
defaults below.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import os


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


@dataclass
class GameConfig:
    """
    Game and protocol settings.

    Durations are in seconds.
    """
    # Game rules
    card_values: tuple[int, ...] = (1, 2, 3)
    die_faces: int = 3
    max_rounds: int = 5

    # Phase timers
    start_delay: float = 60.0
    commit_duration: float = 25.0
    resolve_duration: float = 5.0

    # Randomness protocol
    fulfillment_timeout: float = 60.0
    fallback_poll_after: float = 10.0
    recovery_backoff: float = 10.0
    max_roll_attempts: int = 3
    secret_ttl: int = 3600

    # Leader coordination
    lease_seconds: float = 15.0
    rolling_grace: float = 20.0
    poll_interval: float = 1.0

    # Persistence
    session_ttl: int = 24 * 3600
    max_write_retries: int = 5

    # Deployment
    env: str = "development"
    redis_url: str | None = None
    requester_address: str = "0x0000000000000000000000000000000000000000"
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> GameConfig:
        """Build a config from CARDROLL_* environment variables."""
        defaults = cls()
        return cls(
            max_rounds=_env_int("CARDROLL_MAX_ROUNDS", defaults.max_rounds),
            start_delay=_env_float("CARDROLL_START_DELAY", defaults.start_delay),
            commit_duration=_env_float("CARDROLL_COMMIT_DURATION", defaults.commit_duration),
            resolve_duration=_env_float("CARDROLL_RESOLVE_DURATION", defaults.resolve_duration),
            fulfillment_timeout=_env_float(
                "CARDROLL_FULFILLMENT_TIMEOUT", defaults.fulfillment_timeout
            ),
            fallback_poll_after=_env_float(
                "CARDROLL_FALLBACK_POLL_AFTER", defaults.fallback_poll_after
            ),
            recovery_backoff=_env_float("CARDROLL_RECOVERY_BACKOFF", defaults.recovery_backoff),
            max_roll_attempts=_env_int("CARDROLL_MAX_ROLL_ATTEMPTS", defaults.max_roll_attempts),
            secret_ttl=_env_int("CARDROLL_SECRET_TTL", defaults.secret_ttl),
            lease_seconds=_env_float("CARDROLL_LEASE_SECONDS", defaults.lease_seconds),
            rolling_grace=_env_float("CARDROLL_ROLLING_GRACE", defaults.rolling_grace),
            poll_interval=_env_float("CARDROLL_POLL_INTERVAL", defaults.poll_interval),
            session_ttl=_env_int("CARDROLL_SESSION_TTL", defaults.session_ttl),
            env=os.getenv("CARDROLL_ENV", defaults.env),
            redis_url=os.getenv("CARDROLL_REDIS_URL") or None,
            requester_address=os.getenv("CARDROLL_REQUESTER", defaults.requester_address),
            allowed_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
        )
