"""
Bingo Swarm Configuration.

Defines environment-specific configuration classes for a swarm run.
Each class captures the backend location, the size and pacing of the
swarm, and the retry budgets that bound every participant.  The
``get_config`` factory selects the right class based on the
``SWARM_ENV`` environment variable (or an explicit key), and
:class:`SwarmSettings` freezes the chosen values into the object that is
handed to the spawn controller and every participant.

Key Concepts Demonstrated:
- Class-based configuration with inheritance for DRY defaults
- Environment-variable overrides for 12-factor deployability
- Separate testing configuration with fake URLs and near-zero delays
- An immutable settings object so participant threads share one
  read-only copy
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """
    Base (shared) configuration for a swarm run.

    All environment-specific classes inherit from ``Config`` so that
    common defaults only need to be stated once.
    """

    # Root URL of the bingo backend; REST endpoints and the notification
    # hub both hang off it.
    BASE_URL: str = os.environ.get("SWARM_BASE_URL", "https://bingo-backend.zetabox.tn")
    HUB_PATH: str = os.environ.get("SWARM_HUB_PATH", "/api/notificationsHub")
    WIN_CLAIM_PATH: str = os.environ.get(
        "SWARM_WIN_CLAIM_PATH", "/api/SelectedNumberClient/Win"
    )

    # Swarm shape.
    PARTICIPANTS: int = int(os.environ.get("SWARM_PARTICIPANTS", "1000"))
    CONCURRENCY: int = int(os.environ.get("SWARM_CONCURRENCY", "1000"))
    SPAWN_DELAY: float = float(os.environ.get("SWARM_SPAWN_DELAY", "0.05"))
    REPORT_EVERY: int = int(os.environ.get("SWARM_REPORT_EVERY", "1"))

    # Seconds each participant stays in the game before finishing.
    RUN_HORIZON: float = float(os.environ.get("SWARM_RUN_HORIZON", "86400"))
    # Extra seconds the controller waits for stragglers past the horizon.
    JOIN_GRACE: float = float(os.environ.get("SWARM_JOIN_GRACE", "30"))

    # Number of distinct countdown ticks submissions are spread over.
    TRIGGER_WINDOW: int = int(os.environ.get("SWARM_TRIGGER_WINDOW", "10"))
    SELECTION_JITTER: float = float(os.environ.get("SWARM_SELECTION_JITTER", "0.1"))
    SCORE_FULL_GRID: bool = _env_bool("SWARM_SCORE_FULL_GRID")

    # Retry budgets.
    MAX_CLAIM_RETRIES: int = int(os.environ.get("SWARM_MAX_CLAIM_RETRIES", "10"))
    MAX_SELECT_RETRIES: int = int(os.environ.get("SWARM_MAX_SELECT_RETRIES", "3"))
    MAX_IDENTITY_RETRIES: int = int(os.environ.get("SWARM_MAX_IDENTITY_RETRIES", "3"))
    CLAIM_CONFLICT_DELAY: float = float(os.environ.get("SWARM_CLAIM_CONFLICT_DELAY", "0.01"))
    CLAIM_ERROR_DELAY: float = float(os.environ.get("SWARM_CLAIM_ERROR_DELAY", "0.5"))

    REQUEST_TIMEOUT: float = float(os.environ.get("SWARM_REQUEST_TIMEOUT", "30"))
    # Hub reconnect back-off schedule in seconds, SignalR's default.
    RECONNECT_DELAYS: tuple[float, ...] = (0.0, 2.0, 10.0, 30.0)
    # Seconds between hub pings; the server drops clients silent for 30 s.
    KEEPALIVE_INTERVAL: float = float(os.environ.get("SWARM_KEEPALIVE_INTERVAL", "15"))

    # Optional file of pre-issued bearer tokens, one per line.
    TOKEN_FILE: str | None = os.environ.get("SWARM_TOKEN_FILE") or None
    WAIT_FOR_GO_AHEAD: bool = _env_bool("SWARM_WAIT_FOR_GO_AHEAD")


class DevelopmentConfig(Config):
    """
    Development-oriented overrides.

    A small swarm with a short horizon so a local run finishes quickly.
    """

    PARTICIPANTS: int = int(os.environ.get("SWARM_PARTICIPANTS", "10"))
    CONCURRENCY: int = int(os.environ.get("SWARM_CONCURRENCY", "10"))
    RUN_HORIZON: float = float(os.environ.get("SWARM_RUN_HORIZON", "300"))


class TestingConfig(Config):
    """
    Test-suite overrides.

    Points the backend at a non-routable host so tests never reach a
    real server, and shrinks every delay so retry paths finish fast.
    """

    BASE_URL: str = os.environ.get("TEST_SWARM_BASE_URL", "http://bingo.test")
    PARTICIPANTS: int = 5
    CONCURRENCY: int = 5
    SPAWN_DELAY: float = 0.0
    RUN_HORIZON: float = 2.0
    JOIN_GRACE: float = 2.0
    SELECTION_JITTER: float = 0.0
    CLAIM_CONFLICT_DELAY: float = 0.0
    CLAIM_ERROR_DELAY: float = 0.0
    REQUEST_TIMEOUT: float = 1.0
    RECONNECT_DELAYS: tuple[float, ...] = (0.0,)
    TOKEN_FILE: str | None = None
    WAIT_FOR_GO_AHEAD: bool = False


class ProductionConfig(Config):
    """
    Full-scale overrides.

    Every value comes from the base class / environment variables.
    """


# Lookup table mapping environment name strings to their config classes.
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": ProductionConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Return the configuration class for the given environment.

    Args:
        env: One of ``"development"``, ``"testing"``, or
            ``"production"``.  When *None*, the ``SWARM_ENV``
            environment variable is consulted, falling back to
            ``"default"`` (production) if unset.

    Returns:
        The ``Config`` subclass matching the requested environment.
    """
    if env is None:
        env = os.environ.get("SWARM_ENV", "default")
    return config.get(env, config["default"])


@dataclass(frozen=True)
class SwarmSettings:
    """
    Immutable snapshot of the values one swarm run uses.

    Built once from a ``Config`` class and shared read-only by the spawn
    controller and every participant thread.  Use :meth:`replace` to
    apply command-line overrides.
    """

    base_url: str
    hub_path: str
    win_claim_path: str
    participants: int
    concurrency: int
    spawn_delay: float
    report_every: int
    run_horizon: float
    join_grace: float
    trigger_window: int
    selection_jitter: float
    score_full_grid: bool
    max_claim_retries: int
    max_select_retries: int
    max_identity_retries: int
    claim_conflict_delay: float
    claim_error_delay: float
    request_timeout: float
    reconnect_delays: tuple[float, ...]
    keepalive_interval: float
    token_file: str | None
    wait_for_go_ahead: bool

    def __post_init__(self) -> None:
        if self.participants < 0:
            raise ValueError("participants must not be negative")
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.trigger_window < 1:
            raise ValueError("trigger_window must be at least 1")
        if self.report_every < 1:
            raise ValueError("report_every must be at least 1")
        if self.max_claim_retries < 1 or self.max_select_retries < 1:
            raise ValueError("retry budgets must be at least 1")
        if self.max_identity_retries < 1:
            raise ValueError("retry budgets must be at least 1")
        if self.keepalive_interval <= 0:
            raise ValueError("keepalive_interval must be positive")

    @classmethod
    def from_config(cls, config_class: type[Config] | None = None) -> "SwarmSettings":
        """Freeze the attributes of *config_class* (default: ``get_config()``)."""
        source = config_class or get_config()
        return cls(
            base_url=source.BASE_URL.rstrip("/"),
            hub_path=source.HUB_PATH,
            win_claim_path=source.WIN_CLAIM_PATH,
            participants=source.PARTICIPANTS,
            concurrency=source.CONCURRENCY,
            spawn_delay=source.SPAWN_DELAY,
            report_every=source.REPORT_EVERY,
            run_horizon=source.RUN_HORIZON,
            join_grace=source.JOIN_GRACE,
            trigger_window=source.TRIGGER_WINDOW,
            selection_jitter=source.SELECTION_JITTER,
            score_full_grid=source.SCORE_FULL_GRID,
            max_claim_retries=source.MAX_CLAIM_RETRIES,
            max_select_retries=source.MAX_SELECT_RETRIES,
            max_identity_retries=source.MAX_IDENTITY_RETRIES,
            claim_conflict_delay=source.CLAIM_CONFLICT_DELAY,
            claim_error_delay=source.CLAIM_ERROR_DELAY,
            request_timeout=source.REQUEST_TIMEOUT,
            reconnect_delays=tuple(source.RECONNECT_DELAYS),
            keepalive_interval=source.KEEPALIVE_INTERVAL,
            token_file=source.TOKEN_FILE,
            wait_for_go_ahead=source.WAIT_FOR_GO_AHEAD,
        )

    def replace(self, **overrides) -> "SwarmSettings":
        """Return a copy with every non-``None`` override applied."""
        changes = {name: value for name, value in overrides.items() if value is not None}
        if "base_url" in changes:
            changes["base_url"] = changes["base_url"].rstrip("/")
        return dataclasses.replace(self, **changes)
