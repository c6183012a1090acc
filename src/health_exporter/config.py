"""
Runtime settings.

Values come from the environment (``HEALTH_EXPORTER_*`` plus the provider
URL and token) and can be overridden by CLI options.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from health_exporter.core.errors import ConfigError

ENV_PREFIX = "HEALTH_EXPORTER_"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX + name} must be an integer, got {raw!r}") from None


def parse_sources(raw: str | None) -> frozenset[str] | None:
    """Comma-separated package names; empty means every source is allowed."""
    if not raw:
        return None
    sources = frozenset(s.strip() for s in raw.split(",") if s.strip())
    return sources or None


@dataclass(frozen=True)
class Settings:
    provider_url: str | None = None
    token: str | None = None
    state_dir: Path = Path("./state")
    output_dir: Path = Path("./exports")
    lookback_days: int = 30
    min_exercise_minutes: int = 2
    max_concurrent_reads: int = 4
    allowed_sources: frozenset[str] | None = field(default=None)
    interval_minutes: int = 30
    tolerance_minutes: int = 15
    request_timeout: float = 30.0

    def __post_init__(self):
        if self.lookback_days <= 0:
            raise ConfigError("lookback_days must be positive")
        if self.min_exercise_minutes < 0:
            raise ConfigError("min_exercise_minutes cannot be negative")
        if self.max_concurrent_reads <= 0:
            raise ConfigError("max_concurrent_reads must be positive")
        if self.interval_minutes <= 0:
            raise ConfigError("interval_minutes must be positive")
        if not 0 <= self.tolerance_minutes <= self.interval_minutes:
            raise ConfigError("tolerance_minutes must be between 0 and interval_minutes")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")

    @property
    def cursor_path(self) -> Path:
        return Path(self.state_dir) / "cursor.json"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        return cls(
            provider_url=os.environ.get("HEALTH_PROVIDER_URL"),
            token=os.environ.get("HEALTH_PROVIDER_TOKEN"),
            state_dir=Path(os.environ.get(ENV_PREFIX + "STATE_DIR", "./state")),
            output_dir=Path(os.environ.get(ENV_PREFIX + "OUTPUT_DIR", "./exports")),
            lookback_days=_env_int("LOOKBACK_DAYS", 30),
            min_exercise_minutes=_env_int("MIN_EXERCISE_MINUTES", 2),
            max_concurrent_reads=_env_int("MAX_CONCURRENT_READS", 4),
            allowed_sources=parse_sources(os.environ.get(ENV_PREFIX + "ALLOWED_SOURCES")),
            interval_minutes=_env_int("INTERVAL_MINUTES", 30),
            tolerance_minutes=_env_int("TOLERANCE_MINUTES", 15),
            request_timeout=float(_env_int("REQUEST_TIMEOUT", 30)),
        )

    def override(self, **changes) -> "Settings":
        """Copy with every non-None keyword applied (CLI options left unset are None)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def require_provider(self) -> str:
        if not self.provider_url:
            raise ConfigError("No provider URL configured (set HEALTH_PROVIDER_URL or pass --provider-url)")
        return self.provider_url
