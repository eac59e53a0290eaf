"""
optisync Configuration

Environment-based configuration for the optimistic overlay layer.
"""
import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _app_version_from_package() -> str:
    """Read version from installed package metadata (pyproject.toml is the source)."""
    try:
        from importlib.metadata import version
        return version("optisync")
    except Exception:
        pass
    # Fallback: parse pyproject.toml directly (dev / non-installed mode)
    try:
        from pathlib import Path
        import re
        pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
        match = re.search(r'^version\s*=\s*"([^"]+)"', pyproject.read_text(), re.MULTILINE)
        if match:
            return match.group(1)
    except Exception:
        pass
    return "0.0.0-unknown"


# Grace window between write confirmation and overlay release.  Long enough to
# outlast typical propagation lag of the live-sync read channel.
DEFAULT_ACK_GRACE_MS: int = 5000

# Upper bound on how long a pending overlay may live without a terminal signal.
DEFAULT_PENDING_LOCK_MS: int = 120_000


class Settings(BaseSettings):
    """Overlay settings loaded from environment variables."""

    app_name: str = "optisync"
    app_version: str = _app_version_from_package()
    debug: bool = False

    # Reconciliation timing (milliseconds)
    ack_grace_ms: int = DEFAULT_ACK_GRACE_MS
    pending_lock_ms: int = DEFAULT_PENDING_LOCK_MS
    tombstone_ttl_ms: int = 30_000  # terminal operations kept to recognise duplicate late signals
    cleanup_interval_ms: int = 5000  # periodic cleanup_expired() sweep
    baseline_ttl_ms: int = 300_000  # idle snapshot baselines purged by the sweep

    # Fields never sent in a patch (immutable identifiers)
    identity_fields: list[str] = ["id"]

    @model_validator(mode="after")
    def _warn_grace_exceeds_lock(self) -> "Settings":
        """Warn when the ack grace window outlives the pending lock."""
        if self.ack_grace_ms >= self.pending_lock_ms:
            logging.getLogger(__name__).warning(
                f"OPTISYNC_ACK_GRACE_MS ({self.ack_grace_ms}) >= "
                f"OPTISYNC_PENDING_LOCK_MS ({self.pending_lock_ms}); "
                "overlays may expire before they are acknowledged."
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="OPTISYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience access
settings = get_settings()
