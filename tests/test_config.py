"""
Tests for overlay config (Settings).

Ensures defaults are sane and OPTISYNC_* environment variables override them.
"""
from __future__ import annotations

import logging

import pytest

from optisync.config import (
    DEFAULT_ACK_GRACE_MS,
    DEFAULT_PENDING_LOCK_MS,
    Settings,
    get_settings,
)


def test_settings_loads_with_env() -> None:
    """Settings load from environment (or defaults)."""
    from optisync.config import settings

    assert settings.app_name is not None
    assert settings.app_version is not None
    assert hasattr(settings, "ack_grace_ms")
    assert hasattr(settings, "debug")


def test_timing_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    """Grace window and pending lock default to 5s and 120s."""
    monkeypatch.delenv("OPTISYNC_ACK_GRACE_MS", raising=False)
    monkeypatch.delenv("OPTISYNC_PENDING_LOCK_MS", raising=False)
    s = Settings(_env_file=None)

    assert s.ack_grace_ms == DEFAULT_ACK_GRACE_MS == 5000
    assert s.pending_lock_ms == DEFAULT_PENDING_LOCK_MS == 120_000
    assert s.ack_grace_ms < s.pending_lock_ms


def test_identity_fields_default() -> None:
    assert Settings(_env_file=None).identity_fields == ["id"]


def test_env_prefix_override(monkeypatch: pytest.MonkeyPatch) -> None:
    """OPTISYNC_ACK_GRACE_MS overrides the default."""
    monkeypatch.setenv("OPTISYNC_ACK_GRACE_MS", "1500")
    monkeypatch.setenv("OPTISYNC_IDENTITY_FIELDS", '["id", "projectId"]')
    s = Settings(_env_file=None)

    assert s.ack_grace_ms == 1500
    assert s.identity_fields == ["id", "projectId"]


def test_grace_exceeding_lock_warns(caplog: pytest.LogCaptureFixture) -> None:
    """A grace window at least as long as the lock logs a warning."""
    with caplog.at_level(logging.WARNING, logger="optisync.config"):
        Settings(_env_file=None, ack_grace_ms=10_000, pending_lock_ms=5000)

    assert "overlays may expire before they are acknowledged" in caplog.text


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()


def test_baseline_ttl_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPTISYNC_BASELINE_TTL_MS", raising=False)
    s = Settings(_env_file=None)

    assert s.baseline_ttl_ms == 300_000
    assert s.baseline_ttl_ms > s.pending_lock_ms
