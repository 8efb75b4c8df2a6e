from __future__ import annotations

import pytest

from icewatch.config import IcewatchConfig, ReconnectPolicy
from icewatch.exceptions import IcewatchConfigError

_ENV_KEYS = (
    "ICEWATCH_URL",
    "ICEWATCH_API_KEY",
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "ICEWATCH_SCHEMA",
    "ICEWATCH_REQUEST_TIMEOUT",
    "ICEWATCH_REALTIME_HEARTBEAT",
    "ICEWATCH_JOIN_TIMEOUT",
    "ICEWATCH_DETECTION_LIMIT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_from_env_reads_icewatch_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ICEWATCH_URL", "https://abc.supabase.co/")
    monkeypatch.setenv("ICEWATCH_API_KEY", "anon")
    monkeypatch.setenv("ICEWATCH_DETECTION_LIMIT", "20")
    monkeypatch.setenv("ICEWATCH_JOIN_TIMEOUT", "2.5")

    config = IcewatchConfig.from_env()

    assert config.url == "https://abc.supabase.co"
    assert config.api_key == "anon"
    assert config.detection_limit == 20
    assert config.join_timeout == 2.5
    assert config.schema == "public"


def test_from_env_falls_back_to_supabase_names(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SUPABASE_URL", "https://xyz.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "key")

    config = IcewatchConfig.from_env()

    assert config.url == "https://xyz.supabase.co"
    assert config.api_key == "key"


def test_overrides_win_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ICEWATCH_URL", "https://abc.supabase.co")
    monkeypatch.setenv("ICEWATCH_API_KEY", "anon")
    monkeypatch.setenv("ICEWATCH_REQUEST_TIMEOUT", "not-a-number")

    config = IcewatchConfig.from_env(request_timeout=3.0)

    assert config.request_timeout == 3.0


def test_missing_credentials_raise() -> None:
    with pytest.raises(IcewatchConfigError):
        IcewatchConfig.from_env()


def test_bad_number_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ICEWATCH_URL", "https://abc.supabase.co")
    monkeypatch.setenv("ICEWATCH_API_KEY", "anon")
    monkeypatch.setenv("ICEWATCH_DETECTION_LIMIT", "fifty")

    with pytest.raises(IcewatchConfigError, match="ICEWATCH_DETECTION_LIMIT"):
        IcewatchConfig.from_env()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"url": "", "api_key": "anon"},
        {"url": "https://abc.supabase.co", "api_key": "  "},
        {"url": "https://abc.supabase.co", "api_key": "anon", "detection_limit": 0},
    ],
)
def test_invalid_config_is_rejected(kwargs: dict[str, object]) -> None:
    with pytest.raises(IcewatchConfigError):
        IcewatchConfig(**kwargs)  # type: ignore[arg-type]


def test_reconnect_backoff_is_capped() -> None:
    policy = ReconnectPolicy(initial_delay=1.0, max_delay=5.0, multiplier=2.0)

    assert [policy.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
