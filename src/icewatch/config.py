"""Client configuration for icewatch."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from icewatch._constants import DEFAULT_DETECTION_LIMIT
from icewatch.exceptions import IcewatchConfigError


@dataclasses.dataclass(frozen=True)
class HarnessTimings:
    """Delays and limits used by the validation harness.

    All values are in seconds.  The defaults reproduce the constraints the
    dashboard's testing suite validates against; tests shrink them.

    Parameters
    ----------
    response_limit : float
        Maximum accepted notification latency for the response-time check.
    response_timeout : float
        Hard bound after which the response-time check reports that no
        notification arrived at all.
    alert_count : int
        Number of detections written by the multiple-alerts check.
    alert_interval : float
        Delay between consecutive writes of the multiple-alerts check.
    alert_grace : float
        Maximum wait after the last write for outstanding notifications.
    interruption : float
        Simulated interruption window of the network-robustness check.
    after_wait : float
        Maximum wait for the post-resubscription notification.
    inter_check_delay : float
        Pause between two checks of a suite run.
    """

    response_limit: float = 3.0
    response_timeout: float = 5.0
    alert_count: int = 10
    alert_interval: float = 0.1
    alert_grace: float = 3.0
    interruption: float = 2.0
    after_wait: float = 2.0
    inter_check_delay: float = 1.0


@dataclasses.dataclass(frozen=True)
class ReconnectPolicy:
    """Exponential backoff used when a live subscription drops.

    ``max_attempts`` of ``None`` retries forever.
    """

    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    max_attempts: int | None = None

    def delay_for(self, attempt: int) -> float:
        """Delay before reconnect *attempt* (0-based)."""
        delay = self.initial_delay * (self.multiplier ** max(attempt, 0))
        return min(delay, self.max_delay)


@dataclasses.dataclass(frozen=True)
class IcewatchConfig:
    """Client configuration.

    Parameters
    ----------
    url : str
        Backend project URL (e.g. ``"https://abc.supabase.co"``).
    api_key : str
        Public (anon) API key sent as ``apikey`` header and realtime token.
    schema : str
        Database schema holding the ``sensors`` and ``ice_detections`` tables.
    request_timeout : float
        Total timeout in seconds for a single REST request.
    realtime_heartbeat : float
        Interval in seconds between realtime heartbeat frames.
    join_timeout : float
        Seconds to wait for the backend to acknowledge a channel join.
    detection_limit : int
        Number of most recent detections loaded and kept in the local view.
    """

    url: str
    api_key: str
    schema: str = "public"
    request_timeout: float = 10.0
    realtime_heartbeat: float = 25.0
    join_timeout: float = 10.0
    detection_limit: int = DEFAULT_DETECTION_LIMIT

    def __post_init__(self) -> None:
        if not self.url or not self.url.strip():
            raise IcewatchConfigError("url must be non-empty")
        if not self.api_key or not self.api_key.strip():
            raise IcewatchConfigError("api_key must be non-empty")
        if self.detection_limit <= 0:
            raise IcewatchConfigError("detection_limit must be positive")
        object.__setattr__(self, "url", self.url.strip().rstrip("/"))

    @classmethod
    def from_env(cls, **overrides: Any) -> IcewatchConfig:
        """Create configuration from environment variables.

        Reads ``ICEWATCH_URL`` and ``ICEWATCH_API_KEY`` (falling back to
        ``SUPABASE_URL`` / ``SUPABASE_ANON_KEY``) plus optional
        ``ICEWATCH_*`` tuning variables.  Explicit keyword arguments override
        environment values.

        Raises
        ------
        IcewatchConfigError
            If the URL or API key is missing, or a numeric variable cannot be
            parsed.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        url = env.get("ICEWATCH_URL") or env.get("SUPABASE_URL")
        if url is not None:
            config_kwargs["url"] = url
        api_key = env.get("ICEWATCH_API_KEY") or env.get("SUPABASE_ANON_KEY")
        if api_key is not None:
            config_kwargs["api_key"] = api_key

        schema = env.get("ICEWATCH_SCHEMA")
        if schema is not None:
            config_kwargs["schema"] = schema

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type]] = {
            "ICEWATCH_REQUEST_TIMEOUT": ("request_timeout", float),
            "ICEWATCH_REALTIME_HEARTBEAT": ("realtime_heartbeat", float),
            "ICEWATCH_JOIN_TIMEOUT": ("join_timeout", float),
            "ICEWATCH_DETECTION_LIMIT": ("detection_limit", int),
        }
        for env_key, (field_name, convert) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = convert(val)
            except ValueError as exc:
                raise IcewatchConfigError(f"{env_key} is not a valid number: {val!r}") from exc

        config_kwargs.update(overrides)

        if "url" not in config_kwargs or "api_key" not in config_kwargs:
            raise IcewatchConfigError(
                "ICEWATCH_URL and ICEWATCH_API_KEY (or SUPABASE_URL / SUPABASE_ANON_KEY) are required"
            )

        return cls(**config_kwargs)
