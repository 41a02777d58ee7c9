"""Environment-driven settings for the people counter service."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from people_counter_lib import protocol

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUTHY


def _env_ms(env: Mapping[str, str], name: str, default_s: float) -> float:
    value = env.get(name)
    if not value:
        return default_s
    try:
        ms = float(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a number of milliseconds, got {value!r}") from e
    if ms <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return ms / 1000.0


@dataclass
class CounterSettings:
    """Runtime configuration.

    Attributes:
        port: Serial device path of the counter.
        baud: Serial baud rate.
        poll_interval_s: Seconds between poller ticks.
        response_timeout_s: Deadline for a status response.
        simulate: Synthesize readings instead of opening the port.
        enabled: Initial value of the live feature flag.
        autostart: Start the poller when the service starts.
        api_host: Bind address of the REST interface.
        api_port: Port of the REST interface.
        log_level: Root logging level name.
    """

    port: str = protocol.DEFAULT_PORT
    baud: int = protocol.DEFAULT_BAUD
    poll_interval_s: float = protocol.POLL_INTERVAL
    response_timeout_s: float = protocol.RESPONSE_TIMEOUT
    simulate: bool = False
    enabled: bool = False
    autostart: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 9160
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "CounterSettings":
        """Build settings from environment variables (or a provided mapping)."""
        env = os.environ if env is None else env
        return cls(
            port=env.get("PEOPLE_COUNTER_PORT") or protocol.DEFAULT_PORT,
            baud=int(env.get("PEOPLE_COUNTER_BAUD_RATE") or protocol.DEFAULT_BAUD),
            poll_interval_s=_env_ms(env, "PEOPLE_COUNTER_POLL_INTERVAL", protocol.POLL_INTERVAL),
            response_timeout_s=_env_ms(
                env, "PEOPLE_COUNTER_RESPONSE_TIMEOUT", protocol.RESPONSE_TIMEOUT
            ),
            simulate=_env_bool(env, "PEOPLE_COUNTER_SIMULATE", False),
            enabled=_env_bool(env, "PEOPLE_COUNTER_ENABLED", False),
            autostart=_env_bool(env, "PEOPLE_COUNTER_AUTOSTART", True),
            api_host=env.get("API_HOST", "0.0.0.0"),
            api_port=int(env.get("API_PORT", "9160")),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )
