"""Client configuration and environment overrides."""

from __future__ import annotations

import dataclasses as dc
import math
import os
import typing as t

from ._validators import validate_optional_interval, validate_positive_finite_timeout

PROCPLUG_FUNCTION_TIMEOUT_ENV: t.Final[str] = "PROCPLUG_FUNCTION_TIMEOUT"
PROCPLUG_HEALTH_CHECK_TIMEOUT_ENV: t.Final[str] = "PROCPLUG_HEALTH_CHECK_TIMEOUT"
PROCPLUG_HEALTH_CHECK_INTERVAL_ENV: t.Final[str] = "PROCPLUG_HEALTH_CHECK_INTERVAL"
PROCPLUG_HEARTBEAT_INTERVAL_ENV: t.Final[str] = "PROCPLUG_HEARTBEAT_INTERVAL"

# HTTP timeout for requests the host makes to the plugin (health + exec).
DEFAULT_FUNCTION_TIMEOUT: t.Final[float] = 120.0
# Total time the host waits for the plugin to become healthy.
DEFAULT_HEALTH_CHECK_TIMEOUT: t.Final[float] = 5.0
# Delay between health probes while waiting.
DEFAULT_HEALTH_CHECK_INTERVAL: t.Final[float] = 0.15

_ENV_FIELDS: t.Final[tuple[tuple[str, str], ...]] = (
    ("function_timeout", PROCPLUG_FUNCTION_TIMEOUT_ENV),
    ("health_check_timeout", PROCPLUG_HEALTH_CHECK_TIMEOUT_ENV),
    ("health_check_interval", PROCPLUG_HEALTH_CHECK_INTERVAL_ENV),
    ("heartbeat_interval", PROCPLUG_HEARTBEAT_INTERVAL_ENV),
)


@dc.dataclass(frozen=True, slots=True)
class ClientConfig:
    """Timeouts and intervals used by :class:`~procplug.client.Client`.

    All values are in seconds. A ``heartbeat_interval`` of ``0`` disables
    background health supervision.
    """

    function_timeout: float = DEFAULT_FUNCTION_TIMEOUT
    health_check_timeout: float = DEFAULT_HEALTH_CHECK_TIMEOUT
    health_check_interval: float = DEFAULT_HEALTH_CHECK_INTERVAL
    heartbeat_interval: float = 0.0

    def __post_init__(self) -> None:
        """Validate timeout values to catch misconfiguration early."""
        validate_positive_finite_timeout(self.function_timeout, name="function_timeout")
        validate_positive_finite_timeout(
            self.health_check_timeout, name="health_check_timeout"
        )
        validate_positive_finite_timeout(
            self.health_check_interval, name="health_check_interval"
        )
        validate_optional_interval(self.heartbeat_interval, name="heartbeat_interval")

    @property
    def supervised(self) -> bool:
        """Return ``True`` when background health supervision is enabled."""
        return self.heartbeat_interval > 0

    @classmethod
    def from_env(
        cls,
        environ: t.Mapping[str, str] | None = None,
        **overrides: float,
    ) -> ClientConfig:
        """Build a configuration from ``PROCPLUG_*`` environment variables.

        Explicit keyword *overrides* take precedence over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, float] = {}
        for field_name, env_name in _ENV_FIELDS:
            raw = env.get(env_name)
            if raw is None or not raw.strip():
                continue
            values[field_name] = _parse_seconds(env_name, raw)
        values.update(overrides)
        return cls(**values)


def _parse_seconds(env_name: str, raw: str) -> float:
    try:
        value = float(raw)
        if value < 0 or not math.isfinite(value):
            raise ValueError  # noqa: TRY301 - unify error handling
    except ValueError:
        msg = f"{env_name}: invalid number of seconds: {raw!r}"
        raise ValueError(msg) from None
    return value


__all__ = [
    "DEFAULT_FUNCTION_TIMEOUT",
    "DEFAULT_HEALTH_CHECK_INTERVAL",
    "DEFAULT_HEALTH_CHECK_TIMEOUT",
    "PROCPLUG_FUNCTION_TIMEOUT_ENV",
    "PROCPLUG_HEALTH_CHECK_INTERVAL_ENV",
    "PROCPLUG_HEALTH_CHECK_TIMEOUT_ENV",
    "PROCPLUG_HEARTBEAT_INTERVAL_ENV",
    "ClientConfig",
]
