"""Pytest plugin providing the ``plugin_client`` fixture."""

from __future__ import annotations

import logging
import os
import typing as t

import pytest

from .client import Client
from .config import ClientConfig

logger = logging.getLogger(__name__)

PluginClientFactory = t.Callable[..., Client]


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register ini options for the plugin."""
    parser.addini(
        "procplug_health_check_timeout",
        (
            "Seconds a plugin started through the plugin_client fixture may "
            "take to become healthy."
        ),
        default="",
    )


def _default_config(request: pytest.FixtureRequest) -> ClientConfig:
    """Return the environment configuration with ini overrides applied."""
    raw = str(request.config.getini("procplug_health_check_timeout")).strip()
    if not raw:
        return ClientConfig.from_env()
    try:
        timeout = float(raw)
    except ValueError:
        msg = f"procplug_health_check_timeout must be a number, got {raw!r}"
        raise pytest.UsageError(msg) from None
    return ClientConfig.from_env(health_check_timeout=timeout)


@pytest.fixture
def plugin_client(
    request: pytest.FixtureRequest,
) -> t.Generator[PluginClientFactory, None, None]:
    """Return a factory that opens plugin clients closed at teardown.

    The factory takes the plugin path plus the keyword arguments accepted by
    :class:`Client` and returns the opened client.
    """
    default_config = _default_config(request)
    clients: list[Client] = []

    def factory(
        path: str | os.PathLike[str],
        *,
        args: t.Sequence[str] = (),
        config: ClientConfig | None = None,
    ) -> Client:
        client = Client(path, args=args, config=config or default_config)
        client.open()
        clients.append(client)
        return client

    yield factory

    failed = False
    for client in reversed(clients):
        try:
            client.close()
        except OSError:
            logger.exception("Error closing plugin %s", client.path)
            failed = True
    if failed:
        pytest.fail("plugin_client fixture cleanup failed")


__all__ = ["PluginClientFactory", "plugin_client"]
