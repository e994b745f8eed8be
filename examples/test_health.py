"""Example test: background supervision notices a plugin that stops."""

from __future__ import annotations

import typing as t
from pathlib import Path

import pytest

from procplug import ClientConfig

pytest_plugins = ("procplug.pytest_plugin",)

if t.TYPE_CHECKING:  # pragma: no cover - typing only
    from conftest import PluginExecutableFactory
    from procplug.pytest_plugin import PluginClientFactory

pytestmark = pytest.mark.requires_posix

PLUGINS = Path(__file__).resolve().parent / "plugins"


def test_health_signal_fires_when_plugin_stops(
    plugin_client: PluginClientFactory, plugin_executable: PluginExecutableFactory
) -> None:
    """A supervised client closes itself once health checks fail."""
    client = plugin_client(
        plugin_executable(PLUGINS / "greeter.py"),
        args=["--stop-after", "1"],
        config=ClientConfig(heartbeat_interval=0.2),
    )
    signal = client.health_signal()
    assert signal is not None

    assert signal.wait(10.0)
    assert signal.reason is not None
    assert signal.reason.startswith("health check failed")
    assert client.connection is None
