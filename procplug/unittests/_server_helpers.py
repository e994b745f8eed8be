"""Helpers for running a :class:`PluginServer` inside the test process."""

from __future__ import annotations

import contextlib
import io
import threading
import time
import typing as t

import httpx

from procplug.server import LOOPBACK_HOST, PluginServer

if t.TYPE_CHECKING:  # pragma: no cover - used only for typing
    from collections.abc import Iterator


@contextlib.contextmanager
def serving(server: PluginServer, timeout: float = 5.0) -> Iterator[str]:
    """Run *server* on a background thread and yield its base URL."""
    thread = threading.Thread(target=server.start, name="plugin-server", daemon=True)
    thread.start()
    deadline = time.monotonic() + timeout
    while server.port is None:
        if not thread.is_alive() or time.monotonic() > deadline:
            msg = "plugin server did not bind"
            raise RuntimeError(msg)
        time.sleep(0.01)
    try:
        yield f"http://{LOOPBACK_HOST}:{server.port}"
    finally:
        server.stop()
        thread.join(timeout)


def loopback_client() -> httpx.Client:
    """Return an HTTP client that ignores proxy settings from the environment."""
    return httpx.Client(timeout=5.0, trust_env=False)


def quiet_server() -> tuple[PluginServer, io.StringIO]:
    """Return a server announcing into a buffer instead of stdout."""
    announce = io.StringIO()
    return PluginServer(announce=announce, poll_interval=0.05), announce
