"""Address and timeout of a reachable plugin."""

from __future__ import annotations

import dataclasses as dc
import threading

from .config import DEFAULT_FUNCTION_TIMEOUT
from .server import LOOPBACK_HOST


@dc.dataclass(frozen=True, slots=True)
class Connection:
    """Immutable description of how to reach one running plugin.

    The owning :class:`~procplug.client.Client` revokes the connection when
    the plugin process is torn down; stubs check :attr:`closed` before
    sending anything so a dead connection fails fast instead of reaching
    whatever process reuses the port.
    """

    base_url: str
    function_timeout: float = DEFAULT_FUNCTION_TIMEOUT
    _revoked: threading.Event = dc.field(
        default_factory=threading.Event, init=False, repr=False, compare=False
    )

    @classmethod
    def for_port(
        cls, port: int, function_timeout: float = DEFAULT_FUNCTION_TIMEOUT
    ) -> Connection:
        """Return a connection to a plugin listening on loopback *port*."""
        return cls(
            base_url=f"http://{LOOPBACK_HOST}:{port}",
            function_timeout=function_timeout,
        )

    @property
    def closed(self) -> bool:
        """Return ``True`` once the owning client has torn the plugin down."""
        return self._revoked.is_set()

    def url_for(self, path: str) -> str:
        """Return the absolute URL of *path* on this plugin."""
        return f"{self.base_url}/{path.lstrip('/')}"

    def revoke(self) -> None:
        """Mark the connection unusable. Called by the owning client."""
        self._revoked.set()


__all__ = ["Connection"]
