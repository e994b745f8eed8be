"""HTTP server hosting plugin functions on an ephemeral loopback port.

The plugin announces its port to the parent process by writing it as the
first line on standard output. Everything else, logging included, must go
elsewhere (stderr by default).
"""

from __future__ import annotations

import dataclasses as dc
import functools
import http
import http.server
import json
import logging
import socketserver
import sys
import threading
import typing as t
from urllib.parse import urlsplit

from ._validators import validate_function_name
from .endpoint import EndpointResponse, FunctionEndpoint, RequestContext
from .errors import LifecycleError

if t.TYPE_CHECKING:  # pragma: no cover - used only for typing
    from .schema import Schema
    from .validator import Validator

logger = logging.getLogger(__name__)

LOOPBACK_HOST: t.Final[str] = "127.0.0.1"
HEALTH_PATH: t.Final[str] = "/_healthz"
SCHEMAS_PATH: t.Final[str] = "/_schemas"
REQUEST_READ_TIMEOUT: t.Final[float] = 5.0
_RESERVED_NAMES: t.Final[frozenset[str]] = frozenset(
    {HEALTH_PATH.lstrip("/"), SCHEMAS_PATH.lstrip("/")}
)

_F = t.TypeVar("_F", bound=t.Callable[..., t.Any])


@dc.dataclass(frozen=True, slots=True)
class _Request:
    method: str
    path: str
    body: bytes
    headers: dict[str, str]
    client_address: str


_Route = t.Callable[[_Request], EndpointResponse]


class PluginServer:
    """Serve registered functions plus health and schema introspection paths.

    Register every function before calling :meth:`start`; the routing table
    is read concurrently by request threads once serving begins and is not
    modified afterwards.
    """

    def __init__(
        self,
        *,
        announce: t.TextIO | None = None,
        poll_interval: float = 0.5,
    ) -> None:
        """Create a server announcing its port on *announce* (stdout by default)."""
        self._announce = announce
        self._poll_interval = poll_interval
        self._functions: dict[str, Schema] = {}
        self._routes: dict[str, _Route] = {
            HEALTH_PATH: self._health,
            SCHEMAS_PATH: self._list_schemas,
        }
        self._lock = threading.Lock()
        self._server: _InnerServer | None = None
        self._port: int | None = None
        self._serving = False
        self._stop_requested = False
        self._serve_thread: threading.Thread | None = None
        self._cancelled = threading.Event()

    @property
    def port(self) -> int | None:
        """Return the bound port once it has been announced, else ``None``."""
        return self._port

    @property
    def functions(self) -> dict[str, Schema]:
        """Return a copy of the function table."""
        return dict(self._functions)

    def register_function(
        self, name: str, endpoint: FunctionEndpoint[t.Any, t.Any]
    ) -> None:
        """Expose *endpoint* at ``/<name>`` and its schema at ``/<name>/_schemas``.

        Invalid names are logged and skipped so the remaining functions can
        still be served. Registering an existing name replaces it.
        """
        try:
            validate_function_name(name)
            if name in _RESERVED_NAMES:
                msg = f"function name {name!r} is reserved"
                raise ValueError(msg)  # noqa: TRY301 - share the skip path
        except ValueError as exc:
            logger.error("Invalid function name %r: %s", name, exc)  # noqa: TRY400
            return

        with self._lock:
            if self._server is not None or self._stop_requested:
                msg = "functions must be registered before the plugin server starts"
                raise LifecycleError(msg)
            if name in self._functions:
                logger.warning("Replacing previously registered function %r", name)
            self._functions[name] = endpoint.schema
            self._routes[f"/{name}"] = functools.partial(self._invoke, name, endpoint)
            self._routes[f"/{name}{SCHEMAS_PATH}"] = functools.partial(
                self._function_schema, name
            )

    def function(
        self, name: str, *, validator: Validator[t.Any] | None = None
    ) -> t.Callable[[_F], _F]:
        """Register the decorated callable under *name*."""

        def decorator(fn: _F) -> _F:
            self.register_function(name, FunctionEndpoint(fn, validator))
            return fn

        return decorator

    def start(self) -> None:
        """Bind, announce the port and serve until :meth:`stop` is called.

        Raises :class:`OSError` when the port cannot be bound.
        """
        with self._lock:
            if self._stop_requested:
                msg = "plugin server has been stopped"
                raise LifecycleError(msg)
            if self._server is not None:
                msg = "plugin server already started"
                raise LifecycleError(msg)
            try:
                server = _InnerServer((LOOPBACK_HOST, 0), self)
            except OSError:
                logger.exception("Failed to bind to port")
                raise
            self._server = server

        try:
            port = int(server.server_address[1])
            self._announce_port(port)
            self._port = port
            with self._lock:
                if self._stop_requested:
                    return
                self._serving = True
                self._serve_thread = threading.current_thread()
            logger.info("Plugin serving on %s:%d", LOOPBACK_HOST, port)
            server.serve_forever(poll_interval=self._poll_interval)
        finally:
            server.server_close()

    def stop(self) -> None:
        """Stop serving; safe to call repeatedly and before :meth:`start`."""
        with self._lock:
            self._stop_requested = True
            server = self._server
            serving = self._serving
            serve_thread = self._serve_thread
        self._cancelled.set()
        if server is None or not serving:
            return
        if serve_thread is threading.current_thread():
            # shutdown() waits for serve_forever(), which this thread is running.
            threading.Thread(target=server.shutdown, daemon=True).start()
            return
        server.shutdown()

    def _announce_port(self, port: int) -> None:
        stream = self._announce if self._announce is not None else sys.stdout
        # The first line on stdout is the whole handshake with the parent.
        stream.write(f"{port}\n")
        stream.flush()

    def dispatch(self, request: _Request) -> EndpointResponse:
        """Route *request* to the matching handler."""
        route = self._routes.get(request.path)
        if route is None:
            return EndpointResponse.text(http.HTTPStatus.NOT_FOUND, "not found")
        return route(request)

    @staticmethod
    def _health(_request: _Request) -> EndpointResponse:
        return EndpointResponse.text(http.HTTPStatus.OK, "ok")

    def _list_schemas(self, _request: _Request) -> EndpointResponse:
        listing = {name: schema.to_dict() for name, schema in self._functions.items()}
        return EndpointResponse.json(json.dumps(listing).encode("utf-8"))

    def _function_schema(self, name: str, _request: _Request) -> EndpointResponse:
        schema = self._functions[name]
        return EndpointResponse.json(json.dumps(schema.to_dict()).encode("utf-8"))

    def _invoke(
        self, name: str, endpoint: FunctionEndpoint[t.Any, t.Any], request: _Request
    ) -> EndpointResponse:
        ctx = RequestContext(
            function=name,
            headers=request.headers,
            client_address=request.client_address,
            cancelled=self._cancelled,
        )
        return endpoint.handle(request.method, request.body, ctx)


class _RequestHandler(http.server.BaseHTTPRequestHandler):
    """Translate HTTP requests into :class:`_Request` objects."""

    server: _InnerServer
    timeout = REQUEST_READ_TIMEOUT

    def _dispatch(self) -> None:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            self._write(
                EndpointResponse.text(
                    http.HTTPStatus.BAD_REQUEST, "invalid Content-Length header"
                )
            )
            return
        body = self.rfile.read(length) if length > 0 else b""
        request = _Request(
            method=self.command,
            path=urlsplit(self.path).path,
            body=body,
            headers=dict(self.headers.items()),
            client_address=self.address_string(),
        )
        try:
            response = self.server.outer.dispatch(request)
        except Exception:  # pragma: no cover - handlers report their own errors
            logger.exception("Unhandled error serving %s %s", self.command, self.path)
            response = EndpointResponse.text(
                http.HTTPStatus.INTERNAL_SERVER_ERROR, "internal server error"
            )
        self._write(response)

    def _write(self, response: EndpointResponse) -> None:
        try:
            self.send_response(response.status)
            self.send_header("Content-Type", response.content_type)
            self.send_header("Content-Length", str(len(response.body)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(response.body)
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.debug("Client went away before the response was sent: %s", exc)

    do_GET = _dispatch  # noqa: N815
    do_POST = _dispatch  # noqa: N815
    do_PUT = _dispatch  # noqa: N815
    do_PATCH = _dispatch  # noqa: N815
    do_DELETE = _dispatch  # noqa: N815
    do_HEAD = _dispatch  # noqa: N815
    do_OPTIONS = _dispatch  # noqa: N815
    do_TRACE = _dispatch  # noqa: N815
    do_CONNECT = _dispatch  # noqa: N815

    def log_message(self, format: str, *args: t.Any) -> None:  # noqa: A002, ANN401
        """Send request logging to the module logger instead of stderr."""
        logger.debug("%s - %s", self.address_string(), format % args)


class _InnerServer(http.server.ThreadingHTTPServer):
    """Threaded HTTP server passing requests to :class:`PluginServer`."""

    daemon_threads = True

    def __init__(self, address: tuple[str, int], outer: PluginServer) -> None:
        self.outer = outer
        super().__init__(address, _RequestHandler)

    def server_bind(self) -> None:
        """Bind without the reverse DNS lookup done by :class:`HTTPServer`."""
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = str(host)
        self.server_port = int(port)


__all__ = [
    "HEALTH_PATH",
    "LOOPBACK_HOST",
    "SCHEMAS_PATH",
    "PluginServer",
]
