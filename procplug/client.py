"""Host-side lifecycle management for plugin processes.

A :class:`Client` launches a plugin executable, learns its port from the
first line the plugin writes to stdout, waits until ``/_healthz`` answers
and, when a heartbeat interval is configured, keeps probing it in the
background. Every teardown path (explicit :meth:`Client.close`, a failed
:meth:`Client.open` or a failed heartbeat) funnels through one idempotent
session shutdown that kills and reaps the child process.
"""

from __future__ import annotations

import contextlib
import dataclasses as dc
import http
import logging
import os
import stat
import subprocess
import threading
import time
import typing as t
from pathlib import Path

import httpx

from ._validators import validate_port
from .config import ClientConfig
from .connection import Connection
from .errors import LifecycleError, PluginExecutionError, PluginNotFoundError
from .function import Function
from .schema import parse_schemas
from .server import HEALTH_PATH, SCHEMAS_PATH

if t.TYPE_CHECKING:  # pragma: no cover - used only for typing
    from types import TracebackType

    from .schema import Schema

logger = logging.getLogger(__name__)

# How long to wait for a killed plugin to be reaped before giving up.
KILL_WAIT_TIMEOUT: t.Final[float] = 5.0
# Extra time given to a worker thread after its operation was cancelled.
IO_CANCEL_GRACE: t.Final[float] = 0.05
# How often a caller-supplied cancel event is checked while a session lives.
CANCEL_POLL_INTERVAL: t.Final[float] = 0.05

_T = t.TypeVar("_T")
_In = t.TypeVar("_In")
_Out = t.TypeVar("_Out")


class HealthSignal:
    """One-shot notification that a plugin session has ended.

    The signal fires exactly once: either when background supervision found
    the plugin unhealthy (after the client has been closed) or when the
    client is closed explicitly. :attr:`reason` tells the two apart.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None

    @property
    def reason(self) -> str | None:
        """Return why the signal fired, or ``None`` while it has not."""
        return self._reason

    def is_set(self) -> bool:
        """Return ``True`` once the signal has fired."""
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the signal fires or *timeout* elapses."""
        return self._event.wait(timeout)

    def fire(self, reason: str) -> bool:
        """Fire the signal; return ``False`` when it had already fired."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
        return True


@dc.dataclass(eq=False)
class _Session:
    """State of one plugin process, from spawn to teardown."""

    config: ClientConfig
    http: httpx.Client
    stop_event: threading.Event = dc.field(default_factory=threading.Event)
    process: subprocess.Popen[str] | None = None
    connection: Connection | None = None
    signal: HealthSignal | None = None
    supervisor: threading.Thread | None = None
    drain: threading.Thread | None = None
    stdout_abandoned: bool = False
    ready: bool = False
    _closed: bool = False
    _lock: threading.Lock = dc.field(default_factory=threading.Lock)

    @classmethod
    def create(cls, config: ClientConfig) -> _Session:
        return cls(
            config=config,
            http=httpx.Client(timeout=config.function_timeout, trust_env=False),
        )

    def attach(self, process: subprocess.Popen[str]) -> None:
        """Take ownership of *process*, killing it if teardown already ran."""
        with self._lock:
            self.process = process
            closed = self._closed
        if closed:
            self._terminate_process()
            msg = "plugin start was cancelled"
            raise PluginExecutionError(msg)

    def mark_ready(self) -> None:
        with self._lock:
            if self._closed:
                msg = "plugin start was cancelled"
                raise PluginExecutionError(msg)
            self.ready = True

    def shutdown(self, reason: str) -> None:
        """Tear the session down once; later calls return immediately."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.ready = False
        self.stop_event.set()
        if self.connection is not None:
            self.connection.revoke()
        try:
            self._terminate_process()
        finally:
            self._release(reason)

    def _terminate_process(self) -> None:
        process = self.process
        if process is None:
            return
        if process.poll() is None:
            # The process may exit between poll() and kill().
            with contextlib.suppress(ProcessLookupError):
                process.kill()
        try:
            process.wait(timeout=KILL_WAIT_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning(
                "Plugin process %d was not reaped within %.1fs",
                process.pid,
                KILL_WAIT_TIMEOUT,
            )

    def _release(self, reason: str) -> None:
        process = self.process
        if (
            process is not None
            and process.stdout is not None
            and self.drain is None
            and not self.stdout_abandoned
        ):
            process.stdout.close()
        self.http.close()
        if self.signal is not None:
            self.signal.fire(reason)
        supervisor = self.supervisor
        if supervisor is not None and supervisor is not threading.current_thread():
            supervisor.join(self.config.health_check_timeout + IO_CANCEL_GRACE)


def _run_with_deadline(
    func: t.Callable[[], _T],
    *,
    timeout: float,
    cancel: t.Callable[[], None],
) -> _T:
    """Execute *func* on a worker thread, cancelling it after *timeout*."""
    outcome: dict[str, t.Any] = {}

    def _target() -> None:
        try:
            outcome["value"] = func()
        except BaseException as exc:  # noqa: BLE001 - propagate cross-thread errors
            outcome["error"] = exc

    thread = threading.Thread(target=_target, name="procplug-handshake", daemon=True)
    thread.start()
    thread.join(timeout)
    if thread.is_alive():
        cancel()
        thread.join(IO_CANCEL_GRACE)
        msg = "operation timed out"
        raise TimeoutError(msg)
    if (error := outcome.get("error")) is not None:
        raise t.cast("BaseException", error)
    return t.cast("_T", outcome["value"])


def _check_executable(path: Path) -> Path:
    """Return the absolute *path* after checking it can be executed."""
    try:
        st = path.stat()
    except OSError as exc:
        raise PluginNotFoundError(path, exc.strerror) from exc
    if stat.S_ISDIR(st.st_mode):
        raise PluginNotFoundError(path, "is a directory")
    if not st.st_mode & 0o111 or not os.access(path, os.X_OK):
        msg = f"plugin must be an executable: {path}"
        raise PluginExecutionError(msg)
    return path.absolute()


def _drain_stdout(stream: t.TextIO, pid: int) -> None:
    """Log everything the plugin writes to stdout after the handshake."""
    try:
        for line in stream:
            logger.debug("plugin[%d] stdout: %s", pid, line.rstrip("\n"))
    except (OSError, ValueError) as exc:
        logger.debug("Stopped reading plugin[%d] stdout: %s", pid, exc)
    finally:
        with contextlib.suppress(OSError):
            stream.close()


class Client:
    """Launch and supervise one plugin executable.

    Configuration defaults come from :meth:`ClientConfig.from_env` when no
    *config* is given. A client can be reopened after :meth:`close`; each
    :meth:`open` starts a fresh process with a fresh connection.

    Example::

        with Client("./plugins/hello") as client:
            hello = client.function("hello", HelloInput, HelloOutput)
            print(hello.call(HelloInput(name="world")))
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        args: t.Sequence[str] = (),
        config: ClientConfig | None = None,
    ) -> None:
        self._path = Path(path)
        self._args = tuple(str(arg) for arg in args)
        self._config = config if config is not None else ClientConfig.from_env()
        self._lock = threading.Lock()
        self._session: _Session | None = None

    @property
    def path(self) -> Path:
        """Return the plugin executable path as given."""
        return self._path

    @property
    def config(self) -> ClientConfig:
        """Return the timeouts this client uses."""
        return self._config

    @property
    def pid(self) -> int | None:
        """Return the plugin process id while a process is running."""
        session = self._session
        if session is None or session.process is None:
            return None
        return session.process.pid

    @property
    def connection(self) -> Connection | None:
        """Return the live connection, or ``None`` when not open."""
        session = self._session
        if session is None or not session.ready:
            return None
        return session.connection

    def __enter__(self) -> Client:
        """Open the plugin and return the client."""
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Close the plugin when leaving a context."""
        self.close()

    def open(self, cancel: threading.Event | None = None) -> None:
        """Start the plugin and wait until it reports healthy.

        Raises :class:`LifecycleError` when a plugin is already running,
        :class:`PluginNotFoundError` when the path is missing and
        :class:`PluginExecutionError` for every other startup failure. A
        failed start leaves no process behind.

        When *cancel* is given, setting it closes the session: during startup
        this aborts :meth:`open`, afterwards it stops the running plugin.
        """
        with self._lock:
            if self._session is not None:
                msg = "plugin is already running"
                raise LifecycleError(msg)
            session = _Session.create(self._config)
            self._session = session

        if cancel is not None:
            threading.Thread(
                target=self._watch_cancel,
                args=(session, cancel),
                name="procplug-cancel",
                daemon=True,
            ).start()
        try:
            self._start(session)
        except BaseException:
            try:
                self._discard(session, "failed to start")
            except OSError:
                logger.exception("Error cleaning up plugin %s", self._path)
            raise

    def close(self) -> None:
        """Stop the plugin process; safe to call repeatedly."""
        with self._lock:
            session, self._session = self._session, None
        if session is None:
            return
        logger.debug("Closing plugin %s", self._path)
        session.shutdown("closed")

    def schemas(self) -> dict[str, Schema]:
        """Return the schema documents of every function the plugin serves."""
        session, connection = self._ready()
        try:
            response = session.http.get(connection.url_for(SCHEMAS_PATH))
        except (httpx.HTTPError, RuntimeError) as exc:
            msg = f"error fetching schemas: {exc}"
            raise PluginExecutionError(msg) from exc
        if response.status_code != http.HTTPStatus.OK:
            msg = (
                f"error fetching schemas: status {response.status_code}: "
                f"{response.text}"
            )
            raise PluginExecutionError(msg)
        try:
            return parse_schemas(response.json())
        except (TypeError, ValueError) as exc:
            msg = f"error decoding schemas: {exc}"
            raise PluginExecutionError(msg) from exc

    def health_signal(self) -> HealthSignal | None:
        """Return the signal of the current supervised session, if any."""
        session = self._session
        if session is None or not session.ready:
            return None
        return session.signal

    def function(
        self,
        name: str,
        input_type: type[_In] | t.Any = t.Any,  # noqa: ANN401
        output_type: type[_Out] | t.Any = t.Any,  # noqa: ANN401
    ) -> Function[_In, _Out]:
        """Return a stub for *name* bound to the current connection."""
        return Function(name, self.connection, input_type, output_type)

    def _ready(self) -> tuple[_Session, Connection]:
        session = self._session
        if session is None or not session.ready or session.connection is None:
            msg = "plugin is not connected"
            raise LifecycleError(msg)
        return session, session.connection

    def _watch_cancel(self, session: _Session, cancel: threading.Event) -> None:
        while not session.stop_event.is_set():
            if cancel.wait(CANCEL_POLL_INTERVAL):
                logger.info("Plugin %s cancelled by caller", self._path)
                try:
                    self._discard(session, "cancelled")
                except OSError:
                    logger.exception("Error cleaning up plugin %s", self._path)
                return

    def _discard(self, session: _Session, reason: str) -> None:
        with self._lock:
            if self._session is session:
                self._session = None
        session.shutdown(reason)

    def _start(self, session: _Session) -> None:
        executable = _check_executable(self._path)
        try:
            process = subprocess.Popen(  # noqa: S603 - the caller chose the plugin
                [str(executable), *self._args],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            msg = f"failed to start {executable}: {exc}"
            raise PluginExecutionError(msg) from exc
        session.attach(process)
        logger.debug("Started plugin %s (pid %d)", executable, process.pid)

        port = self._read_port(session, process)
        connection = Connection.for_port(port, self._config.function_timeout)
        session.connection = connection

        stdout = t.cast("t.TextIO", process.stdout)
        drain = threading.Thread(
            target=_drain_stdout,
            args=(stdout, process.pid),
            name=f"procplug-stdout-{process.pid}",
            daemon=True,
        )
        session.drain = drain
        drain.start()

        self._wait_for_health(session)

        if self._config.supervised:
            session.signal = HealthSignal()
        session.mark_ready()
        if self._config.supervised:
            supervisor = threading.Thread(
                target=self._supervise,
                args=(session,),
                name=f"procplug-supervisor-{process.pid}",
                daemon=True,
            )
            session.supervisor = supervisor
            supervisor.start()
        logger.info("Plugin %s ready at %s", executable, connection.base_url)

    def _read_port(self, session: _Session, process: subprocess.Popen[str]) -> int:
        stdout = t.cast("t.TextIO", process.stdout)
        timeout = self._config.health_check_timeout
        try:
            line = _run_with_deadline(
                stdout.readline, timeout=timeout, cancel=process.kill
            )
        except TimeoutError as exc:
            # The reader thread may still hold the stream.
            session.stdout_abandoned = True
            msg = f"plugin did not announce a port within {timeout}s"
            raise PluginExecutionError(msg) from exc
        except (OSError, ValueError) as exc:
            msg = f"error reading port from plugin: {exc}"
            raise PluginExecutionError(msg) from exc

        if not line.endswith("\n"):
            msg = (
                "plugin exited before announcing its port"
                if not line
                else f"incomplete port line from plugin: {line!r}"
            )
            raise PluginExecutionError(msg)
        try:
            return validate_port(line)
        except ValueError as exc:
            raise PluginExecutionError(str(exc)) from exc

    def _wait_for_health(self, session: _Session) -> None:
        """Poll ``/_healthz`` until it answers 200 or the deadline passes."""
        config = self._config
        process = t.cast("subprocess.Popen[str]", session.process)
        url = t.cast("Connection", session.connection).url_for(HEALTH_PATH)
        deadline = time.monotonic() + config.health_check_timeout
        last_error = "no response"
        while True:
            if session.stop_event.is_set():
                msg = "plugin was closed while waiting for it to become healthy"
                raise PluginExecutionError(msg)
            returncode = process.poll()
            if returncode is not None:
                msg = f"plugin exited with status {returncode}"
                raise PluginExecutionError(msg)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                msg = (
                    f"plugin did not become healthy within "
                    f"{config.health_check_timeout}s: {last_error}"
                )
                raise PluginExecutionError(msg)

            try:
                response = session.http.get(
                    url, timeout=min(remaining, config.function_timeout)
                )
            except (httpx.HTTPError, RuntimeError) as exc:
                last_error = str(exc) or exc.__class__.__name__
            else:
                if response.status_code == http.HTTPStatus.OK:
                    return
                last_error = f"status {response.status_code}"
            logger.debug("Health probe of %s failed: %s", url, last_error)

            pause = min(config.health_check_interval, deadline - time.monotonic())
            session.stop_event.wait(max(pause, 0))

    def _supervise(self, session: _Session) -> None:
        interval = self._config.heartbeat_interval
        while not session.stop_event.wait(interval):
            try:
                self._wait_for_health(session)
            except PluginExecutionError as exc:
                if session.stop_event.is_set():
                    return
                logger.warning(
                    "Plugin %s failed its health check: %s", self._path, exc
                )
                try:
                    self._discard(session, f"health check failed: {exc}")
                except OSError:
                    logger.exception("Error cleaning up plugin %s", self._path)
                return


__all__ = [
    "CANCEL_POLL_INTERVAL",
    "IO_CANCEL_GRACE",
    "KILL_WAIT_TIMEOUT",
    "Client",
    "HealthSignal",
]
