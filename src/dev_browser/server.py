"""
Browser server lifecycle.

Startup: profile directory, persistent browser context, debugging endpoint
discovery (CDP mode only), then the HTTP listener. Shutdown is one idempotent
operation reachable from signals, loop faults and ``stop()``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import socket
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

import httpx
import uvicorn

from .actions import GatedActions
from .allowlist import HostAllowlist
from .api import build_app
from .config import ServeOptions
from .errors import StartupError
from .interceptor import install_request_gate, suppress_popups
from .logging_utils import log_event, mask_token
from .registry import SessionRegistry

logger = logging.getLogger(__name__)

LISTEN_TIMEOUT_SECONDS = 10.0
LISTENER_STOP_TIMEOUT_SECONDS = 5.0
_SHUTDOWN_SIGNALS = tuple(
    sig for sig in (getattr(signal, name, None) for name in ("SIGINT", "SIGTERM", "SIGHUP")) if sig
)

Launcher = Callable[[ServeOptions], Awaitable[tuple[Any, Any]]]


class ServerState(str, Enum):
    UNSTARTED = "unstarted"
    LAUNCHING = "launching"
    LISTENING = "listening"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


async def launch_persistent_context(options: ServeOptions) -> tuple[Any, Any]:
    """Launch Chromium with a persistent profile; returns (playwright, context)."""
    from playwright.async_api import async_playwright

    args: List[str] = list(options.extra_browser_args)
    launch_kwargs: dict[str, Any] = {"headless": options.headless}
    if options.lockdown:
        # Service workers bypass context routing.
        launch_kwargs["service_workers"] = "block"
    else:
        args.extend(
            [
                f"--remote-debugging-port={options.cdp_port}",
                f"--remote-debugging-address={options.cdp_host}",
            ]
        )

    playwright = await async_playwright().start()
    try:
        context = await playwright.chromium.launch_persistent_context(
            str(options.user_data_dir()),
            args=args,
            **launch_kwargs,
        )
    except Exception:
        await playwright.stop()
        raise
    return playwright, context


def _http_host(host: str) -> str:
    if ":" in host and not host.startswith("["):
        return f"[{host}]"
    return host


async def fetch_debugger_url(
    host: str,
    port: int,
    *,
    retries: int = 5,
    delay_ms: int = 500,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> str:
    """Read ``webSocketDebuggerUrl`` from the browser, backing off exponentially."""
    url = f"http://{_http_host(host)}:{port}/json/version"
    last_error: Optional[Exception] = None
    # The endpoint is local; proxy settings from the environment must not apply.
    async with httpx.AsyncClient(timeout=5.0, transport=transport, trust_env=False) as client:
        for attempt in range(retries):
            try:
                resp = await client.get(url)
                resp.raise_for_status()
                ws_endpoint = (resp.json() or {}).get("webSocketDebuggerUrl")
                if not ws_endpoint:
                    raise ValueError("response has no webSocketDebuggerUrl")
                return str(ws_endpoint)
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc
                logger.debug("CDP endpoint probe %s/%s failed: %s", attempt + 1, retries, exc)
                if attempt < retries - 1:
                    await sleep(delay_ms / 1000.0 * (2 ** attempt))
    raise StartupError(f"Failed to read CDP endpoint after {retries} retries: {last_error}")


def _bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host.strip("[]"), port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


class _ControlServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to BrowserServer."""

    def install_signal_handlers(self) -> None:
        return None

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class BrowserServer:
    """Owns the browser context, the session registry and the HTTP listener."""

    def __init__(
        self,
        options: ServeOptions,
        *,
        launcher: Optional[Launcher] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.options = options
        self.state = ServerState.UNSTARTED
        self.ws_endpoint: Optional[str] = None
        self.registry: Optional[SessionRegistry] = None
        self.app: Any = None

        self._launcher = launcher or launch_persistent_context
        self._transport = transport
        self._playwright: Any = None
        self._context: Any = None
        self._server: Optional[_ControlServer] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._shutdown_started = False
        self._shutdown_task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()
        self._installed_signals: List[int] = []

    @property
    def port(self) -> int:
        return self.options.port

    @property
    def context(self) -> Any:
        return self._context

    async def start(self) -> "BrowserServer":
        if self.state is not ServerState.UNSTARTED:
            raise RuntimeError(f"server cannot start from state {self.state.value}")

        options = self.options.resolved()
        options.validate()
        self.options = options
        allowlist = HostAllowlist(options.allowed_hosts) if options.lockdown else None

        self.state = ServerState.LAUNCHING
        try:
            user_data_dir = options.user_data_dir()
            user_data_dir.mkdir(parents=True, exist_ok=True)
            log_event(logger, level=logging.INFO, event="launching", profile=user_data_dir, mode=options.mode)

            self._playwright, self._context = await self._launcher(options)

            if allowlist is not None:
                await install_request_gate(self._context, allowlist)
            else:
                self.ws_endpoint = await fetch_debugger_url(
                    options.cdp_host,
                    options.cdp_port,
                    retries=options.cdp_retries,
                    delay_ms=options.cdp_retry_delay_ms,
                    transport=self._transport,
                )
                logger.info("CDP WebSocket endpoint: %s", self.ws_endpoint)

            self.registry = SessionRegistry(
                self._context,
                lockdown=options.lockdown,
                page_timeout_ms=options.page_timeout_ms,
                on_page_created=suppress_popups if options.lockdown else None,
            )
            actions = None
            if allowlist is not None:
                artifact_root = options.artifact_root()
                artifact_root.mkdir(parents=True, exist_ok=True)
                actions = GatedActions(
                    allowlist,
                    artifact_root,
                    action_timeout_ms=options.action_timeout_ms,
                    snapshot_limit=options.snapshot_limit,
                )
            self.app = build_app(options, self.registry, actions=actions, ws_endpoint=self.ws_endpoint)
            await self._start_listener()
        except BaseException:
            await self._cleanup_partial_start()
            raise

        self.state = ServerState.LISTENING
        log_event(
            logger,
            level=logging.INFO,
            event="listening",
            url=f"http://{_http_host(options.host)}:{options.port}",
            mode=options.mode,
            auth=options.require_auth,
            token=mask_token(options.auth_token) if options.require_auth else None,
        )
        return self

    async def _start_listener(self) -> None:
        try:
            sock = _bind_socket(self.options.host, self.options.port)
        except OSError as exc:
            raise StartupError(f"cannot bind {self.options.host}:{self.options.port}: {exc}") from exc

        config = uvicorn.Config(self.app, log_config=None, log_level="warning", lifespan="off")
        self._server = _ControlServer(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + LISTEN_TIMEOUT_SECONDS
        while not self._server.started:
            if self._serve_task.done():
                sock.close()
                raise StartupError("HTTP listener exited during startup")
            if loop.time() > deadline:
                raise StartupError("HTTP listener did not start in time")
            await asyncio.sleep(0.01)

    async def _cleanup_partial_start(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
            self._server.force_exit = True
        await self._best_effort("stop listener", self._await_listener)
        await self._close_browser()
        self.state = ServerState.STOPPED
        self._stopped.set()

    async def _best_effort(self, label: str, step: Callable[[], Awaitable[Any]]) -> None:
        try:
            await step()
        except Exception as exc:
            logger.warning("Shutdown step '%s' failed: %s", label, exc)

    def _stop_accepting(self) -> None:
        server = self._server
        if server is None:
            return
        server.should_exit = True
        server.force_exit = True
        for listener in list(getattr(server, "servers", None) or []):
            listener.close()

    def _drop_connections(self) -> None:
        server = self._server
        server_state = getattr(server, "server_state", None)
        for connection in list(getattr(server_state, "connections", None) or []):
            transport = getattr(connection, "transport", None)
            if transport is not None:
                transport.abort()
            else:
                connection.shutdown()

    async def _close_browser(self) -> None:
        context, playwright = self._context, self._playwright
        self._context = None
        self._playwright = None
        if context is not None:
            await self._best_effort("close context", context.close)
        if playwright is not None:
            await self._best_effort("stop playwright", playwright.stop)

    async def _await_listener(self) -> None:
        task = self._serve_task
        if task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=LISTENER_STOP_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def shutdown(self) -> None:
        if self._shutdown_started:
            return
        self._shutdown_started = True
        self.state = ServerState.SHUTTING_DOWN
        logger.info("Shutting down...")

        async def _stop_accepting() -> None:
            self._stop_accepting()

        async def _drop_connections() -> None:
            self._drop_connections()

        async def _close_pages() -> None:
            if self.registry is not None:
                await self.registry.close_all()

        await self._best_effort("stop accepting", _stop_accepting)
        await self._best_effort("drop connections", _drop_connections)
        await self._best_effort("close pages", _close_pages)
        await self._close_browser()
        await self._best_effort("stop listener", self._await_listener)

        self.state = ServerState.STOPPED
        self._stopped.set()
        logger.info("Server stopped.")

    def _trigger_shutdown(self, reason: str) -> None:
        if self._shutdown_started or self._shutdown_task is not None:
            return
        logger.info("Received %s. Shutting down.", reason)
        self._shutdown_task = asyncio.ensure_future(self.shutdown())

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        if exc is None:
            loop.default_exception_handler(context)
            return
        logger.error("Unhandled error: %s", context.get("message"), exc_info=exc)
        self._trigger_shutdown("unhandled error")

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in _SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._trigger_shutdown, signal.Signals(sig).name)
            except (NotImplementedError, RuntimeError, ValueError):
                continue
            self._installed_signals.append(sig)
        loop.set_exception_handler(self._handle_loop_exception)

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals.clear()
        loop.set_exception_handler(None)

    async def stop(self) -> None:
        self.remove_signal_handlers()
        await self.shutdown()

    async def wait_closed(self) -> None:
        await self._stopped.wait()


async def serve(options: Optional[ServeOptions] = None, **kwargs: Any) -> BrowserServer:
    """Start a browser server and route process signals to its shutdown."""
    server = BrowserServer(options or ServeOptions(), **kwargs)
    await server.start()
    server.install_signal_handlers()
    return server
