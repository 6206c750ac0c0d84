"""Named page registry shared by every client of one browser context."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import DEFAULT_PAGE_TIMEOUT_MS
from .errors import Internal, NotFound, Timeout, ValidationError
from .logging_utils import log_event
from .targets import resolve_target_id

logger = logging.getLogger(__name__)

MAX_SESSION_NAME_LENGTH = 256

TargetResolver = Callable[[Any, Any], Awaitable[str]]


def validate_session_name(name: Any) -> str:
    if not isinstance(name, str):
        raise ValidationError("name is required and must be a string")
    if len(name) == 0:
        raise ValidationError("name cannot be empty")
    if len(name) > MAX_SESSION_NAME_LENGTH:
        raise ValidationError(f"name must be {MAX_SESSION_NAME_LENGTH} characters or less")
    return name


async def _close_quietly(page: Any) -> None:
    try:
        await page.close()
    except Exception as exc:
        # Already closed by the remote side or by the browser going away.
        logger.debug("Ignoring page close failure: %s", exc)


@dataclass
class Session:
    name: str
    page: Any
    target_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    # Serializes gated actions against this page.
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # First integer the next snapshot mints references from.
    next_ref: int = 1
    terminated: bool = False


class SessionRegistry:
    """
    Maps caller-chosen names to live pages of one browser context.

    Concurrent ``get_or_create`` calls for an unseen name share a single
    in-flight creation task, so one name never owns two pages.
    """

    def __init__(
        self,
        context: Any,
        *,
        lockdown: bool = False,
        page_timeout_ms: int = DEFAULT_PAGE_TIMEOUT_MS,
        target_resolver: Optional[TargetResolver] = None,
        on_page_created: Optional[Callable[[Any], None]] = None,
        on_terminate: Optional[Callable[[Session], None]] = None,
    ) -> None:
        self._context = context
        self._lockdown = bool(lockdown)
        self._page_timeout_s = max(1, int(page_timeout_ms)) / 1000.0
        self._target_resolver = target_resolver or resolve_target_id
        self._on_page_created = on_page_created
        self._on_terminate = on_terminate
        self._sessions: Dict[str, Session] = {}
        self._pending: Dict[str, asyncio.Future] = {}

    @property
    def lockdown(self) -> bool:
        return self._lockdown

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, name: object) -> bool:
        return name in self._sessions

    def list_names(self) -> List[str]:
        return list(self._sessions.keys())

    def get(self, name: str) -> Session:
        session = self._sessions.get(name)
        if session is None:
            raise NotFound("page not found")
        return session

    async def get_or_create(self, name: Any) -> Session:
        clean_name = validate_session_name(name)
        existing = self._sessions.get(clean_name)
        if existing is not None:
            return existing

        pending = self._pending.get(clean_name)
        if pending is None:
            pending = asyncio.ensure_future(self._create(clean_name))
            self._pending[clean_name] = pending
            pending.add_done_callback(
                lambda task, pending_name=clean_name: self._clear_pending(pending_name, task)
            )
        # A disconnecting caller must not cancel a creation other callers share.
        return await asyncio.shield(pending)

    def _clear_pending(self, name: str, task: asyncio.Future) -> None:
        if self._pending.get(name) is task:
            self._pending.pop(name, None)
        if not task.cancelled():
            # Marks the exception retrieved when every waiter went away.
            task.exception()

    async def _create(self, name: str) -> Session:
        try:
            page = await asyncio.wait_for(self._context.new_page(), timeout=self._page_timeout_s)
        except asyncio.TimeoutError as exc:
            raise Timeout(f"Page creation timed out after {self._page_timeout_s:g}s") from exc

        session = Session(name=name, page=page)
        page.on("close", lambda _page: self._terminate(session))
        try:
            if self._on_page_created is not None:
                self._on_page_created(page)
            if not self._lockdown:
                session.target_id = await self._target_resolver(self._context, page)
        except BaseException:
            session.terminated = True
            await _close_quietly(page)
            raise

        if session.terminated:
            raise Internal("page closed before it could be registered")

        self._sessions[name] = session
        log_event(
            logger,
            level=logging.INFO,
            event="session_created",
            name=name,
            target_id=session.target_id,
        )
        return session

    def _terminate(self, session: Session) -> None:
        if session.terminated:
            return
        session.terminated = True
        if self._sessions.get(session.name) is session:
            del self._sessions[session.name]
        log_event(logger, level=logging.INFO, event="session_closed", name=session.name)
        if self._on_terminate is not None:
            try:
                self._on_terminate(session)
            except Exception:
                logger.exception("on_terminate hook failed for session %s", session.name)

    async def remove(self, name: str) -> bool:
        session = self._sessions.get(name)
        if session is None:
            return False
        self._terminate(session)
        await _close_quietly(session.page)
        return True

    async def close_all(self) -> None:
        for task in list(self._pending.values()):
            task.cancel()
        sessions = list(self._sessions.values())
        for session in sessions:
            self._terminate(session)
            await _close_quietly(session.page)
        self._sessions.clear()
