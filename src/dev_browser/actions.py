"""
Gated page actions for lockdown mode.

Callers never see raw HTML or scripting handles: they snapshot a page, get
back a structural outline with ``e<n>`` references, and act on those
references. Every action on one session runs under that session's lock.
"""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .allowlist import HostAllowlist
from .config import DEFAULT_ACTION_TIMEOUT_MS, DEFAULT_SNAPSHOT_LIMIT, MAX_SNAPSHOT_LIMIT
from .errors import Forbidden, NotFound, PreconditionFailed, Timeout, ValidationError
from .logging_utils import log_event
from .registry import Session
from .snapshot_script import RESOLVE_REF_JS, SNAPSHOT_JS

logger = logging.getLogger(__name__)

MAX_URL_LENGTH = 2048
MAX_REF_LENGTH = 32
MAX_KEY_LENGTH = 64
MAX_FILL_LENGTH = 100_000
SCREENSHOT_SUFFIXES = frozenset({".png", ".jpg", ".jpeg"})

_REF_PATTERN = re.compile(r"e[0-9]+")


def validate_ref(ref: Any) -> str:
    if not isinstance(ref, str) or len(ref) > MAX_REF_LENGTH or not _REF_PATTERN.fullmatch(ref):
        raise ValidationError("ref must look like e123")
    return ref


def validate_url(url: Any) -> str:
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("url is required and must be a string")
    if len(url) > MAX_URL_LENGTH:
        raise ValidationError(f"url must be {MAX_URL_LENGTH} characters or less")
    return url.strip()


def validate_key(key: Any) -> str:
    if not isinstance(key, str) or not key:
        raise ValidationError("key is required and must be a string")
    if len(key) > MAX_KEY_LENGTH or not key.isprintable():
        raise ValidationError(f"key must be 1-{MAX_KEY_LENGTH} printable characters")
    return key


def validate_fill_text(text: Any) -> str:
    if not isinstance(text, str):
        raise ValidationError("text is required and must be a string")
    if len(text) > MAX_FILL_LENGTH:
        raise ValidationError(f"text must be {MAX_FILL_LENGTH} characters or less")
    return text


def resolve_artifact_path(root: Path, relative: Any) -> Path:
    """Resolve ``relative`` under ``root``, refusing anything that escapes it."""
    if not isinstance(relative, str) or not relative.strip():
        raise ValidationError("path is required and must be a string")
    if "\x00" in relative:
        raise ValidationError("path must not contain null bytes")

    resolved_root = root.resolve()
    candidate = (resolved_root / relative).resolve()
    try:
        candidate.relative_to(resolved_root)
    except ValueError:
        raise ValidationError("path must stay inside the artifact directory") from None
    if candidate == resolved_root:
        raise ValidationError("path must name a file")
    if candidate.suffix.lower() not in SCREENSHOT_SUFFIXES:
        raise ValidationError("screenshot path must end in .png, .jpg or .jpeg")
    return candidate


def render_outline(nodes: List[Dict[str, Any]]) -> str:
    lines: list[str] = []
    for node in nodes:
        name = str(node.get("name") or "").replace('"', "'")
        line = f"- {node.get('role') or 'generic'}"
        if name:
            line += f' "{name}"'
        if node.get("level"):
            line += f" [level={node['level']}]"
        if node.get("ref"):
            line += f" [ref={node['ref']}]"
        for flag in ("checked", "disabled", "expanded"):
            if node.get(flag):
                line += f" [{flag}]"
        if node.get("value"):
            line += f' value="{node["value"]}"'
        lines.append(line)
    return "\n".join(lines)


async def _page_title(page: Any) -> str:
    try:
        return await page.title()
    except PlaywrightError:
        return ""


class GatedActions:
    """Allowlisted, reference-based actions on registered sessions."""

    def __init__(
        self,
        allowlist: HostAllowlist,
        artifact_root: Path,
        *,
        action_timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS,
        snapshot_limit: int = DEFAULT_SNAPSHOT_LIMIT,
    ) -> None:
        self._allowlist = allowlist
        self._artifact_root = Path(artifact_root).resolve()
        self._timeout_ms = max(1, int(action_timeout_ms))
        self._snapshot_limit = max(1, min(int(snapshot_limit), MAX_SNAPSHOT_LIMIT))

    @property
    def artifact_root(self) -> Path:
        return self._artifact_root

    async def goto(self, session: Session, url: Any) -> Dict[str, Any]:
        clean_url = validate_url(url)
        if not self._allowlist.is_allowed(clean_url):
            log_event(logger, level=logging.INFO, event="navigation_blocked", name=session.name)
            raise Forbidden("navigation target is not in the host allowlist")

        page = session.page
        async with session.lock:
            try:
                await page.goto(clean_url, wait_until="domcontentloaded", timeout=self._timeout_ms)
            except PlaywrightTimeoutError as exc:
                raise Timeout("navigation timed out") from exc
            except PlaywrightError as exc:
                if "ERR_BLOCKED_BY_CLIENT" in str(exc):
                    raise Forbidden("navigation was blocked by the host allowlist") from exc
                raise
            return {"url": page.url, "title": await _page_title(page)}

    async def snapshot(self, session: Session, limit: Optional[int] = None) -> Dict[str, Any]:
        if limit is None:
            max_items = self._snapshot_limit
        else:
            max_items = max(1, min(int(limit), MAX_SNAPSHOT_LIMIT))

        page = session.page
        async with session.lock:
            result = await page.evaluate(SNAPSHOT_JS, {"start": session.next_ref, "limit": max_items})
            result = result or {}
            session.next_ref = max(session.next_ref, int(result.get("next") or session.next_ref))
            nodes = list(result.get("nodes") or [])
            refs = [node for node in nodes if node.get("ref")]
            log_event(
                logger,
                level=logging.DEBUG,
                event="snapshot",
                name=session.name,
                nodes=len(nodes),
                refs=len(refs),
            )
            return {
                "url": page.url,
                "title": await _page_title(page),
                "refs": refs,
                "snapshot": render_outline(nodes),
                "truncated": bool(result.get("truncated")),
            }

    @asynccontextmanager
    async def _element_for_ref(self, page: Any, ref: str) -> AsyncIterator[Any]:
        handle = await page.evaluate_handle(RESOLVE_REF_JS, ref)
        try:
            element = handle.as_element()
            if element is None:
                status = await handle.json_value()
                if status == "no_table":
                    raise PreconditionFailed("no snapshot for this page; call snapshot first")
                raise NotFound(f"unknown ref: {ref}")
            yield element
        finally:
            try:
                await handle.dispose()
            except PlaywrightError as exc:
                logger.debug("Handle dispose failed: %s", exc)

    async def _run_element_action(self, session: Session, ref: str, action: str, **kwargs: Any) -> None:
        async with session.lock:
            async with self._element_for_ref(session.page, ref) as element:
                try:
                    await getattr(element, action)(timeout=self._timeout_ms, **kwargs)
                except PlaywrightTimeoutError as exc:
                    raise Timeout(f"{action} timed out") from exc
                except PlaywrightError as exc:
                    message = str(exc)
                    if "not attached" in message or "detached" in message:
                        raise NotFound(f"ref is no longer attached: {ref}") from exc
                    if action == "fill":
                        raise ValidationError("element cannot be filled") from exc
                    if action == "press" and "Unknown key" in message:
                        raise ValidationError("unknown key") from exc
                    raise
        log_event(logger, level=logging.DEBUG, event=action, name=session.name, ref=ref)

    async def click_ref(self, session: Session, ref: Any) -> Dict[str, Any]:
        clean_ref = validate_ref(ref)
        await self._run_element_action(session, clean_ref, "click")
        return {"ok": True, "ref": clean_ref}

    async def fill_ref(self, session: Session, ref: Any, text: Any) -> Dict[str, Any]:
        clean_ref = validate_ref(ref)
        clean_text = validate_fill_text(text)
        await self._run_element_action(session, clean_ref, "fill", value=clean_text)
        return {"ok": True, "ref": clean_ref}

    async def press(self, session: Session, key: Any, ref: Any = None) -> Dict[str, Any]:
        clean_key = validate_key(key)
        if ref is not None:
            clean_ref = validate_ref(ref)
            await self._run_element_action(session, clean_ref, "press", key=clean_key)
            return {"ok": True, "key": clean_key, "ref": clean_ref}

        async with session.lock:
            try:
                await session.page.keyboard.press(clean_key)
            except PlaywrightError as exc:
                if "Unknown key" in str(exc):
                    raise ValidationError("unknown key") from exc
                raise
        return {"ok": True, "key": clean_key}

    async def screenshot(self, session: Session, path: Any, full_page: bool = False) -> Dict[str, Any]:
        target = resolve_artifact_path(self._artifact_root, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        async with session.lock:
            try:
                await session.page.screenshot(
                    path=str(target),
                    full_page=bool(full_page),
                    timeout=self._timeout_ms,
                )
            except PlaywrightTimeoutError as exc:
                raise Timeout("screenshot timed out") from exc
        log_event(logger, level=logging.INFO, event="screenshot", name=session.name, path=target)
        return {"path": str(target)}
