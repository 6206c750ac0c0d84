"""Resolve the CDP target id of a page so remote clients can attach to it."""

from __future__ import annotations

import logging
from typing import Any

from .errors import Internal, Unavailable

logger = logging.getLogger(__name__)


async def resolve_target_id(context: Any, page: Any, *, lockdown: bool = False) -> str:
    if lockdown:
        raise Unavailable("target ids are not exposed in lockdown mode")

    cdp_session = await context.new_cdp_session(page)
    try:
        result = await cdp_session.send("Target.getTargetInfo")
    finally:
        try:
            await cdp_session.detach()
        except Exception as exc:
            logger.debug("CDP session detach failed: %s", exc)

    target_info = (result or {}).get("targetInfo") or {}
    target_id = str(target_info.get("targetId") or "").strip()
    if not target_id:
        raise Internal("browser did not report a target id for the page")
    return target_id
