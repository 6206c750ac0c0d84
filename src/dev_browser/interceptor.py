"""Lockdown-only guards installed on the browser context and its pages."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

from .allowlist import HostAllowlist
from .logging_utils import log_event

logger = logging.getLogger(__name__)

# Surfaces to the page as net::ERR_BLOCKED_BY_CLIENT.
BLOCKED_ERROR_CODE = "blockedbyclient"


def _host_of(url: str) -> str:
    try:
        return urlparse(url).hostname or ""
    except ValueError:
        return ""


async def install_request_gate(context: Any, allowlist: HostAllowlist) -> None:
    """Abort every context request whose URL the allowlist rejects."""

    async def _gate(route: Any) -> None:
        url = route.request.url
        if allowlist.is_allowed(url):
            await route.continue_()
            return
        log_event(
            logger,
            level=logging.INFO,
            event="request_blocked",
            host=_host_of(url) or "<unparsed>",
            resource_type=getattr(route.request, "resource_type", None),
        )
        await route.abort(BLOCKED_ERROR_CODE)

    await context.route("**/*", _gate)
    log_event(logger, level=logging.INFO, event="request_gate_installed", hosts=allowlist.describe())


async def _close_popup(popup: Any) -> None:
    log_event(logger, level=logging.INFO, event="popup_closed", host=_host_of(popup.url) or None)
    try:
        await popup.close()
    except Exception as exc:
        logger.debug("Popup already gone: %s", exc)


def suppress_popups(page: Any) -> None:
    page.on("popup", _close_popup)
