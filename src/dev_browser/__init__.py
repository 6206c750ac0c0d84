"""
Dev browser.

A long-lived browser process shared by many clients through named pages, with
an optional lockdown mode that replaces raw debugger access by allowlisted,
reference-based actions.
"""

from .allowlist import HostAllowlist
from .config import ServeOptions
from .errors import ConfigurationError, DevBrowserError, StartupError
from .registry import Session, SessionRegistry
from .server import BrowserServer, ServerState, serve

__all__ = [
    "BrowserServer",
    "ConfigurationError",
    "DevBrowserError",
    "HostAllowlist",
    "ServeOptions",
    "ServerState",
    "Session",
    "SessionRegistry",
    "StartupError",
    "serve",
]
