from __future__ import annotations

from typing import Iterable, Optional
from urllib.parse import urlparse

from .errors import ConfigurationError

_ALWAYS_ALLOWED_SCHEMES = frozenset({"data", "blob"})
_NETWORK_SCHEMES = frozenset({"http", "https"})


def _normalize_entries(entries: Iterable[str]) -> tuple[str, ...]:
    out: list[str] = []
    seen: set[str] = set()
    for raw in entries:
        text = str(raw or "").strip().lower().rstrip(".")
        if not text or text in seen:
            continue
        seen.add(text)
        out.append(text)
    return tuple(out)


def host_matches(host: str, entry: str) -> bool:
    """Match one hostname against a literal or ``*.parent`` entry.

    Wildcards only match strict subdomains, never the parent itself.
    """
    if entry.startswith("*."):
        parent = entry[2:]
        return bool(parent) and host.endswith(f".{parent}")
    return host == entry


class HostAllowlist:
    """Hostname allowlist gating navigation and subresource requests."""

    def __init__(self, entries: Iterable[str], *, require_entries: bool = True) -> None:
        self._entries = _normalize_entries(entries)
        if require_entries and not self._entries:
            raise ConfigurationError(
                "lockdown requires a non-empty host allowlist (DEV_BROWSER_ALLOWED_HOSTS)"
            )

    @classmethod
    def from_csv(cls, text: Optional[str], *, require_entries: bool = True) -> "HostAllowlist":
        items = [token.strip() for token in str(text or "").split(",")]
        return cls([item for item in items if item], require_entries=require_entries)

    @property
    def entries(self) -> tuple[str, ...]:
        return self._entries

    def describe(self) -> str:
        return ",".join(self._entries)

    def is_allowed(self, url: str) -> bool:
        try:
            parsed = urlparse(str(url or "").strip())
            scheme = (parsed.scheme or "").lower()
            if scheme in _ALWAYS_ALLOWED_SCHEMES:
                return True
            if scheme not in _NETWORK_SCHEMES:
                return False
            # Browsers read "\" as "/" and split userinfo differently than urlparse.
            if "\\" in parsed.netloc or "@" in parsed.netloc:
                return False
            host = (parsed.hostname or "").strip().lower().rstrip(".")
        except ValueError:
            return False
        if not host:
            return False
        return any(host_matches(host, entry) for entry in self._entries)

    def __repr__(self) -> str:
        return f"HostAllowlist({list(self._entries)!r})"
