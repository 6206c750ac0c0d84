from __future__ import annotations

import ipaddress
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError

DEFAULT_PORT = 9222
DEFAULT_CDP_PORT = 9223
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PAGE_TIMEOUT_MS = 30_000
DEFAULT_ACTION_TIMEOUT_MS = 15_000
DEFAULT_SNAPSHOT_LIMIT = 200
MAX_SNAPSHOT_LIMIT = 1000
TOKEN_ENV_VAR = "DEV_BROWSER_TOKEN"


def _parse_bool(raw: Any, default: Optional[bool]) -> Optional[bool]:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(raw: Any, default: int) -> int:
    if raw is None or raw == "":
        return default
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        raise ConfigurationError(f"expected an integer, got {raw!r}") from exc


def _split_csv(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, (list, tuple)):
        items = [str(item) for item in raw]
    else:
        items = str(raw).split(",")
    return tuple(item.strip() for item in items if item and item.strip())


def _as_non_empty_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def is_loopback_host(host: str) -> bool:
    normalized = (host or "").strip().lower()
    if normalized.startswith("[") and normalized.endswith("]"):
        normalized = normalized[1:-1]
    if normalized == "localhost":
        return True
    try:
        return ipaddress.ip_address(normalized).is_loopback
    except ValueError:
        return False


@dataclass
class ServeOptions:
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    headless: bool = False
    cdp_port: int = DEFAULT_CDP_PORT
    cdp_host: str = DEFAULT_HOST
    # Persistent profiles live under <profile_dir>/browser-data.
    profile_dir: Optional[str] = None
    lockdown: bool = False
    allowed_hosts: tuple[str, ...] = ()
    # Screenshot artifact root in lockdown mode.
    tmp_dir: Optional[str] = None
    allow_remote: bool = False
    auth_token: Optional[str] = None
    # None means "required when a token is configured".
    require_auth: Optional[bool] = None
    page_timeout_ms: int = DEFAULT_PAGE_TIMEOUT_MS
    action_timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS
    cdp_retries: int = 5
    cdp_retry_delay_ms: int = 500
    snapshot_limit: int = DEFAULT_SNAPSHOT_LIMIT
    extra_browser_args: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ServeOptions":
        if not isinstance(data, Mapping):
            return cls()
        if isinstance(data.get("dev_browser"), Mapping):
            data = data["dev_browser"]
        known = {item.name: item for item in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = str(key).replace("-", "_")
            if name not in known or value is None:
                continue
            default = known[name].default
            if name in {"allowed_hosts", "extra_browser_args"}:
                kwargs[name] = _split_csv(value)
            elif name == "require_auth":
                kwargs[name] = _parse_bool(value, None)
            elif isinstance(default, bool):
                kwargs[name] = bool(_parse_bool(value, default))
            elif isinstance(default, int):
                kwargs[name] = _parse_int(value, default)
            else:
                kwargs[name] = _as_non_empty_str(str(value))
        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServeOptions":
        env = os.environ if environ is None else environ
        return cls(
            host=_as_non_empty_str(env.get("DEV_BROWSER_HOST")) or DEFAULT_HOST,
            cdp_host=_as_non_empty_str(env.get("DEV_BROWSER_HOST")) or DEFAULT_HOST,
            port=_parse_int(env.get("DEV_BROWSER_PORT"), DEFAULT_PORT),
            cdp_port=_parse_int(env.get("DEV_BROWSER_CDP_PORT"), DEFAULT_CDP_PORT),
            headless=bool(_parse_bool(env.get("HEADLESS"), False)),
            allow_remote=bool(_parse_bool(env.get("DEV_BROWSER_ALLOW_REMOTE"), False)),
            lockdown=bool(_parse_bool(env.get("DEV_BROWSER_LOCKDOWN"), False)),
            auth_token=_as_non_empty_str(env.get(TOKEN_ENV_VAR)),
            require_auth=_parse_bool(env.get("DEV_BROWSER_REQUIRE_AUTH"), None),
            allowed_hosts=_split_csv(env.get("DEV_BROWSER_ALLOWED_HOSTS")),
            tmp_dir=_as_non_empty_str(env.get("DEV_BROWSER_TMP_DIR")),
        )

    def merged(self, **overrides: Any) -> "ServeOptions":
        """Copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def resolved(self, environ: Optional[Mapping[str, str]] = None) -> "ServeOptions":
        """Fill the token from the environment and settle whether auth is required."""
        env = os.environ if environ is None else environ
        token = _as_non_empty_str(self.auth_token) or _as_non_empty_str(env.get(TOKEN_ENV_VAR))
        require_auth = self.require_auth
        if require_auth is None:
            require_auth = bool(token)
        if self.lockdown:
            require_auth = True
        return replace(self, auth_token=token, require_auth=require_auth)

    def validate(self) -> None:
        for label, value in (("port", self.port), ("cdp_port", self.cdp_port)):
            if value < 1 or value > 65535:
                raise ConfigurationError(f"Invalid {label}: {value}. Must be between 1 and 65535")
        if self.port == self.cdp_port:
            raise ConfigurationError("port and cdp_port must be different")

        if not self.allow_remote:
            if not is_loopback_host(self.host):
                raise ConfigurationError(
                    f'Refusing to bind HTTP server to non-loopback host "{self.host}". '
                    "Set allow_remote if you really want this."
                )
            if not is_loopback_host(self.cdp_host):
                raise ConfigurationError(
                    f'Refusing to bind CDP server to non-loopback host "{self.cdp_host}". '
                    "Set allow_remote if you really want this."
                )

        if self.lockdown and not self.require_auth:
            raise ConfigurationError("lockdown mode requires authentication")
        if self.require_auth and not self.auth_token:
            raise ConfigurationError(
                f"HTTP auth required but no token was provided. Set {TOKEN_ENV_VAR} or pass auth_token."
            )
        if self.lockdown and not self.allowed_hosts:
            raise ConfigurationError(
                "lockdown requires a non-empty host allowlist (DEV_BROWSER_ALLOWED_HOSTS)"
            )
        if self.page_timeout_ms < 1 or self.action_timeout_ms < 1:
            raise ConfigurationError("timeouts must be positive")
        if self.cdp_retries < 1:
            raise ConfigurationError("cdp_retries must be at least 1")

    @property
    def mode(self) -> str:
        return "lockdown" if self.lockdown else "cdp"

    def user_data_dir(self) -> Path:
        if self.profile_dir:
            return Path(self.profile_dir).expanduser() / "browser-data"
        return Path.cwd() / ".browser-data"

    def artifact_root(self) -> Path:
        base = Path(self.tmp_dir).expanduser() if self.tmp_dir else Path.cwd() / "tmp"
        return base.resolve()
