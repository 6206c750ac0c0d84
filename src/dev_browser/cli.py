import asyncio
import json
import logging
import secrets
import socket
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Optional

import click

from .config import ServeOptions
from .errors import ConfigurationError, StartupError
from .install import ensure_chromium_installed
from .logging_utils import setup_logging
from .server import BrowserServer, serve

logger = logging.getLogger(__name__)


def _load_config(path: Optional[Path]) -> Dict[str, Any]:
    if path is None or not path.exists():
        return {}
    if path.suffix.lower() in {".yaml", ".yml"}:
        import yaml
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return json.loads(path.read_text(encoding="utf-8"))


def _config_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Fields the config file sets explicitly, parsed the way ServeOptions parses them."""
    block = cfg.get("dev_browser") if isinstance(cfg.get("dev_browser"), dict) else cfg
    if not isinstance(block, dict) or not block:
        return {}
    present = {str(key).replace("-", "_") for key, value in block.items() if value is not None}
    parsed = ServeOptions.from_dict(block)
    return {item.name: getattr(parsed, item.name) for item in fields(ServeOptions) if item.name in present}


def _socket_family(host: str) -> int:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


def _is_tcp_port_available(host: str, port: int) -> bool:
    try:
        with socket.socket(_socket_family(host), socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host.strip("[]"), int(port)))
        return True
    except OSError:
        return False


def _pick_free_tcp_port(host: str) -> int:
    with socket.socket(_socket_family(host), socket.SOCK_STREAM) as sock:
        sock.bind((host.strip("[]"), 0))
        return int(sock.getsockname()[1])


def _choose_port(host: str, preferred: int, label: str) -> int:
    if _is_tcp_port_available(host, preferred):
        return preferred
    try:
        new_port = _pick_free_tcp_port(host)
    except OSError:
        new_port = _pick_free_tcp_port("127.0.0.1")
    logger.warning("%s port %s is already in use; using %s instead.", label, preferred, new_port)
    return new_port


def build_options(
    config_path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
    **cli_overrides: Any,
) -> ServeOptions:
    """Defaults < environment < config file < command line."""
    options = ServeOptions.from_env(environ)
    cfg = _load_config(Path(config_path).expanduser()) if config_path else {}
    options = options.merged(**_config_overrides(cfg))
    return options.merged(**cli_overrides).resolved(environ)


def ensure_auth_token(options: ServeOptions) -> ServeOptions:
    if not options.require_auth or options.auth_token:
        return options
    token = secrets.token_hex(32)
    click.echo(f"Generated auth token (export DEV_BROWSER_TOKEN to reuse it): {token}")
    return options.merged(auth_token=token)


async def _serve_until_closed(options: ServeOptions) -> None:
    server: BrowserServer = await serve(options)
    click.echo(f"Server ready at http://{options.host}:{server.port} (mode: {options.mode})")
    if server.ws_endpoint:
        click.echo(f"CDP endpoint: {server.ws_endpoint}")
    if options.lockdown:
        click.echo(f"Allowed hosts: {', '.join(server.options.allowed_hosts)}")
        click.echo(f"Screenshots are written under: {server.options.artifact_root()}")
    click.echo("Press Ctrl+C to stop")
    await server.wait_closed()


@click.command()
@click.option("--config", "config_path", default=None, help="Path to a YAML or JSON config file.")
@click.option("--host", default=None, help="HTTP bind host (env DEV_BROWSER_HOST).")
@click.option("--port", default=None, type=int, help="HTTP port (env DEV_BROWSER_PORT).")
@click.option("--cdp-port", default=None, type=int, help="Remote debugging port (env DEV_BROWSER_CDP_PORT).")
@click.option("--headless/--headed", default=None, help="Run the browser headless (env HEADLESS).")
@click.option("--profile-dir", default=None, help="Directory holding the persistent browser profile.")
@click.option("--tmp-dir", default=None, help="Screenshot directory (env DEV_BROWSER_TMP_DIR).")
@click.option("--lockdown/--no-lockdown", default=None, help="Disable raw CDP access (env DEV_BROWSER_LOCKDOWN).")
@click.option("--allowed-hosts", default=None, help="Comma-separated host allowlist for lockdown mode.")
@click.option("--allow-remote/--loopback-only", default=None, help="Allow binding to non-loopback hosts.")
@click.option("--require-auth/--no-require-auth", default=None, help="Require the bearer token on every request.")
@click.option("--install/--no-install", "install_browser", default=True, help="Install Chromium when missing.")
@click.option("--log-config", default=None, help="Logging config file (YAML or JSON).")
@click.option("--log-file", default=None, help="Also write logs to this file.")
@click.option("--verbose", is_flag=True, help="Enable debug logging.")
def run(
    config_path: Optional[str],
    host: Optional[str],
    port: Optional[int],
    cdp_port: Optional[int],
    headless: Optional[bool],
    profile_dir: Optional[str],
    tmp_dir: Optional[str],
    lockdown: Optional[bool],
    allowed_hosts: Optional[str],
    allow_remote: Optional[bool],
    require_auth: Optional[bool],
    install_browser: bool,
    log_config: Optional[str],
    log_file: Optional[str],
    verbose: bool,
):
    setup_logging(log_config, log_file, verbose)

    try:
        options = build_options(
            config_path,
            host=host,
            cdp_host=host,
            port=port,
            cdp_port=cdp_port,
            headless=headless,
            profile_dir=profile_dir,
            tmp_dir=tmp_dir,
            lockdown=lockdown,
            allowed_hosts=tuple(h.strip() for h in allowed_hosts.split(",") if h.strip()) if allowed_hosts else None,
            allow_remote=allow_remote,
            require_auth=require_auth,
        )
        options = ensure_auth_token(options)
        options.validate()
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    options.artifact_root().mkdir(parents=True, exist_ok=True)
    if options.profile_dir:
        Path(options.profile_dir).expanduser().mkdir(parents=True, exist_ok=True)

    if install_browser:
        ensure_chromium_installed()

    options = options.merged(port=_choose_port(options.host, options.port, "HTTP"))
    if not options.lockdown:
        cdp_port = _choose_port(options.cdp_host, options.cdp_port, "CDP")
        while cdp_port == options.port:
            cdp_port = _pick_free_tcp_port(options.cdp_host)
        options = options.merged(cdp_port=cdp_port)

    try:
        asyncio.run(_serve_until_closed(options))
    except (ConfigurationError, StartupError) as exc:
        raise click.ClickException(str(exc)) from exc


if __name__ == "__main__":
    run()
