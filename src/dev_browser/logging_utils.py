"""Logging setup and structured event helpers."""

from __future__ import annotations

import json
import logging
import logging.config
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

DEFAULT_LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console_handler": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": "INFO",
            "stream": "ext://sys.stderr",
        },
    },
    "loggers": {
        "uvicorn.access": {"level": "WARNING"},
    },
    "root": {
        "handlers": ["console_handler"],
        "level": "INFO",
    },
}


def _normalize_log_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _render_log_kv(fields: Mapping[str, Any]) -> str:
    parts: list[str] = []
    for key, value in fields.items():
        if value is None:
            continue
        clean_key = str(key).strip()
        if not clean_key:
            continue
        parts.append(f"{clean_key}={_normalize_log_value(value)}")
    return " ".join(parts)


def log_event(
    logger: logging.Logger,
    *,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    payload = {"event": event}
    payload.update(fields)
    logger.log(level, "browser %s", _render_log_kv(payload))


def mask_token(token: Optional[str]) -> str:
    if not token:
        return "<none>"
    return f"{token[:4]}..."


def _load_config_file(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        return yaml.safe_load(text) or {}
    return json.loads(text)


def setup_logging(
    config_file_path: Optional[Union[str, Path]] = None,
    log_file_path: Optional[Union[str, Path]] = None,
    verbose: bool = False,
) -> logging.Logger:
    """
    Loads logging config from 'config_file_path' (YAML or JSON), or the built-in
    default, and applies it. 'log_file_path' adds or overrides a file handler;
    'verbose' raises the root logger to DEBUG.
    """
    if config_file_path:
        config = _load_config_file(Path(config_file_path))
    else:
        config = json.loads(json.dumps(DEFAULT_LOGGING_CONFIG))

    if log_file_path:
        log_path = Path(log_file_path).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers = config.setdefault("handlers", {})
        if "file_handler" in handlers:
            handlers["file_handler"]["filename"] = str(log_path)
        else:
            config.setdefault("formatters", {}).setdefault(
                "standard", DEFAULT_LOGGING_CONFIG["formatters"]["standard"]
            )
            handlers["file_handler"] = {
                "class": "logging.FileHandler",
                "formatter": "standard",
                "filename": str(log_path),
                "encoding": "utf-8",
            }
            root = config.setdefault("root", {"level": "INFO"})
            root.setdefault("handlers", []).append("file_handler")

    logging.config.dictConfig(config)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    return logging.getLogger("dev_browser")
