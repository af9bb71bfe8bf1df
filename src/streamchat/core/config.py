"""Configuration loading (TOML, env vars, explicit overrides)."""

from __future__ import annotations

import json
import logging
import os
import tomllib
from dataclasses import fields
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from streamchat.types.config import ChatConfig

logger = logging.getLogger(__name__)

CONFIG_DIR = ".streamchat"
CONFIG_FILE = "config.toml"

# Keys a config file or the environment may set. Callables stay code-only.
_FILE_KEYS = {
    "api",
    "chat_id",
    "stream_protocol",
    "credentials",
    "headers",
    "body",
    "max_steps",
    "send_extra_message_fields",
    "keep_last_message_on_error",
    "resubmit_policy",
    "timeout",
}


def load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables (and a .env file)."""
    # Won't override variables already set in the process
    load_dotenv()
    config: dict[str, Any] = {}

    if api := os.environ.get("STREAMCHAT_API"):
        config["api"] = api
    if steps := os.environ.get("STREAMCHAT_MAX_STEPS"):
        try:
            config["max_steps"] = int(steps)
        except ValueError:
            logger.warning("Ignoring STREAMCHAT_MAX_STEPS=%r: not an integer", steps)
    if protocol := os.environ.get("STREAMCHAT_STREAM_PROTOCOL"):
        config["stream_protocol"] = protocol
    if headers := os.environ.get("STREAMCHAT_HEADERS"):
        try:
            parsed = json.loads(headers)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            config["headers"] = {str(k): str(v) for k, v in parsed.items()}
        else:
            logger.warning("Ignoring STREAMCHAT_HEADERS: expected a JSON object")

    return config


def load_toml_config(cwd: str | None = None) -> dict[str, Any]:
    """Load the first of ``<cwd>/.streamchat/config.toml`` and ``~/.streamchat/config.toml``."""
    candidates = []
    if cwd:
        candidates.append(Path(cwd) / CONFIG_DIR / CONFIG_FILE)
    candidates.append(Path.cwd() / CONFIG_DIR / CONFIG_FILE)
    candidates.append(Path.home() / CONFIG_DIR / CONFIG_FILE)

    for path in candidates:
        if not path.exists():
            continue
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Skipping unreadable config %s: %s", path, e)
            continue
        logger.debug("Loaded config from %s", path)
        return data
    return {}


def _known(data: dict[str, Any], source: str) -> dict[str, Any]:
    known: dict[str, Any] = {}
    for key, value in data.items():
        if key in _FILE_KEYS:
            known[key] = value
        else:
            logger.warning("Unknown %s config key %r ignored", source, key)
    return known


def load_chat_config(cwd: str | None = None, **overrides: Any) -> ChatConfig:
    """Build a ``ChatConfig`` from defaults, TOML, environment and overrides.

    Later layers win. ``headers`` and ``body`` tables are merged key by key
    rather than replaced.
    """
    layers = [
        _known(load_toml_config(cwd), "file"),
        load_env_config(),
        {k: v for k, v in overrides.items() if v is not None},
    ]
    merged: dict[str, Any] = {}
    for layer in layers:
        for key, value in layer.items():
            if key in ("headers", "body") and isinstance(value, dict):
                merged[key] = {**merged.get(key, {}), **value}
            else:
                merged[key] = value

    valid = {f.name for f in fields(ChatConfig)}
    unknown = set(merged) - valid
    if unknown:
        raise TypeError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
    return ChatConfig(**merged)
