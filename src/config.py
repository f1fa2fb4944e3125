"""Configuration management for chatline."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)


def get_project_root() -> Path:
    """Directory holding ``config/`` and ``data/`` (the parent of ``src/``)."""
    return Path(__file__).resolve().parent.parent


def get_data_paths() -> dict[str, Path]:
    """Default locations of the settings file and the local DuckDB store."""
    root = get_project_root()
    return {
        "data": root / "data",
        "config": root / "config",
        "config_file": root / "config" / "config.yaml",
        "db": root / "data" / "chatline.duckdb",
    }


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Read the YAML settings file; a missing or unreadable file yields ``{}``."""
    path = Path(config_path) if config_path is not None else get_data_paths()["config_file"]

    try:
        raw = yaml.safe_load(path.read_text())
    except FileNotFoundError:
        logger.warning(f"Config file not found at {path}, using defaults")
        return {}
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML config {path}: {e}")
        return {}

    if not isinstance(raw, dict):
        if raw is not None:
            logger.warning(f"Ignoring {path}: expected a mapping, got {type(raw).__name__}")
        return {}
    return raw


class FirebaseConfig(BaseModel):
    api_key: str | None = None
    project_id: str | None = None
    database: str = "(default)"
    messages_collection: str = "messages"
    profiles_collection: str = "users"
    poll_interval: float = 2.0
    request_timeout: float = 20.0


class StorageConfig(BaseModel):
    db_path: Path = get_data_paths()["db"]


class ChatlineSettings(BaseModel):
    firebase: FirebaseConfig = FirebaseConfig()
    storage: StorageConfig = StorageConfig()


def load_settings(config_path: str | Path | None = None) -> ChatlineSettings:
    """Build settings from the YAML file, letting environment variables win.

    ``FIREBASE_API_KEY``, ``FIREBASE_PROJECT_ID`` and ``CHATLINE_DB_PATH`` are
    read after ``.env`` has been loaded.
    """
    load_dotenv()
    raw = load_config(config_path)

    firebase_cfg: dict[str, Any] = dict(raw.get("firebase") or {})
    storage_cfg: dict[str, Any] = dict(raw.get("storage") or {})

    env_overrides = {
        "api_key": os.environ.get("FIREBASE_API_KEY"),
        "project_id": os.environ.get("FIREBASE_PROJECT_ID"),
    }
    firebase_cfg.update({k: v for k, v in env_overrides.items() if v})

    db_path = os.environ.get("CHATLINE_DB_PATH")
    if db_path:
        storage_cfg["db_path"] = db_path
    if storage_cfg.get("db_path") and not Path(storage_cfg["db_path"]).is_absolute():
        storage_cfg["db_path"] = get_project_root() / storage_cfg["db_path"]

    return ChatlineSettings(
        firebase=FirebaseConfig(**firebase_cfg),
        storage=StorageConfig(**storage_cfg),
    )
