from __future__ import annotations

import importlib
import importlib.resources as importlib_resources
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from .config_schema import ExtensionEntry, ServerConfig
from .extension import Extension

CONFIG_ENV = "MCSCI_SERVER_CONFIG"
DEV_CONFIG = Path("mcsci.yaml")


def _parse(text: str, origin: str) -> ServerConfig:
    try:
        raw: Dict[str, Any] = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid server config YAML: {origin}\n{e}") from e
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid server config YAML: {origin}\ntop level must be a mapping")
    try:
        return ServerConfig.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Invalid server config YAML: {origin}\n{e}") from e


def load_server_config(path: Optional[Path] = None) -> ServerConfig:
    """Load the server config with fallbacks.

    Order:
    1) Explicit path arg (must exist)
    2) MCSCI_SERVER_CONFIG env var (if set + exists)
    3) CWD-relative mcsci.yaml (dev workflow)
    4) Packaged default (mcsci/resources/server_config.yaml)
    """
    if path is not None:
        if not path.exists():
            raise ValueError(f"Server config not found: {path}")
        return _parse(path.read_text(encoding="utf-8"), str(path))

    env_path = os.getenv(CONFIG_ENV, "").strip()
    if env_path:
        p = Path(env_path)
        if p.exists():
            return _parse(p.read_text(encoding="utf-8"), str(p))

    if DEV_CONFIG.exists():
        return _parse(DEV_CONFIG.read_text(encoding="utf-8"), str(DEV_CONFIG))

    res = importlib_resources.files("mcsci").joinpath("resources/server_config.yaml")
    if res.is_file():
        return _parse(res.read_text(encoding="utf-8"), "mcsci/resources/server_config.yaml")
    return ServerConfig()


def load_factory(target: str) -> Any:
    module_name, _, attr = target.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Cannot import extension module {module_name!r}: {e}") from e
    obj: Any = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ValueError(f"Extension factory {target!r} not found") from e
    if not callable(obj):
        raise ValueError(f"Extension factory {target!r} is not callable")
    return obj


def build_extension(entry: ExtensionEntry) -> Extension:
    ext = load_factory(entry.factory)(entry.options)
    if not isinstance(ext, Extension):
        raise ValueError(f"Extension factory {entry.factory!r} returned {type(ext).__name__}, not an Extension")
    return ext


def build_extensions(cfg: ServerConfig) -> List[Extension]:
    """Fresh extension instances for one connection, in config order (= extension id)."""
    return [build_extension(e) for e in cfg.extensions]
