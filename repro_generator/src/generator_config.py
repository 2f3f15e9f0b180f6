from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


LOGGER = logging.getLogger(__name__)

DEFAULT_BANNER = "// autogenerated by syzkaller (http://github.com/google/syzkaller)"


class GeneratorConfig(BaseModel):
    # Target used when a program document does not name one.
    default_os: str = "linux"
    default_arch: str = "amd64"

    # Runtime header inlined into the preamble. Empty means the generated
    # program #includes it instead.
    runtime_header_path: str = ""

    banner: str = DEFAULT_BANNER

    version: int = Field(default=1, description="Schema version")


def config_dir() -> Path:
    raw = os.environ.get("REPRO_CONFIG_DIR", "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return Path.home() / ".config" / "repro-csource"


def config_path() -> Path:
    return config_dir() / "config.json"


_ENV_OVERRIDES = {
    "REPRO_DEFAULT_OS": "default_os",
    "REPRO_DEFAULT_ARCH": "default_arch",
    "REPRO_RUNTIME_HEADER": "runtime_header_path",
    "REPRO_BANNER": "banner",
}


def _apply_env_overrides(cfg: GeneratorConfig) -> GeneratorConfig:
    updates: dict[str, Any] = {}
    for env_name, field_name in _ENV_OVERRIDES.items():
        val = os.environ.get(env_name)
        if val is not None and val.strip():
            updates[field_name] = val.strip()
    return cfg.model_copy(update=updates) if updates else cfg


def load_config() -> GeneratorConfig:
    """Config file (if any) overlaid with REPRO_* environment variables."""
    path = config_path()
    cfg = GeneratorConfig()
    if path.is_file():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(raw, dict):
                cfg = GeneratorConfig(**raw)
        except Exception as e:
            LOGGER.warning("ignoring unreadable config %s: %s", path, e)
    return _apply_env_overrides(cfg)


def read_runtime_header(cfg: GeneratorConfig) -> str | None:
    raw = cfg.runtime_header_path.strip()
    if not raw:
        return None
    return Path(raw).expanduser().read_text(encoding="utf-8", errors="replace")


def _set_env_if_value(name: str, value: str | None) -> None:
    if value is None:
        return
    if value.strip() == "":
        os.environ.pop(name, None)
        return
    os.environ[name] = value


def apply_config_to_env(cfg: GeneratorConfig) -> None:
    """Export the effective config as REPRO_* so child processes see it."""
    for env_name, field_name in _ENV_OVERRIDES.items():
        _set_env_if_value(env_name, getattr(cfg, field_name))
