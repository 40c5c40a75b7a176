# pcapstream/config.py
from __future__ import annotations

import functools
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

import yaml


@dataclass(frozen=True)
class EngineConfig:
    """
    Everything needed to open and decode one capture.

    fcs:    frames carry a trailing 4-byte FCS (passed through, trimmed by consumers)
    strict: short headers end the stream instead of being zero-filled
    """
    source: Optional[str] = None
    fcs: bool = False
    strict: bool = False
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    def merged(self, **overrides) -> "EngineConfig":
        """Apply overrides that are not None (e.g. unset CLI flags)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


@functools.lru_cache(maxsize=32)
def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(path: str) -> EngineConfig:
    doc = _load_yaml(path)
    if not isinstance(doc, dict):
        raise ValueError(f"{path}: expected a mapping at top level")
    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(doc) - known)
    if unknown:
        raise ValueError(f"{path}: unknown config keys: {', '.join(unknown)}")
    for key in ("fcs", "strict"):
        if key in doc and not isinstance(doc[key], bool):
            raise ValueError(f"{path}: {key} must be true/false")
    return EngineConfig(**doc)
