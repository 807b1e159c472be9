"""Configuration paths and tunable defaults for refminer."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

BASE_DIR = Path(os.environ.get("REFMINER_HOME", str(Path.home() / ".refminer"))).expanduser()
SUPPORTED_EXTENSIONS = {".py"}

# Matching thresholds (tunable defaults, overridable from config.toml)
CLASS_THRESHOLD = 0.5
OPERATION_THRESHOLD = 0.55
ATTRIBUTE_THRESHOLD = 0.6
STATEMENT_THRESHOLD = 0.75

# Operation similarity blend
SIGNATURE_WEIGHT = 0.4
PARAMETER_WEIGHT = 0.2
BODY_WEIGHT = 0.4

MAPPER_BUDGET = 200_000
MAX_WORKERS = 4
INHERITANCE_DEPTH = 32


@dataclass(frozen=True)
class DiffSettings:
    """Every knob the diff engine reads, validated on construction."""

    class_threshold: float = CLASS_THRESHOLD
    operation_threshold: float = OPERATION_THRESHOLD
    attribute_threshold: float = ATTRIBUTE_THRESHOLD
    statement_threshold: float = STATEMENT_THRESHOLD
    signature_weight: float = SIGNATURE_WEIGHT
    parameter_weight: float = PARAMETER_WEIGHT
    body_weight: float = BODY_WEIGHT
    mapper_budget: int = MAPPER_BUDGET
    max_workers: int = MAX_WORKERS
    inheritance_depth: int = INHERITANCE_DEPTH
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        for name in (
            "class_threshold",
            "operation_threshold",
            "attribute_threshold",
            "statement_threshold",
            "signature_weight",
            "parameter_weight",
            "body_weight",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.signature_weight + self.parameter_weight + self.body_weight <= 0:
            raise ValueError("Similarity weights must not all be zero")
        for name in ("mapper_budget", "max_workers", "inheritance_depth"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> DiffSettings:
        """Build settings from a TOML section, coercing value types.

        Unknown keys are logged and ignored.
        """
        known = {f.name: f for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, raw in data.items():
            if key not in known:
                logger.warning("Ignoring unknown setting '%s'", key)
                continue
            values[key] = _coerce(key, raw)
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> DiffSettings:
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(key: str, raw: Any) -> Any:
    if key == "timeout":
        return None if raw in (None, "", 0) else float(raw)
    if key in ("mapper_budget", "max_workers", "inheritance_depth"):
        return int(raw)
    return float(raw)
