"""
CartEVM — Benchmark Profile
===========================

Settings for one benchmark sweep. Values come from keyword arguments, the
``CARTEVM_*`` environment variables, or CLI options (which build a profile
through :meth:`BenchmarkProfile.from_env` and then override fields).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

logger = logging.getLogger("cartevm.config")

_ENV_INT_FIELDS = {
    "CARTEVM_GAS_LIMIT": "gas_limit",
    "CARTEVM_GAS_MULTIPLIER": "gas_multiplier",
    "CARTEVM_SIZE_LIMIT": "size_limit",
}


@dataclass
class BenchmarkProfile:
    """Configuration for a benchmark sweep."""

    # ── Program shape ────────────────────────────────────────────
    gas_limit: int = 100_000
    """Gas budget the generated loop is sized to spend."""

    gas_multiplier: int = 300
    """Headroom factor: the frame starts with ``gas_limit * gas_multiplier``."""

    size_limit: int = 24_576
    """Maximum bytecode size of a generated program."""

    # ── Artifact cache ───────────────────────────────────────────
    cache_capacity: int = 30_000
    """Expected number of distinct programs in one sweep."""

    cache_max_size: Optional[int] = None
    """LRU bound on cached artifacts (None = unbounded)."""

    # ── Selection ────────────────────────────────────────────────
    categories: Optional[List[str]] = None
    """Only run these catalog categories (None = all)."""

    steps: Optional[List[str]] = None
    """Only run these step names (None = all)."""

    compiler: str = "asm"
    """Compiler used for generated sources (``asm`` or ``solc``)."""

    verbose: bool = False
    """Log every outcome at INFO instead of DEBUG."""

    def __post_init__(self):
        for name in ("gas_limit", "gas_multiplier", "size_limit", "cache_capacity"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

    @property
    def initial_gas(self) -> int:
        return self.gas_limit * self.gas_multiplier

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides) -> "BenchmarkProfile":
        """Build a profile from ``CARTEVM_*`` variables, then apply *overrides*."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for var, name in _ENV_INT_FIELDS.items():
            raw = environ.get(var)
            if raw is None or raw == "":
                continue
            try:
                values[name] = int(raw, 0)
            except ValueError:
                raise ValueError(f"{var} must be an integer, got {raw!r}") from None
            logger.debug("%s=%s from environment", name, values[name])
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_overrides(self, **overrides) -> "BenchmarkProfile":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
