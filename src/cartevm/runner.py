"""
CartEVM — Benchmark Runner
==========================

Orchestrates a sweep over catalog steps::

    step ─► CodeGenerator ─► CompiledArtifactCache ─► build_world_state
         ─► ExecutionDriver ─► MetricsAggregator / BenchmarkOutcome

Each category is one report section with its own cumulative counters. A step
whose source does not compile is logged, reported as skipped and the sweep
moves on.

Usage::

    runner = BenchmarkRunner(BenchmarkProfile(categories=["storage"]))
    for section in runner.run():
        print(section.title, section.cumulative.gas_per_second)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .cache import CompiledArtifactCache
from .compiler import Compiler, get_compiler
from .config import BenchmarkProfile
from .driver import ExecutionDriver, ExecutionResult
from .errors import CompilationError
from .fixture import build_world_state
from .generator import CodeGenerator
from .metrics import CumulativeSnapshot, MetricsAggregator, gas_per_second
from .step import STEPS, GeneratedCode, Step, get_step, steps_by_category

logger = logging.getLogger("cartevm.runner")


# =====================================================================
# Outcomes
# =====================================================================

@dataclass
class BenchmarkOutcome:
    """Everything measured (or not) for one step."""
    step: Step
    generated: Optional[GeneratedCode] = None
    result: Optional[ExecutionResult] = None
    error: str = ""

    @property
    def skipped(self) -> bool:
        return self.result is None

    @property
    def total_loops(self) -> int:
        return self.generated.total_loops if self.generated else 0

    @property
    def nanos_per_loop(self) -> Optional[float]:
        if self.result is None or self.generated is None:
            return None
        return self.result.elapsed_nanos / self.generated.total_loops

    @property
    def gas_per_second(self) -> Optional[float]:
        if self.result is None:
            return None
        return gas_per_second(self.result.gas_used, self.result.elapsed_nanos)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "operation": self.step.display_name,
            "category": self.step.category,
            "skipped": self.skipped,
            "total_loops": self.total_loops,
        }
        if self.result is not None:
            data.update(self.result.to_dict())
            data["nanos_per_loop"] = self.nanos_per_loop
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class SectionReport:
    """Outcomes of one category plus its cumulative counters."""
    title: str
    outcomes: List[BenchmarkOutcome] = field(default_factory=list)
    cumulative: CumulativeSnapshot = field(default_factory=CumulativeSnapshot)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)


# =====================================================================
# Runner
# =====================================================================

class BenchmarkRunner:
    """Runs steps through generate → compile → fixture → execute → record."""

    def __init__(
        self,
        profile: Optional[BenchmarkProfile] = None,
        compiler: Optional[Compiler] = None,
        cache: Optional[CompiledArtifactCache] = None,
        driver: Optional[ExecutionDriver] = None,
        generator: Optional[CodeGenerator] = None,
    ):
        self.profile = profile or BenchmarkProfile()
        compiler = compiler or get_compiler(self.profile.compiler)
        self.cache = cache or CompiledArtifactCache(
            compiler,
            initial_capacity=self.profile.cache_capacity,
            max_size=self.profile.cache_max_size,
        )
        self.driver = driver or ExecutionDriver(gas_multiplier=self.profile.gas_multiplier)
        self.generator = generator or CodeGenerator(
            gas_limit=self.profile.gas_limit,
            size_limit=self.profile.size_limit,
            dialect=compiler.dialect,
        )
        self._outcome_level = logging.INFO if self.profile.verbose else logging.DEBUG

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def selected_steps(self) -> List[Step]:
        """Catalog steps matching the profile's ``steps``/``categories`` filters."""
        if self.profile.steps:
            steps = [get_step(name) for name in self.profile.steps]
        else:
            steps = list(STEPS)
        if self.profile.categories:
            wanted = {c.lower() for c in self.profile.categories}
            steps = [s for s in steps if s.category in wanted]
        return steps

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run_step(self, step: Step, metrics: Optional[MetricsAggregator] = None) -> BenchmarkOutcome:
        """Measure one step. Compilation failures yield a skipped outcome."""
        generated = self.generator.generate(step)
        try:
            bytecode = self.cache.get_or_compile(generated.source)
        except CompilationError as e:
            logger.warning("Skipping %s: %s", step.name, e)
            return BenchmarkOutcome(step=step, generated=generated, error=str(e))

        code_bytes = bytes.fromhex(bytecode)
        world = build_world_state(code_bytes)
        result = self.driver.run(code_bytes, world, self.profile.gas_limit)

        if metrics is not None:
            metrics.record(result)
        if result.revert_reason:
            logger.debug("%s reverted with %s", step.name, result.revert_reason_hex)
        logger.log(
            self._outcome_level, "%s: %s, %d gas in %d ns over %d loops",
            step.display_name, result.status_label, result.gas_used,
            result.elapsed_nanos, generated.total_loops,
        )
        return BenchmarkOutcome(step=step, generated=generated, result=result)

    def run_section(self, title: str, steps: Sequence[Step],
                    metrics: Optional[MetricsAggregator] = None) -> SectionReport:
        metrics = metrics or MetricsAggregator()
        metrics.reset_cumulative()
        report = SectionReport(title=title)
        for step in steps:
            report.outcomes.append(self.run_step(step, metrics))
        report.cumulative = metrics.snapshot_cumulative()
        logger.info(
            "Section %s: %d steps (%d skipped), %d gas in %d ns",
            title, len(report.outcomes), report.skipped,
            report.cumulative.gas, report.cumulative.nanos,
        )
        return report

    def run(self) -> Iterator[SectionReport]:
        """Yield one :class:`SectionReport` per category, in catalog order."""
        metrics = MetricsAggregator()
        logger.info(
            "Sweep with %s: gas limit %d, initial frame gas %d",
            self.cache.compiler.name, self.profile.gas_limit, self.profile.initial_gas,
        )
        for category, steps in steps_by_category(self.selected_steps()).items():
            yield self.run_section(category, steps, metrics)
        logger.debug("Artifact cache after sweep: %r", self.cache)
