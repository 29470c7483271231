"""
Report rendering for benchmark sections.

Rows are rendered as a ``rich`` table with the columns

    OP Name | STATUS | GAS | TIME NS | GAS per S | OPs | NS per OP | REVERT Reason

followed by a CUMULATIVE footer, or serialized to JSON for machine use.
Undefined throughput (zero elapsed time) is shown as ``-``.
"""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional

from rich.console import Console
from rich.table import Table

from .metrics import CumulativeSnapshot
from .runner import BenchmarkOutcome, SectionReport

COLUMNS = ("OP Name", "STATUS", "GAS", "TIME NS", "GAS per S", "OPs", "NS per OP", "REVERT Reason")


@dataclass
class ReportRow:
    operation: str
    status: str
    gas_used: Optional[int]
    elapsed_nanos: Optional[int]
    gas_per_second: Optional[float]
    total_loops: int
    nanos_per_loop: Optional[float]
    revert_reason_hex: str = ""

    @classmethod
    def from_outcome(cls, outcome: BenchmarkOutcome) -> "ReportRow":
        result = outcome.result
        if result is None:
            return cls(
                operation=outcome.step.display_name,
                status="SKIPPED",
                gas_used=None,
                elapsed_nanos=None,
                gas_per_second=None,
                total_loops=outcome.total_loops,
                nanos_per_loop=None,
            )
        return cls(
            operation=outcome.step.display_name,
            status=result.status_label,
            gas_used=result.gas_used,
            elapsed_nanos=result.elapsed_nanos,
            gas_per_second=outcome.gas_per_second,
            total_loops=outcome.total_loops,
            nanos_per_loop=outcome.nanos_per_loop,
            revert_reason_hex=result.revert_reason.hex() if result.revert_reason else "",
        )


def _fmt_int(value: Optional[int]) -> str:
    return "-" if value is None else f"{value:,}"


def _fmt_float(value: Optional[float], digits: int = 0) -> str:
    if value is None or not math.isfinite(value):
        return "-"
    return f"{value:,.{digits}f}"


def _status_style(status: str) -> str:
    if status == "COMPLETED_SUCCESS":
        return "green"
    if status in ("COMPLETED_FAILED", "SKIPPED"):
        return "yellow"
    return "red"


def build_table(title: str, rows: Iterable[ReportRow], cumulative: Optional[CumulativeSnapshot] = None) -> Table:
    table = Table(title=title, show_footer=cumulative is not None)
    footer = [""] * len(COLUMNS)
    if cumulative is not None:
        footer = [
            "CUMULATIVE", "",
            _fmt_int(cumulative.gas), _fmt_int(cumulative.nanos),
            _fmt_float(cumulative.gas_per_second), "", "", "",
        ]
    for name, foot in zip(COLUMNS, footer):
        justify = "left" if name in ("OP Name", "STATUS", "REVERT Reason") else "right"
        table.add_column(name, footer=foot, justify=justify)

    for row in rows:
        table.add_row(
            row.operation,
            f"[{_status_style(row.status)}]{row.status}[/]",
            _fmt_int(row.gas_used),
            _fmt_int(row.elapsed_nanos),
            _fmt_float(row.gas_per_second),
            _fmt_int(row.total_loops),
            _fmt_float(row.nanos_per_loop, 1),
            row.revert_reason_hex,
        )
    return table


def render_section(console: Console, title: str, rows: Iterable[ReportRow],
                   cumulative: Optional[CumulativeSnapshot] = None) -> None:
    console.print(build_table(title, rows, cumulative))


def section_rows(section: SectionReport) -> List[ReportRow]:
    return [ReportRow.from_outcome(o) for o in section.outcomes]


def _json_safe(value):
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def rows_to_json(sections: Iterable[SectionReport], indent: Optional[int] = 2) -> str:
    """Serialize sections to JSON; undefined throughputs become ``null``."""
    payload = []
    for section in sections:
        payload.append({
            "section": section.title,
            "rows": [
                {k: _json_safe(v) for k, v in asdict(row).items()}
                for row in section_rows(section)
            ],
            "cumulative": section.cumulative.to_dict(),
        })
    return json.dumps(payload, indent=indent)
