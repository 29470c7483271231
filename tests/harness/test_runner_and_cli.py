"""
Tests for the benchmark runner (cartevm.runner), report rendering
(cartevm.report), the profile (cartevm.config) and the click CLI.
"""

import json
import logging
import subprocess

import pytest
from click.testing import CliRunner
from rich.console import Console

from cartevm.cli.main import cli
from cartevm.compiler import AssemblyCompiler, Compiler
from cartevm.config import BenchmarkProfile
from cartevm.driver import ExecutionResult, ExecutionStatus
from cartevm.errors import CompilationError
from cartevm.metrics import CumulativeSnapshot
from cartevm.report import COLUMNS, ReportRow, build_table, render_section, rows_to_json, section_rows
from cartevm.runner import BenchmarkOutcome, BenchmarkRunner, SectionReport
from cartevm.step import get_step


class RejectingCompiler(Compiler):
    """Refuses any source containing SSTORE."""

    name = "rejecting"

    def __init__(self):
        self._inner = AssemblyCompiler()

    def compile(self, source):
        if "SSTORE" in source:
            raise CompilationError(source, message="SSTORE not supported")
        return self._inner.compile(source)


def _storage_runner(**kwargs):
    profile = BenchmarkProfile(gas_limit=2_000, categories=["storage"])
    return BenchmarkRunner(profile, **kwargs)


# ═══════════════════════════════════════════════════════════════════════════
# Profile
# ═══════════════════════════════════════════════════════════════════════════

class TestBenchmarkProfile:
    def test_defaults(self):
        profile = BenchmarkProfile()
        assert profile.gas_limit == 100_000
        assert profile.gas_multiplier == 300
        assert profile.initial_gas == 30_000_000
        assert profile.cache_max_size is None

    def test_from_env(self):
        profile = BenchmarkProfile.from_env({"CARTEVM_GAS_LIMIT": "0x1000", "CARTEVM_SIZE_LIMIT": "512"})
        assert profile.gas_limit == 4096
        assert profile.size_limit == 512

    def test_overrides_win_over_env(self):
        profile = BenchmarkProfile.from_env({"CARTEVM_GAS_LIMIT": "5000"}, gas_limit=7000, size_limit=None)
        assert profile.gas_limit == 7000
        assert profile.size_limit == 24_576

    def test_bad_env_value(self):
        with pytest.raises(ValueError, match="CARTEVM_GAS_MULTIPLIER"):
            BenchmarkProfile.from_env({"CARTEVM_GAS_MULTIPLIER": "lots"})

    @pytest.mark.parametrize("field", ["gas_limit", "gas_multiplier", "size_limit", "cache_capacity"])
    def test_rejects_non_positive(self, field):
        with pytest.raises(ValueError, match=field):
            BenchmarkProfile(**{field: 0})

    def test_with_overrides(self):
        profile = BenchmarkProfile().with_overrides(gas_limit=50, steps=None)
        assert profile.gas_limit == 50
        assert profile.steps is None


# ═══════════════════════════════════════════════════════════════════════════
# Runner
# ═══════════════════════════════════════════════════════════════════════════

class TestBenchmarkRunner:
    def test_selection_by_category(self):
        names = [s.name for s in _storage_runner().selected_steps()]
        assert "SLOAD" in names and "SSTORE" in names
        assert "ADD" not in names

    def test_selection_by_step_and_category(self):
        profile = BenchmarkProfile(steps=["sload", "ADD"], categories=["storage"])
        assert [s.name for s in BenchmarkRunner(profile).selected_steps()] == ["SLOAD"]

    def test_run_yields_one_section_per_category(self):
        profile = BenchmarkProfile(gas_limit=2_000, steps=["ADD", "SLOAD", "MUL"])
        sections = list(BenchmarkRunner(profile).run())
        assert [s.title for s in sections] == ["arithmetic", "storage"]
        assert [o.step.name for o in sections[0].outcomes] == ["ADD", "MUL"]

    def test_section_cumulative_matches_outcomes(self):
        section = next(_storage_runner().run())
        outcomes = section.outcomes
        assert section.cumulative.executions == len(outcomes)
        assert section.cumulative.gas == sum(o.result.gas_used for o in outcomes)
        assert section.cumulative.nanos == sum(o.result.elapsed_nanos for o in outcomes)

    def test_sections_do_not_share_counters(self):
        profile = BenchmarkProfile(gas_limit=2_000, steps=["ADD", "SLOAD"])
        arithmetic, storage = list(BenchmarkRunner(profile).run())
        assert storage.cumulative.executions == 1
        assert storage.cumulative.gas == storage.outcomes[0].result.gas_used

    def test_compilation_failure_is_skipped(self):
        section = next(_storage_runner(compiler=RejectingCompiler()).run())
        by_name = {o.step.name: o for o in section.outcomes}
        assert by_name["SSTORE"].skipped
        assert "SSTORE not supported" in by_name["SSTORE"].error
        assert not by_name["SLOAD"].skipped
        assert section.skipped == 1
        assert section.cumulative.executions == len(section.outcomes) - 1

    def test_artifacts_are_reused_across_runs(self):
        runner = _storage_runner()
        list(runner.run())
        list(runner.run())
        assert runner.cache.stats.hits == runner.cache.stats.compilations

    def test_outcome_metrics(self):
        outcome = _storage_runner().run_step(get_step("SLOAD"))
        assert outcome.result.status is ExecutionStatus.NORMAL
        assert outcome.total_loops >= 1
        assert outcome.nanos_per_loop == outcome.result.elapsed_nanos / outcome.total_loops
        data = outcome.to_dict()
        assert data["operation"] == "SLOAD"
        assert data["status"] == "normal"
        assert data["status_label"] == "COMPLETED_SUCCESS"

    def test_verbose_logs_each_outcome_at_info(self, caplog):
        profile = BenchmarkProfile(gas_limit=2_000, steps=["SLOAD"], verbose=True)
        with caplog.at_level(logging.INFO, logger="cartevm.runner"):
            list(BenchmarkRunner(profile).run())
        messages = [r.getMessage() for r in caplog.records if r.levelno == logging.INFO]
        assert any(m.startswith("SLOAD: COMPLETED_SUCCESS") for m in messages)
        assert any("initial frame gas 600000" in m for m in messages)

    def test_quiet_keeps_outcomes_at_debug(self, caplog):
        profile = BenchmarkProfile(gas_limit=2_000, steps=["SLOAD"])
        with caplog.at_level(logging.INFO, logger="cartevm.runner"):
            list(BenchmarkRunner(profile).run())
        assert not any(r.getMessage().startswith("SLOAD:") for r in caplog.records)


# ═══════════════════════════════════════════════════════════════════════════
# Runner with solc (subprocess mocked)
# ═══════════════════════════════════════════════════════════════════════════

class TestSolcRunner:
    @pytest.fixture
    def solc_inputs(self, monkeypatch):
        inputs = []

        def fake_run(cmd, **kwargs):
            inputs.append(kwargs["input"])
            return subprocess.CompletedProcess(cmd, 0, stdout="Binary representation:\n00\n", stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)
        return inputs

    def test_solc_receives_yul(self, solc_inputs):
        runner = BenchmarkRunner(BenchmarkProfile(compiler="solc", steps=["SLOAD"], gas_limit=2_000))
        outcome = runner.run_step(get_step("SLOAD"))

        assert not outcome.skipped
        assert outcome.result.status is ExecutionStatus.NORMAL
        assert outcome.generated.dialect == "yul"
        source = solc_inputs[0]
        assert source.startswith("// cartevm benchmark: SLOAD (storage)")
        assert "for { let i := 0 }" in source
        assert "pop(sload(0x54))" in source
        assert "PUSH" not in source
        assert "loop:" not in source

    def test_asm_profile_never_calls_solc(self, solc_inputs):
        outcome = BenchmarkRunner(BenchmarkProfile(steps=["SLOAD"], gas_limit=2_000)).run_step(get_step("SLOAD"))
        assert outcome.generated.dialect == "asm"
        assert solc_inputs == []


# ═══════════════════════════════════════════════════════════════════════════
# Report
# ═══════════════════════════════════════════════════════════════════════════

class TestReport:
    def _section(self):
        ok = BenchmarkOutcome(
            step=get_step("ADD"),
            result=ExecutionResult(status=ExecutionStatus.NORMAL, gas_used=30, elapsed_nanos=0),
        )
        reverted = BenchmarkOutcome(
            step=get_step("REVERT"),
            result=ExecutionResult(
                status=ExecutionStatus.REVERTED, gas_used=12, elapsed_nanos=4, revert_reason=b"\x00",
            ),
        )
        skipped = BenchmarkOutcome(step=get_step("SSTORE"), error="nope")
        return SectionReport(
            title="mixed",
            outcomes=[ok, reverted, skipped],
            cumulative=CumulativeSnapshot(gas=42, nanos=4, executions=2),
        )

    def test_rows(self):
        rows = section_rows(self._section())
        assert [r.status for r in rows] == ["COMPLETED_SUCCESS", "COMPLETED_FAILED", "SKIPPED"]
        assert rows[1].revert_reason_hex == "00"
        assert rows[2].gas_used is None

    def test_table_has_fixed_columns_and_footer(self):
        section = self._section()
        table = build_table(section.title, section_rows(section), section.cumulative)
        assert [c.header for c in table.columns] == list(COLUMNS)
        assert table.columns[0].footer == "CUMULATIVE"
        assert table.row_count == 3

    def test_render_shows_dash_for_undefined_throughput(self):
        console = Console(record=True, width=200)
        section = self._section()
        render_section(console, section.title, section_rows(section), section.cumulative)
        text = console.export_text()
        assert "CUMULATIVE" in text
        assert "SKIPPED" in text
        assert " - " in text

    def test_json_nulls_infinite_throughput(self):
        payload = json.loads(rows_to_json([self._section()]))
        assert payload[0]["section"] == "mixed"
        rows = payload[0]["rows"]
        assert rows[0]["gas_per_second"] is None
        assert rows[1]["gas_per_second"] == 12 * 1e9 / 4
        assert payload[0]["cumulative"]["gas"] == 42

    def test_row_from_skipped_outcome(self):
        row = ReportRow.from_outcome(BenchmarkOutcome(step=get_step("ADD")))
        assert row.status == "SKIPPED"
        assert row.total_loops == 0


# ═══════════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════════

class TestCLI:
    @pytest.fixture(autouse=True)
    def wide_console(self, monkeypatch):
        monkeypatch.setattr("cartevm.cli.main.console", Console(width=200))

    def setup_method(self):
        self.runner = CliRunner()

    def test_version(self):
        result = self.runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_list(self):
        result = self.runner.invoke(cli, ["list", "--category", "storage"])
        assert result.exit_code == 0
        assert "SLOAD" in result.output
        assert "ADD " not in result.output

    def test_list_unknown_category(self):
        result = self.runner.invoke(cli, ["list", "--category", "nope"])
        assert result.exit_code == 1
        assert "Unknown category" in result.output

    def test_compile(self):
        result = self.runner.invoke(cli, ["compile", "SLOAD", "--gas-limit", "2000"])
        assert result.exit_code == 0
        assert "SLOAD" in result.output
        assert "6054" in result.output

    def test_compile_with_solc_shows_yul(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 0, stdout="Binary representation:\n6054545000\n", stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)
        result = self.runner.invoke(cli, ["compile", "SLOAD", "--gas-limit", "2000", "--compiler", "solc"])
        assert result.exit_code == 0, result.output
        assert "pop(sload(0x54))" in result.output
        assert "6054545000" in result.output

    def test_compile_unknown_step(self):
        result = self.runner.invoke(cli, ["compile", "NOPE"])
        assert result.exit_code == 1
        assert "Unknown step" in result.output

    def test_run_renders_table(self):
        result = self.runner.invoke(cli, ["run", "--step", "SLOAD", "--gas-limit", "2000"])
        assert result.exit_code == 0, result.output
        assert "CUMULATIVE" in result.output

    def test_run_writes_json(self, tmp_path):
        out = tmp_path / "report.json"
        result = self.runner.invoke(cli, ["run", "--step", "SLOAD", "--gas-limit", "2000", "--json", str(out)])
        assert result.exit_code == 0, result.output
        payload = json.loads(out.read_text())
        assert payload[0]["section"] == "storage"
        assert payload[0]["rows"][0]["status"] == "COMPLETED_SUCCESS"

    def test_run_json_to_stdout(self):
        result = self.runner.invoke(cli, ["run", "--step", "SLOAD", "--gas-limit", "2000", "--json", "-"])
        assert result.exit_code == 0, result.output
        assert '"section": "storage"' in result.output
        assert "CUMULATIVE" not in result.output

    def test_run_bad_option_value(self):
        result = self.runner.invoke(cli, ["run", "--gas-limit", "0"])
        assert result.exit_code == 1
        assert "gas_limit must be positive" in result.output

    def test_run_unknown_step(self):
        result = self.runner.invoke(cli, ["run", "--step", "NOPE"])
        assert result.exit_code == 1
