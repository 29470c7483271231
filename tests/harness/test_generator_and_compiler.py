"""
Tests for the step catalog (cartevm.step), the loop generator
(cartevm.generator) and the compilers (cartevm.compiler).
"""

import re
import subprocess

import pytest

from cartevm.compiler import AssemblyCompiler, SolcYulCompiler, get_compiler
from cartevm.driver import ExecutionDriver, ExecutionStatus
from cartevm.errors import CompilationError, UnknownStepError
from cartevm.evm.frame import ExceptionalHaltReason
from cartevm.evm.opcodes import Opcode
from cartevm.fixture import build_world_state
from cartevm.generator import CodeGenerator
from cartevm.step import STEPS, GeneratedCode, categories, get_step, steps_by_category


# ═══════════════════════════════════════════════════════════════════════════
# Assembler
# ═══════════════════════════════════════════════════════════════════════════

class TestAssemblyCompiler:
    def setup_method(self):
        self.asm = AssemblyCompiler()

    def test_minimal_push_width(self):
        assert self.asm.compile("PUSH 1") == "6001"
        assert self.asm.compile("PUSH 0x0100") == "610100"
        assert self.asm.compile("PUSH 0") == "6000"

    def test_sized_push_pads(self):
        assert self.asm.compile("PUSH4 7") == "6300000007"

    def test_labels_resolve_to_push2(self):
        source = "PUSH @end\nJUMP\nINVALID\nend:\nSTOP"
        # 61 0005 56 fe 5b 00
        assert self.asm.compile(source) == "61000556fe5b00"

    def test_comments_and_blank_lines(self):
        source = "; header\n\nPUSH 1 ; one\n// note\nPOP\n"
        assert self.asm.compile(source) == "600150"

    def test_aliases(self):
        assert self.asm.compile("SHA3") == "20"
        assert self.asm.compile("PREVRANDAO") == "44"

    @pytest.mark.parametrize("source", [
        "FOO",
        "PUSH",
        "PUSH 1 2",
        "ADD 1",
        "PUSH33 1",
        "PUSH 0x" + "ff" * 33,
        "PUSH @missing",
        "a:\na:",
    ])
    def test_invalid_sources(self, source):
        with pytest.raises(CompilationError) as exc_info:
            self.asm.compile(source)
        assert exc_info.value.source == source

    def test_get_compiler(self):
        assert isinstance(get_compiler("asm"), AssemblyCompiler)
        assert isinstance(get_compiler("solc", solc_path="/bin/solc"), SolcYulCompiler)
        with pytest.raises(ValueError):
            get_compiler("vyper")


# ═══════════════════════════════════════════════════════════════════════════
# solc wrapper (subprocess mocked)
# ═══════════════════════════════════════════════════════════════════════════

class TestSolcYulCompiler:
    def test_parses_binary_representation(self, monkeypatch):
        stdout = "\n======= <stdin> (EVM) =======\n\nBinary representation:\n6054545000\n"

        def fake_run(cmd, **kwargs):
            assert "--strict-assembly" in cmd
            assert kwargs["input"] == "{ pop(sload(0x54)) }"
            return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)
        compiler = SolcYulCompiler(solc_path="solc")
        assert compiler.compile("{ pop(sload(0x54)) }") == "6054545000"

    def test_nonzero_exit(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="ParserError")

        monkeypatch.setattr(subprocess, "run", fake_run)
        with pytest.raises(CompilationError, match="ParserError"):
            SolcYulCompiler(solc_path="solc").compile("{ oops }")

    def test_missing_binary(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise FileNotFoundError("solc")

        monkeypatch.setattr(subprocess, "run", fake_run)
        with pytest.raises(CompilationError) as exc_info:
            SolcYulCompiler(solc_path="/nonexistent/solc").compile("{}")
        assert isinstance(exc_info.value.cause, FileNotFoundError)

    def test_optimizer_off_by_default(self):
        assert "--optimize" not in SolcYulCompiler(solc_path="solc").command()
        assert "--optimize" in SolcYulCompiler(solc_path="solc", optimize=True).command()

    def test_dialects(self):
        assert AssemblyCompiler.dialect == "asm"
        assert SolcYulCompiler.dialect == "yul"


# ═══════════════════════════════════════════════════════════════════════════
# Step catalog
# ═══════════════════════════════════════════════════════════════════════════

class TestStepCatalog:
    def test_names_are_unique(self):
        names = [s.name for s in STEPS]
        assert len(names) == len(set(names))

    def test_lookup_is_case_insensitive(self):
        assert get_step("sload").opcode is Opcode.SLOAD

    def test_unknown_step(self):
        with pytest.raises(UnknownStepError):
            get_step("NOPE")

    def test_variant_uses_mnemonic(self):
        step = get_step("CALL__REVERT")
        assert step.opcode is Opcode.CALL
        assert step.display_name == "CALL REVERT"

    def test_grouping_follows_catalog_order(self):
        grouped = steps_by_category()
        assert list(grouped) == categories()
        assert sum(len(v) for v in grouped.values()) == len(STEPS)

    def test_generated_code_requires_a_loop(self):
        with pytest.raises(ValueError):
            GeneratedCode(source="STOP", total_loops=0)

    @pytest.mark.parametrize("name", ["STOP", "RETURN", "REVERT", "INVALID", "SELFDESTRUCT"])
    def test_halting_steps_are_terminal(self, name):
        assert get_step(name).terminal

    def test_looping_steps_are_not_terminal(self):
        assert not get_step("ADD").terminal
        assert not get_step("CALL__REVERT").terminal


# ═══════════════════════════════════════════════════════════════════════════
# Generator
# ═══════════════════════════════════════════════════════════════════════════

class TestCodeGenerator:
    def test_deterministic(self):
        gen = CodeGenerator(gas_limit=50_000)
        assert gen.generate(get_step("ADD")) == gen.generate(get_step("ADD"))

    def test_different_limits_change_source(self):
        step = get_step("ADD")
        assert CodeGenerator(gas_limit=50_000).generate(step).source != \
            CodeGenerator(gas_limit=60_000).generate(step).source

    def test_terminal_step_runs_once(self):
        generated = CodeGenerator().generate(get_step("REVERT"))
        assert generated.total_loops == 1
        assert "loop:" not in generated.source

    def test_unroll_respects_size_limit(self):
        gen = CodeGenerator(gas_limit=100_000, size_limit=200)
        generated = gen.generate(get_step("DUP16"))
        code = AssemblyCompiler().compile(generated.source)
        assert len(code) // 2 <= 200
        assert generated.total_loops >= 1

    def test_size_limit_too_small(self):
        with pytest.raises(ValueError):
            CodeGenerator(size_limit=4)

    def test_body_has_zero_net_stack_effect(self):
        step = get_step("SWAP16")
        lines = CodeGenerator.body_lines(step)
        assert lines.count("POP") == 17
        assert lines[17] == "SWAP16"

    @pytest.mark.parametrize("step", STEPS, ids=lambda s: s.name)
    def test_every_step_compiles_and_runs(self, step):
        generated = CodeGenerator(gas_limit=2_000).generate(step)
        code = bytes.fromhex(AssemblyCompiler().compile(generated.source))
        result = ExecutionDriver().run(code, build_world_state(code), 2_000)

        assert result.halt_reason is not ExceptionalHaltReason.INTERNAL_ERROR
        if step.name == "INVALID":
            assert result.status is ExecutionStatus.EXCEPTIONAL_HALT
        elif step.name == "REVERT":
            assert result.status is ExecutionStatus.REVERTED
            assert result.revert_reason == bytes(32)
        else:
            assert result.status is ExecutionStatus.NORMAL, result.status_label


# ═══════════════════════════════════════════════════════════════════════════
# Yul dialect
# ═══════════════════════════════════════════════════════════════════════════

_ASM_TOKEN = re.compile(r"\b(PUSH\d*|DUP\d+|SWAP\d+|JUMPI?|JUMPDEST|POP|loop:)")


class TestYulGeneration:
    def setup_method(self):
        self.gen = CodeGenerator(gas_limit=2_000, dialect="yul")

    def test_loop_around_builtin(self):
        generated = self.gen.generate(get_step("SLOAD"))
        assert generated.dialect == "yul"
        assert generated.source.startswith("// cartevm benchmark: SLOAD (storage)\n{\n")
        assert "    for { let i := 0 } lt(i, 0x" in generated.source
        assert "        pop(sload(0x54))\n" in generated.source
        assert ";" not in generated.source

    def test_loop_count_matches_asm(self):
        asm = CodeGenerator(gas_limit=2_000)
        for name in ("ADD", "SLOAD", "DUP16", "CALL"):
            step = get_step(name)
            assert self.gen.generate(step).total_loops == asm.generate(step).total_loops

    def test_operands_keep_stack_order(self):
        assert self.gen.yul_statement(get_step("SUB")) == \
            "pop(sub(0xfedcba0987654321, 0x1234567890abcdef))"
        assert self.gen.yul_statement(get_step("CREATE2")) == "pop(create2(0x0, 0x0, 0x0, gas()))"

    def test_no_result_is_not_popped(self):
        assert self.gen.yul_statement(get_step("MSTORE")) == "mstore(0x0, 0x99)"
        assert self.gen.yul_statement(get_step("POP")) == "pop(0x1234567890abcdef)"

    def test_stack_ops_are_verbatim(self):
        step = get_step("DUP16")
        expected = AssemblyCompiler().compile("\n".join(CodeGenerator.body_lines(step)))
        assert self.gen.yul_statement(step) == f'verbatim_0i_0o(hex"{expected}")'
        assert self.gen.yul_statement(get_step("PUSH1")) == 'verbatim_0i_0o(hex"609950")'
        assert self.gen.yul_statement(get_step("JUMPDEST")) == 'verbatim_0i_0o(hex"5b")'

    def test_preamble_is_verbatim(self):
        lines = self.gen.generate(get_step("RETURNDATASIZE")).source.splitlines()
        assert lines[2].startswith('    verbatim_0i_0o(hex"6020600060006000620ca11e5afa50")')
        assert lines[3].startswith("    for {")

    def test_terminal_step_runs_once(self):
        generated = self.gen.generate(get_step("REVERT"))
        assert generated.total_loops == 1
        assert generated.source.splitlines()[1:] == ["{", "    revert(0x0, 0x20)", "}"]

    def test_unknown_dialect(self):
        with pytest.raises(ValueError, match="dialect"):
            CodeGenerator(dialect="vyper")

    @pytest.mark.parametrize("step", STEPS, ids=lambda s: s.name)
    def test_every_step_is_plain_yul(self, step):
        source = self.gen.generate(step).source
        header, *body = source.splitlines()
        assert header.startswith("// ")
        code = "\n".join(body)
        assert not _ASM_TOKEN.search(code), code
        assert code == code.lower()
        assert code.count("{") == code.count("}")
        assert code.count("(") == code.count(")")
