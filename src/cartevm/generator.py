"""
CartEVM — Benchmark Program Generator
=====================================

Turns a :class:`~cartevm.step.Step` into source for one of the compilers.
Two dialects render the same loop.

``asm`` (for :class:`~cartevm.compiler.AssemblyCompiler`) keeps the loop
counter at the bottom of the stack and repeats an unrolled body::

    <preamble>
    PUSH <outer>
    loop:
      (push operands, OP, pop results) x unroll
      PUSH 1 / SWAP1 / SUB / DUP1 / PUSH @loop / JUMPI
    POP
    STOP

``yul`` (for :class:`~cartevm.compiler.SolcYulCompiler`) is a strict-assembly
object whose ``for`` loop calls the matching builtin::

    {
        verbatim_0i_0o(hex"<preamble>")
        for { let i := 0 } lt(i, <outer>) { i := add(i, 1) } {
            pop(sload(0x54))            x unroll
        }
    }

Operations Yul has no builtin for (PUSHn, DUPn, SWAPn, PC, JUMPDEST) are
embedded as ``verbatim_0i_0o`` bytes of their assembled asm body, which is
stack neutral.

``unroll`` is bounded by the code size limit and ``outer`` by an estimate of
the gas one pass costs, so the loop spends roughly ``gas_limit`` gas. Both
dialects share that estimate. Terminal steps (STOP, RETURN, REVERT, ...) run
their body once with no loop.

Output depends only on the step and the generator settings, so the same step
always yields the same source and hits the artifact cache.
"""

from __future__ import annotations

import logging
from typing import List

from .compiler import AssemblyCompiler
from .evm.opcodes import lookup_mnemonic, opcode_info
from .step import GeneratedCode, Step

logger = logging.getLogger("cartevm.generator")

DEFAULT_MAX_UNROLL = 64
DIALECTS = ("asm", "yul")

# JUMPDEST + PUSH1 + SWAP1 + SUB + DUP1 + PUSH2 + JUMPI
_LOOP_GAS = 1 + 3 + 3 + 3 + 3 + 3 + 10
# PUSH4 counter + JUMPDEST + PUSH1 1 + SWAP1 + SUB + DUP1 + PUSH2 + JUMPI + POP + STOP
_LOOP_BYTES = 5 + 1 + 2 + 1 + 1 + 1 + 3 + 1 + 1 + 1
_PUSH_GAS = 3
_POP_GAS = 2

_NO_YUL_BUILTIN = frozenset({"PC", "JUMP", "JUMPI", "JUMPDEST"})
_YUL_INDENT = "    "


def _push_bytes(value: int) -> int:
    return 1 + max(1, (value.bit_length() + 7) // 8)


def has_yul_builtin(step: Step) -> bool:
    """True when Yul can call *step*'s operation by its lowercase name."""
    if step.immediate is not None:
        return False
    name = step.opcode.name
    return not (name.startswith(("PUSH", "DUP", "SWAP")) or name in _NO_YUL_BUILTIN)


class CodeGenerator:
    """Deterministic loop-program generator"""

    def __init__(self, gas_limit: int = 100_000, size_limit: int = 24_576,
                 max_unroll: int = DEFAULT_MAX_UNROLL, dialect: str = "asm"):
        if gas_limit < 1:
            raise ValueError("gas_limit must be positive")
        if size_limit < _LOOP_BYTES + 1:
            raise ValueError(f"size_limit must be at least {_LOOP_BYTES + 1} bytes")
        if dialect not in DIALECTS:
            raise ValueError(f"Unknown dialect: {dialect}")
        self.gas_limit = gas_limit
        self.size_limit = size_limit
        self.max_unroll = max(1, max_unroll)
        self.dialect = dialect
        self._assembler = AssemblyCompiler()

    # ------------------------------------------------------------------
    # Body shape
    # ------------------------------------------------------------------

    @staticmethod
    def body_lines(step: Step) -> List[str]:
        """Assembly for one execution of *step* with a net-zero stack effect."""
        lines = []
        for operand in reversed(step.args):
            lines.append(f"PUSH {operand}" if isinstance(operand, int) else operand)
        if step.immediate is not None:
            lines.append(f"{step.mnemonic or step.name} 0x{step.immediate:x}")
        else:
            lines.append(step.mnemonic or step.name)
        if not step.terminal:
            lines.extend(["POP"] * step.pops)
        return lines

    @staticmethod
    def body_size(step: Step) -> int:
        size = 0
        for operand in step.args:
            size += _push_bytes(operand) if isinstance(operand, int) else 1
        if step.immediate is not None:
            size += 1 + int((step.mnemonic or step.name)[4:])
        else:
            size += 1
        return size + step.pops

    @staticmethod
    def body_gas(step: Step) -> int:
        gas = 0
        for operand in step.args:
            if isinstance(operand, int):
                gas += _PUSH_GAS
            else:
                info = opcode_info(lookup_mnemonic(operand))
                gas += info.gas if info else 0
        return gas + step.static_gas + step.gas_hint + _POP_GAS * step.pops

    def yul_statement(self, step: Step) -> str:
        """One Yul statement executing *step* once with no leftover values."""
        if not has_yul_builtin(step):
            return self._verbatim(self.body_lines(step))
        args = ", ".join(
            f"0x{operand:x}" if isinstance(operand, int) else f"{operand.lower()}()"
            for operand in step.args
        )
        call = f"{(step.mnemonic or step.name).lower()}({args})"
        if step.pops and not step.terminal:
            return f"pop({call})"
        return call

    def _verbatim(self, lines: List[str]) -> str:
        code = self._assembler.compile("\n".join(lines))
        return f'verbatim_0i_0o(hex"{code}")'

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def loop_shape(self, step: Step):
        """Return ``(outer, unroll)`` for *step* under the current limits."""
        preamble_bytes = sum(
            _push_bytes(int(line.split()[1], 0)) if line.startswith("PUSH") else 1
            for line in step.preamble
        )
        room = self.size_limit - _LOOP_BYTES - preamble_bytes
        body_gas = max(1, self.body_gas(step))
        unroll = min(self.max_unroll, room // max(1, self.body_size(step)), self.gas_limit // body_gas)
        unroll = max(1, unroll)
        pass_gas = unroll * body_gas + _LOOP_GAS
        outer = max(1, self.gas_limit // pass_gas)
        # keep the counter within the PUSH4 the size estimate assumes
        outer = min(outer, 0xFFFFFFFF)
        return outer, unroll

    def generate(self, step: Step) -> GeneratedCode:
        if self.dialect == "yul":
            return self.generate_yul(step)
        return self.generate_asm(step)

    def generate_asm(self, step: Step) -> GeneratedCode:
        header = [f"; cartevm benchmark: {step.name} ({step.category})"]
        header.extend(step.preamble)

        if step.terminal:
            lines = header + self.body_lines(step)
            return GeneratedCode(source="\n".join(lines) + "\n", total_loops=1)

        outer, unroll = self.loop_shape(step)
        body = self.body_lines(step)
        lines = header + [f"PUSH4 0x{outer:08x}", "loop:"]
        for _ in range(unroll):
            lines.extend(body)
        lines.extend([
            "PUSH 1",
            "SWAP1",
            "SUB",
            "DUP1",
            "PUSH @loop",
            "JUMPI",
            "POP",
            "STOP",
        ])
        logger.debug("Generated %s: outer=%d unroll=%d", step.name, outer, unroll)
        return GeneratedCode(source="\n".join(lines) + "\n", total_loops=outer * unroll)

    def generate_yul(self, step: Step) -> GeneratedCode:
        lines = [f"// cartevm benchmark: {step.name} ({step.category})", "{"]
        if step.preamble:
            lines.append(_YUL_INDENT + self._verbatim(list(step.preamble)))

        if step.terminal:
            lines.extend([_YUL_INDENT + self.yul_statement(step), "}"])
            return GeneratedCode(source="\n".join(lines) + "\n", total_loops=1, dialect="yul")

        outer, unroll = self.loop_shape(step)
        statement = self.yul_statement(step)
        lines.append(_YUL_INDENT + f"for {{ let i := 0 }} lt(i, 0x{outer:x}) {{ i := add(i, 1) }} {{")
        lines.extend([_YUL_INDENT * 2 + statement] * unroll)
        lines.extend([_YUL_INDENT + "}", "}"])
        logger.debug("Generated Yul %s: outer=%d unroll=%d", step.name, outer, unroll)
        return GeneratedCode(source="\n".join(lines) + "\n", total_loops=outer * unroll, dialect="yul")
