"""
Source-to-bytecode compilers used by the benchmark harness.

Two implementations share the ``compile(source) -> hex`` contract:

* :class:`AssemblyCompiler` — an in-process EVM assembler for the loop
  programs produced by :mod:`cartevm.generator`.
* :class:`SolcYulCompiler` — shells out to ``solc --strict-assembly`` for
  the Yul rendition of the same programs. The optimizer stays off by default
  since it prunes the unused pure expressions the loops are made of.

Both raise :class:`~cartevm.errors.CompilationError` and never return partial
output. Results are lowercase hex without a ``0x`` prefix.

Assembly syntax::

    ; comment                 (also // comment)
    loop:                     label, emits JUMPDEST
    PUSH2 0x03e8              sized push (decimal or 0x-hex)
    PUSH 84                   minimal-width push
    PUSH @loop                label reference, always PUSH2
    SLOAD                     any London mnemonic
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from typing import Dict, List, Optional, Tuple

from .errors import CompilationError
from .evm.opcodes import Opcode, lookup_mnemonic

logger = logging.getLogger("cartevm.compiler")

_LABEL_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*):$")
_PUSH_RE = re.compile(r"^PUSH([0-9]*)$", re.IGNORECASE)
_LABEL_PUSH_WIDTH = 2


class Compiler:
    """Interface: turn generated source text into hex bytecode."""

    name = "abstract"
    dialect = "asm"
    """Source language accepted by :meth:`compile` (``"asm"`` or ``"yul"``)."""

    def compile(self, source: str) -> str:
        raise NotImplementedError


class AssemblyCompiler(Compiler):
    """Two-pass assembler for the CartEVM assembly dialect."""

    name = "asm"
    dialect = "asm"

    def compile(self, source: str) -> str:
        try:
            instructions = self._parse(source)
            labels = self._layout(instructions)
            return self._emit(instructions, labels).hex()
        except (KeyError, ValueError, OverflowError) as e:
            raise CompilationError(source, cause=e) from e

    # Pass 0: tokenize --------------------------------------------------

    @staticmethod
    def _strip_comment(line: str) -> str:
        for marker in (";", "//"):
            idx = line.find(marker)
            if idx >= 0:
                line = line[:idx]
        return line.strip()

    def _parse(self, source: str) -> List[Tuple[str, Optional[str], int]]:
        """Return ``(kind, argument, line_no)`` tuples.

        ``kind`` is ``"label"``, ``"push"`` (argument = width or ``""``, plus
        operand appended after a space) or an opcode mnemonic.
        """
        parsed: List[Tuple[str, Optional[str], int]] = []
        for line_no, raw in enumerate(source.splitlines(), start=1):
            line = self._strip_comment(raw)
            if not line:
                continue
            label = _LABEL_RE.match(line)
            if label:
                parsed.append(("label", label.group(1), line_no))
                continue
            parts = line.split()
            mnemonic = parts[0]
            push = _PUSH_RE.match(mnemonic)
            if push:
                if len(parts) != 2:
                    raise ValueError(f"line {line_no}: PUSH needs exactly one operand")
                parsed.append(("push", f"{push.group(1)} {parts[1]}", line_no))
                continue
            if len(parts) != 1:
                raise ValueError(f"line {line_no}: {mnemonic} takes no operand")
            try:
                parsed.append((lookup_mnemonic(mnemonic).name, None, line_no))
            except KeyError:
                raise KeyError(f"line {line_no}: unknown mnemonic '{mnemonic}'") from None
        return parsed

    # Pass 1: sizes and label offsets -----------------------------------

    @staticmethod
    def _push_operand(argument: str) -> Tuple[str, str]:
        width, operand = argument.split(" ", 1)
        return width, operand

    @staticmethod
    def _literal(operand: str) -> int:
        value = int(operand, 16) if operand.lower().startswith("0x") else int(operand, 10)
        if value < 0 or value >= 1 << 256:
            raise ValueError(f"push operand out of range: {operand}")
        return value

    def _push_width(self, argument: str) -> int:
        width, operand = self._push_operand(argument)
        if operand.startswith("@"):
            return int(width) if width else _LABEL_PUSH_WIDTH
        if width:
            n = int(width)
            if not 1 <= n <= 32:
                raise ValueError(f"invalid push width PUSH{width}")
            return n
        return max(1, (self._literal(operand).bit_length() + 7) // 8)

    def _layout(self, instructions) -> Dict[str, int]:
        labels: Dict[str, int] = {}
        offset = 0
        for kind, argument, line_no in instructions:
            if kind == "label":
                if argument in labels:
                    raise ValueError(f"line {line_no}: duplicate label '{argument}'")
                labels[argument] = offset
                offset += 1
            elif kind == "push":
                offset += 1 + self._push_width(argument)
            else:
                offset += 1
        return labels

    # Pass 2: emit ------------------------------------------------------

    def _emit(self, instructions, labels: Dict[str, int]) -> bytes:
        out = bytearray()
        for kind, argument, line_no in instructions:
            if kind == "label":
                out.append(Opcode.JUMPDEST)
            elif kind == "push":
                width = self._push_width(argument)
                _, operand = self._push_operand(argument)
                if operand.startswith("@"):
                    name = operand[1:]
                    if name not in labels:
                        raise KeyError(f"line {line_no}: undefined label '{name}'")
                    value = labels[name]
                else:
                    value = self._literal(operand)
                out.append(Opcode.PUSH1 + width - 1)
                out += value.to_bytes(width, "big")
            else:
                out.append(Opcode[kind])
        return bytes(out)


class SolcYulCompiler(Compiler):
    """Compile strict-assembly Yul with an external ``solc`` binary."""

    name = "solc"
    dialect = "yul"

    def __init__(self, solc_path: Optional[str] = None, evm_version: str = "london",
                 optimize: bool = False, timeout: float = 60.0):
        self.solc_path = solc_path or shutil.which("solc") or "solc"
        self.evm_version = evm_version
        self.optimize = optimize
        self.timeout = timeout

    def command(self) -> List[str]:
        cmd = [self.solc_path, "--strict-assembly", "--evm-version", self.evm_version, "--bin"]
        if self.optimize:
            cmd.append("--optimize")
        cmd.append("-")
        return cmd

    def compile(self, source: str) -> str:
        try:
            proc = subprocess.run(
                self.command(), input=source, capture_output=True, text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise CompilationError(source, cause=e) from e

        if proc.returncode != 0:
            raise CompilationError(source, message=proc.stderr.strip() or f"solc exited with {proc.returncode}")
        bytecode = self._parse_binary(proc.stdout)
        if bytecode is None:
            raise CompilationError(source, message="no binary representation in solc output")
        logger.debug("solc produced %d bytes", len(bytecode) // 2)
        return bytecode

    @staticmethod
    def _parse_binary(stdout: str) -> Optional[str]:
        lines = stdout.splitlines()
        for i, line in enumerate(lines):
            if line.strip().startswith("Binary representation"):
                for candidate in lines[i + 1:]:
                    candidate = candidate.strip()
                    if candidate:
                        return candidate.lower()
        return None


def get_compiler(name: str, **kwargs) -> Compiler:
    """Factory keyed by the CLI's ``--compiler`` choice."""
    if name == AssemblyCompiler.name:
        return AssemblyCompiler()
    if name == SolcYulCompiler.name:
        return SolcYulCompiler(**kwargs)
    raise ValueError(f"Unknown compiler: {name}")
