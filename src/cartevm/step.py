"""
CartEVM — Operations Under Test
===============================

A :class:`Step` names one EVM operation to benchmark and says how to feed it:
which operands to push before it and how many results to pop after it, so
that one loop iteration leaves the stack unchanged.

Operands are listed top-of-stack first, the way the yellow paper lists them
(``CALL`` is ``gas, address, value, argsOffset, argsSize, retOffset,
retSize``). An ``int`` operand becomes a ``PUSH``; a ``str`` operand is an
assembly instruction emitted verbatim (``"GAS"`` yields a fresh value per
iteration, handy as a CREATE2 salt).

``STEPS`` is the built-in catalog, grouped into report sections by
``category``.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .errors import UnknownStepError
from .evm.opcodes import TERMINATING_OPCODES, Opcode, lookup_mnemonic, opcode_info
from .evm.state import to_address

# Fixed sentinel contracts installed by the fixture state.
RETURN_CONTRACT_ADDRESS = to_address("0x00000000000000000000000000000000000ca11e")
REVERT_CONTRACT_ADDRESS = to_address("0x00000000000000000000000000000000000dead5")

_RETURN = int(RETURN_CONTRACT_ADDRESS, 16)
_REVERT = int(REVERT_CONTRACT_ADDRESS, 16)

Operand = Union[int, str]


@dataclass(frozen=True)
class GeneratedCode:
    """Source of one synthesized program and how many times its loop body runs."""
    source: str
    total_loops: int
    dialect: str = "asm"

    def __post_init__(self):
        if self.total_loops < 1:
            raise ValueError(f"total_loops must be >= 1, got {self.total_loops}")


@dataclass(frozen=True)
class Step:
    """One operation under test."""
    name: str
    category: str
    args: Tuple[Operand, ...] = ()
    mnemonic: Optional[str] = None
    outputs: Optional[int] = None
    immediate: Optional[int] = None
    preamble: Tuple[str, ...] = ()
    gas_hint: int = 0
    """Expected dynamic gas per execution, used only to size the loop."""

    @property
    def opcode(self) -> Opcode:
        return lookup_mnemonic(self.mnemonic or self.name)

    @property
    def pops(self) -> int:
        """Stack items to discard after the operation."""
        if self.outputs is not None:
            return self.outputs
        info = opcode_info(self.opcode)
        return info.outputs if info else 0

    @property
    def static_gas(self) -> int:
        info = opcode_info(self.opcode)
        return info.gas if info else 0

    @property
    def terminal(self) -> bool:
        """Halting operation: runs once instead of in a loop."""
        return self.opcode in TERMINATING_OPCODES

    @property
    def display_name(self) -> str:
        return self.name.replace("__", " ")


def _step(name, category, *args, **kwargs) -> Step:
    return Step(name=name, category=category, args=tuple(args), **kwargs)


# Returns 32 bytes from the return contract so RETURNDATA* have data to read.
_RETURNDATA_PREAMBLE = (
    "PUSH 32", "PUSH 0", "PUSH 0", "PUSH 0", f"PUSH {_RETURN}", "GAS", "STATICCALL", "POP",
)

_X = 0x1234567890ABCDEF
_Y = 0xFEDCBA0987654321

STEPS: Tuple[Step, ...] = (
    # Arithmetic
    _step("ADD", "arithmetic", _X, _Y),
    _step("MUL", "arithmetic", _X, _Y),
    _step("SUB", "arithmetic", _Y, _X),
    _step("DIV", "arithmetic", _Y, _X),
    _step("SDIV", "arithmetic", _Y, _X),
    _step("MOD", "arithmetic", _Y, _X),
    _step("SMOD", "arithmetic", _Y, _X),
    _step("ADDMOD", "arithmetic", _X, _Y, 0x7FFF),
    _step("MULMOD", "arithmetic", _X, _Y, 0x7FFF),
    _step("EXP", "arithmetic", 3, 0xFFFF, gas_hint=100),
    _step("SIGNEXTEND", "arithmetic", 0, 0xFF),

    # Comparison and bitwise
    _step("LT", "comparison", _X, _Y),
    _step("GT", "comparison", _X, _Y),
    _step("SLT", "comparison", _X, _Y),
    _step("SGT", "comparison", _X, _Y),
    _step("EQ", "comparison", _X, _Y),
    _step("ISZERO", "comparison", _X),
    _step("AND", "bitwise", _X, _Y),
    _step("OR", "bitwise", _X, _Y),
    _step("XOR", "bitwise", _X, _Y),
    _step("NOT", "bitwise", _X),
    _step("BYTE", "bitwise", 31, _X),
    _step("SHL", "bitwise", 4, _X),
    _step("SHR", "bitwise", 4, _X),
    _step("SAR", "bitwise", 4, _Y),
    _step("KECCAK256", "bitwise", 0, 32, gas_hint=9),

    # Environment
    _step("ADDRESS", "environment"),
    _step("BALANCE", "environment", _RETURN, gas_hint=100),
    _step("ORIGIN", "environment"),
    _step("CALLER", "environment"),
    _step("CALLVALUE", "environment"),
    _step("CALLDATALOAD", "environment", 4),
    _step("CALLDATASIZE", "environment"),
    _step("CALLDATACOPY", "environment", 0, 4, 32, gas_hint=3),
    _step("CODESIZE", "environment"),
    _step("CODECOPY", "environment", 0, 0, 32, gas_hint=3),
    _step("GASPRICE", "environment"),
    _step("EXTCODESIZE", "environment", _RETURN, gas_hint=100),
    _step("EXTCODECOPY", "environment", _RETURN, 0, 0, 9, gas_hint=103),
    _step("EXTCODEHASH", "environment", _RETURN, gas_hint=100),
    _step("RETURNDATASIZE", "environment", preamble=_RETURNDATA_PREAMBLE),
    _step("RETURNDATACOPY", "environment", 0, 0, 32, preamble=_RETURNDATA_PREAMBLE, gas_hint=3),

    # Block information
    _step("BLOCKHASH", "block", 0),
    _step("COINBASE", "block"),
    _step("TIMESTAMP", "block"),
    _step("NUMBER", "block"),
    _step("DIFFICULTY", "block"),
    _step("GASLIMIT", "block"),
    _step("CHAINID", "block"),
    _step("SELFBALANCE", "block"),
    _step("BASEFEE", "block"),

    # Stack and memory
    _step("POP", "stack", _X, outputs=0),
    _step("PUSH1", "stack", immediate=0x99),
    _step("PUSH16", "stack", immediate=_X),
    _step("PUSH32", "stack", immediate=(1 << 256) - 1),
    _step("DUP1", "stack", _X, outputs=2),
    _step("DUP16", "stack", *([_X] * 16), outputs=17),
    _step("SWAP1", "stack", _X, _Y, outputs=2),
    _step("SWAP16", "stack", *([_X] * 17), outputs=17),
    _step("PC", "stack"),
    _step("GAS", "stack"),
    _step("JUMPDEST", "stack"),
    _step("MLOAD", "memory", 0),
    _step("MSTORE", "memory", 0, 0x99),
    _step("MSTORE8", "memory", 0, 0x99),
    _step("MSIZE", "memory"),

    # Storage
    _step("SLOAD", "storage", 0x54, gas_hint=100),
    _step("SSTORE", "storage", 0x54, 0x99, gas_hint=100),

    # Logging
    _step("LOG0", "log", 0, 32, gas_hint=256),
    _step("LOG1", "log", 0, 32, _X, gas_hint=256),
    _step("LOG2", "log", 0, 32, _X, _Y, gas_hint=256),
    _step("LOG3", "log", 0, 32, _X, _Y, _X, gas_hint=256),
    _step("LOG4", "log", 0, 32, _X, _Y, _X, _Y, gas_hint=256),

    # System
    _step("CALL", "system", 0xFFFF, _RETURN, 0, 0, 0, 0, 32, gas_hint=130),
    _step("CALL__REVERT", "system", 0xFFFF, _REVERT, 0, 0, 0, 0, 32, mnemonic="CALL", gas_hint=22250),
    _step("CALLCODE", "system", 0xFFFF, _RETURN, 0, 0, 0, 0, 32, gas_hint=130),
    _step("DELEGATECALL", "system", 0xFFFF, _RETURN, 0, 0, 0, 32, gas_hint=130),
    _step("STATICCALL", "system", 0xFFFF, _RETURN, 0, 0, 0, 32, gas_hint=130),
    _step("CREATE", "system", 0, 0, 0, gas_hint=2600),
    _step("CREATE2", "system", 0, 0, 0, "GAS", gas_hint=2600),
    _step("STOP", "system"),
    _step("RETURN", "system", 0, 32),
    _step("REVERT", "system", 0, 32),
    _step("INVALID", "system"),
    _step("SELFDESTRUCT", "system", _RETURN),
)

_BY_NAME: Dict[str, Step] = {step.name: step for step in STEPS}


def get_step(name: str) -> Step:
    """Look up a catalog step by name (case-insensitive)."""
    step = _BY_NAME.get(name.upper())
    if step is None:
        raise UnknownStepError(name)
    return step


def categories() -> List[str]:
    """Category names in catalog order."""
    return list(OrderedDict.fromkeys(step.category for step in STEPS))


def steps_by_category(steps: Optional[Iterable[Step]] = None) -> "OrderedDict[str, List[Step]]":
    """Group *steps* (default: the whole catalog) into report sections."""
    grouped: "OrderedDict[str, List[Step]]" = OrderedDict()
    for step in steps if steps is not None else STEPS:
        grouped.setdefault(step.category, []).append(step)
    return grouped
