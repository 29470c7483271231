"""
Opcode Definitions for the CartEVM interpreter

Opcode numbering, stack arity and static gas costs for the London fork.
Dynamic costs (memory expansion, cold/warm access, copy and log costs) are
charged by the interpreter on top of the static cost listed here.
"""
from enum import IntEnum
from typing import Dict, NamedTuple, Optional


class Opcode(IntEnum):
    """London opcode set."""
    # Stop and arithmetic
    STOP = 0x00
    ADD = 0x01
    MUL = 0x02
    SUB = 0x03
    DIV = 0x04
    SDIV = 0x05
    MOD = 0x06
    SMOD = 0x07
    ADDMOD = 0x08
    MULMOD = 0x09
    EXP = 0x0A
    SIGNEXTEND = 0x0B

    # Comparison and bitwise
    LT = 0x10
    GT = 0x11
    SLT = 0x12
    SGT = 0x13
    EQ = 0x14
    ISZERO = 0x15
    AND = 0x16
    OR = 0x17
    XOR = 0x18
    NOT = 0x19
    BYTE = 0x1A
    SHL = 0x1B
    SHR = 0x1C
    SAR = 0x1D

    KECCAK256 = 0x20

    # Environment
    ADDRESS = 0x30
    BALANCE = 0x31
    ORIGIN = 0x32
    CALLER = 0x33
    CALLVALUE = 0x34
    CALLDATALOAD = 0x35
    CALLDATASIZE = 0x36
    CALLDATACOPY = 0x37
    CODESIZE = 0x38
    CODECOPY = 0x39
    GASPRICE = 0x3A
    EXTCODESIZE = 0x3B
    EXTCODECOPY = 0x3C
    RETURNDATASIZE = 0x3D
    RETURNDATACOPY = 0x3E
    EXTCODEHASH = 0x3F

    # Block information
    BLOCKHASH = 0x40
    COINBASE = 0x41
    TIMESTAMP = 0x42
    NUMBER = 0x43
    DIFFICULTY = 0x44
    GASLIMIT = 0x45
    CHAINID = 0x46
    SELFBALANCE = 0x47
    BASEFEE = 0x48

    # Stack, memory, storage and flow
    POP = 0x50
    MLOAD = 0x51
    MSTORE = 0x52
    MSTORE8 = 0x53
    SLOAD = 0x54
    SSTORE = 0x55
    JUMP = 0x56
    JUMPI = 0x57
    PC = 0x58
    MSIZE = 0x59
    GAS = 0x5A
    JUMPDEST = 0x5B

    PUSH1 = 0x60
    PUSH2 = 0x61
    PUSH3 = 0x62
    PUSH4 = 0x63
    PUSH5 = 0x64
    PUSH6 = 0x65
    PUSH7 = 0x66
    PUSH8 = 0x67
    PUSH9 = 0x68
    PUSH10 = 0x69
    PUSH11 = 0x6A
    PUSH12 = 0x6B
    PUSH13 = 0x6C
    PUSH14 = 0x6D
    PUSH15 = 0x6E
    PUSH16 = 0x6F
    PUSH17 = 0x70
    PUSH18 = 0x71
    PUSH19 = 0x72
    PUSH20 = 0x73
    PUSH21 = 0x74
    PUSH22 = 0x75
    PUSH23 = 0x76
    PUSH24 = 0x77
    PUSH25 = 0x78
    PUSH26 = 0x79
    PUSH27 = 0x7A
    PUSH28 = 0x7B
    PUSH29 = 0x7C
    PUSH30 = 0x7D
    PUSH31 = 0x7E
    PUSH32 = 0x7F

    DUP1 = 0x80
    DUP2 = 0x81
    DUP3 = 0x82
    DUP4 = 0x83
    DUP5 = 0x84
    DUP6 = 0x85
    DUP7 = 0x86
    DUP8 = 0x87
    DUP9 = 0x88
    DUP10 = 0x89
    DUP11 = 0x8A
    DUP12 = 0x8B
    DUP13 = 0x8C
    DUP14 = 0x8D
    DUP15 = 0x8E
    DUP16 = 0x8F

    SWAP1 = 0x90
    SWAP2 = 0x91
    SWAP3 = 0x92
    SWAP4 = 0x93
    SWAP5 = 0x94
    SWAP6 = 0x95
    SWAP7 = 0x96
    SWAP8 = 0x97
    SWAP9 = 0x98
    SWAP10 = 0x99
    SWAP11 = 0x9A
    SWAP12 = 0x9B
    SWAP13 = 0x9C
    SWAP14 = 0x9D
    SWAP15 = 0x9E
    SWAP16 = 0x9F

    LOG0 = 0xA0
    LOG1 = 0xA1
    LOG2 = 0xA2
    LOG3 = 0xA3
    LOG4 = 0xA4

    # System
    CREATE = 0xF0
    CALL = 0xF1
    CALLCODE = 0xF2
    RETURN = 0xF3
    DELEGATECALL = 0xF4
    CREATE2 = 0xF5
    STATICCALL = 0xFA
    REVERT = 0xFD
    INVALID = 0xFE
    SELFDESTRUCT = 0xFF


class OpcodeInfo(NamedTuple):
    """Static properties of one opcode."""
    name: str
    inputs: int
    outputs: int
    gas: int
    immediate: int = 0


# Static gas tiers (yellow paper names)
G_ZERO = 0
G_JUMPDEST = 1
G_BASE = 2
G_VERYLOW = 3
G_LOW = 5
G_MID = 8
G_HIGH = 10
G_BLOCKHASH = 20
G_KECCAK256 = 30
G_LOG = 375
G_CREATE = 32000
G_SELFDESTRUCT = 5000

# Dynamic gas constants
G_COPY_WORD = 3
G_KECCAK256_WORD = 6
G_EXP_BYTE = 50
G_LOG_TOPIC = 375
G_LOG_DATA = 8
G_MEMORY = 3
G_QUAD_DIVISOR = 512
G_CODE_DEPOSIT = 200

# EIP-2929 access costs
G_COLD_SLOAD = 2100
G_COLD_ACCOUNT_ACCESS = 2600
G_WARM_ACCESS = 100

# EIP-2200 / EIP-3529 storage costs
G_SSTORE_SET = 20000
G_SSTORE_RESET = 5000 - G_COLD_SLOAD
G_CALL_STIPEND = 2300

# Call costs
G_CALL_VALUE = 9000
G_NEW_ACCOUNT = 25000

MAX_STACK_SIZE = 1024
MAX_CALL_DEPTH = 1024
MAX_CODE_SIZE = 24576


def _build_table() -> Dict[int, OpcodeInfo]:
    table: Dict[int, OpcodeInfo] = {}

    def op(code: Opcode, inputs: int, outputs: int, gas: int, immediate: int = 0):
        table[int(code)] = OpcodeInfo(code.name, inputs, outputs, gas, immediate)

    op(Opcode.STOP, 0, 0, G_ZERO)
    for code in (Opcode.ADD, Opcode.SUB):
        op(code, 2, 1, G_VERYLOW)
    for code in (Opcode.MUL, Opcode.DIV, Opcode.SDIV, Opcode.MOD, Opcode.SMOD,
                 Opcode.SIGNEXTEND):
        op(code, 2, 1, G_LOW)
    op(Opcode.ADDMOD, 3, 1, G_MID)
    op(Opcode.MULMOD, 3, 1, G_MID)
    op(Opcode.EXP, 2, 1, G_HIGH)

    for code in (Opcode.LT, Opcode.GT, Opcode.SLT, Opcode.SGT, Opcode.EQ,
                 Opcode.AND, Opcode.OR, Opcode.XOR, Opcode.BYTE,
                 Opcode.SHL, Opcode.SHR, Opcode.SAR):
        op(code, 2, 1, G_VERYLOW)
    op(Opcode.ISZERO, 1, 1, G_VERYLOW)
    op(Opcode.NOT, 1, 1, G_VERYLOW)

    op(Opcode.KECCAK256, 2, 1, G_KECCAK256)

    for code in (Opcode.ADDRESS, Opcode.ORIGIN, Opcode.CALLER, Opcode.CALLVALUE,
                 Opcode.CALLDATASIZE, Opcode.CODESIZE, Opcode.GASPRICE,
                 Opcode.RETURNDATASIZE, Opcode.COINBASE, Opcode.TIMESTAMP,
                 Opcode.NUMBER, Opcode.DIFFICULTY, Opcode.GASLIMIT,
                 Opcode.CHAINID, Opcode.BASEFEE, Opcode.PC, Opcode.MSIZE,
                 Opcode.GAS):
        op(code, 0, 1, G_BASE)
    op(Opcode.BALANCE, 1, 1, G_ZERO)
    op(Opcode.EXTCODESIZE, 1, 1, G_ZERO)
    op(Opcode.EXTCODEHASH, 1, 1, G_ZERO)
    op(Opcode.EXTCODECOPY, 4, 0, G_ZERO)
    op(Opcode.CALLDATALOAD, 1, 1, G_VERYLOW)
    for code in (Opcode.CALLDATACOPY, Opcode.CODECOPY, Opcode.RETURNDATACOPY):
        op(code, 3, 0, G_VERYLOW)
    op(Opcode.BLOCKHASH, 1, 1, G_BLOCKHASH)
    op(Opcode.SELFBALANCE, 0, 1, G_LOW)

    op(Opcode.POP, 1, 0, G_BASE)
    op(Opcode.MLOAD, 1, 1, G_VERYLOW)
    op(Opcode.MSTORE, 2, 0, G_VERYLOW)
    op(Opcode.MSTORE8, 2, 0, G_VERYLOW)
    op(Opcode.SLOAD, 1, 1, G_ZERO)
    op(Opcode.SSTORE, 2, 0, G_ZERO)
    op(Opcode.JUMP, 1, 0, G_MID)
    op(Opcode.JUMPI, 2, 0, G_HIGH)
    op(Opcode.JUMPDEST, 0, 0, G_JUMPDEST)

    for n in range(1, 33):
        op(Opcode(Opcode.PUSH1 + n - 1), 0, 1, G_VERYLOW, immediate=n)
    for n in range(1, 17):
        op(Opcode(Opcode.DUP1 + n - 1), n, n + 1, G_VERYLOW)
        op(Opcode(Opcode.SWAP1 + n - 1), n + 1, n + 1, G_VERYLOW)
    for n in range(0, 5):
        op(Opcode(Opcode.LOG0 + n), 2 + n, 0, G_LOG)

    op(Opcode.CREATE, 3, 1, G_CREATE)
    op(Opcode.CREATE2, 4, 1, G_CREATE)
    op(Opcode.CALL, 7, 1, G_ZERO)
    op(Opcode.CALLCODE, 7, 1, G_ZERO)
    op(Opcode.DELEGATECALL, 6, 1, G_ZERO)
    op(Opcode.STATICCALL, 6, 1, G_ZERO)
    op(Opcode.RETURN, 2, 0, G_ZERO)
    op(Opcode.REVERT, 2, 0, G_ZERO)
    op(Opcode.SELFDESTRUCT, 1, 0, G_SELFDESTRUCT)
    return table


OPCODE_TABLE: Dict[int, OpcodeInfo] = _build_table()

TERMINATING_OPCODES = frozenset({
    Opcode.STOP, Opcode.RETURN, Opcode.REVERT, Opcode.INVALID, Opcode.SELFDESTRUCT,
})


def opcode_info(value: int) -> Optional[OpcodeInfo]:
    """Look up an opcode byte; ``None`` for undefined opcodes (including INVALID)."""
    return OPCODE_TABLE.get(value)


def lookup_mnemonic(name: str) -> Opcode:
    """Resolve a mnemonic such as ``"sload"`` or ``"SHA3"`` to its opcode."""
    key = name.strip().upper()
    if key == "SHA3":
        key = "KECCAK256"
    elif key == "PREVRANDAO":
        key = "DIFFICULTY"
    return Opcode[key]


def is_push(value: int) -> bool:
    return Opcode.PUSH1 <= value <= Opcode.PUSH32


def push_size(value: int) -> int:
    return value - Opcode.PUSH1 + 1 if is_push(value) else 0
