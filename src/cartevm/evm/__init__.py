"""
CartEVM interpreter package

A London-rules EVM interpreter with an explicit message frame stack:
- Opcode table with static gas and stack arity
- Layered in-memory world state
- Message frames, block context, EIP-2929 access list, tracer hooks
- Bytecode interpreter (one frame at a time, no recursion)
- Message-call and contract-creation processors
"""

from .opcodes import Opcode, OpcodeInfo, OPCODE_TABLE, lookup_mnemonic
from .state import Account, SimpleWorld, keccak256, to_address, ZERO_ADDRESS
from .frame import (
    AccessList, BlockValues, Code, ExceptionalHaltReason, FrameState, FrameType,
    Log, MessageFrame, NO_TRACING, OperationTracer, new_frame_stack,
)
from .interpreter import EVM
from .processor import (
    AbstractMessageProcessor, ContractCreationProcessor, MessageCallProcessor,
)

__all__ = [
    # Opcodes
    'Opcode', 'OpcodeInfo', 'OPCODE_TABLE', 'lookup_mnemonic',
    # State
    'Account', 'SimpleWorld', 'keccak256', 'to_address', 'ZERO_ADDRESS',
    # Frames
    'AccessList', 'BlockValues', 'Code', 'ExceptionalHaltReason', 'FrameState',
    'FrameType', 'Log', 'MessageFrame', 'NO_TRACING', 'OperationTracer',
    'new_frame_stack',
    # Execution
    'EVM', 'AbstractMessageProcessor', 'ContractCreationProcessor',
    'MessageCallProcessor',
]
