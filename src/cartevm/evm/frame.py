"""
CartEVM — Message Frames
========================

A :class:`MessageFrame` is one unit of interpreter execution: a message call
or a contract creation, with its own stack, memory, gas and world-state
layer. Frames live on an explicit last-in-first-out work list (the *message
frame stack*). Creating a frame pushes it onto that stack; the processors pop
it once it reaches a completed state.

Frame lifecycle::

    NOT_STARTED -> CODE_EXECUTING -> CODE_SUSPENDED (child frame running)
                                  -> CODE_SUCCESS | REVERT | EXCEPTIONAL_HALT
                -> COMPLETED_SUCCESS | COMPLETED_FAILED -> popped
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, FrozenSet, List, Optional, Set, Tuple

from .opcodes import Opcode, push_size
from .state import SimpleWorld, ZERO_ADDRESS, keccak256, to_address


class FrameType(Enum):
    MESSAGE_CALL = "MESSAGE_CALL"
    CONTRACT_CREATION = "CONTRACT_CREATION"


class FrameState(Enum):
    NOT_STARTED = "NOT_STARTED"
    CODE_EXECUTING = "CODE_EXECUTING"
    CODE_SUSPENDED = "CODE_SUSPENDED"
    CODE_SUCCESS = "CODE_SUCCESS"
    EXCEPTIONAL_HALT = "EXCEPTIONAL_HALT"
    REVERT = "REVERT"
    COMPLETED_SUCCESS = "COMPLETED_SUCCESS"
    COMPLETED_FAILED = "COMPLETED_FAILED"


class ExceptionalHaltReason(Enum):
    """Why a frame stopped abnormally. Reported as data, never raised."""
    INSUFFICIENT_GAS = "Insufficient gas"
    INSUFFICIENT_STACK_ITEMS = "Stack underflow"
    TOO_MANY_STACK_ITEMS = "Stack overflow"
    INVALID_JUMP_DESTINATION = "Invalid jump destination"
    INVALID_OPERATION = "Invalid opcode"
    ILLEGAL_STATE_CHANGE = "Illegal state change"
    INVALID_RETURN_DATA_BUFFER_ACCESS = "Out of bounds return data access"
    CODE_TOO_LARGE = "Code is too large"
    INVALID_CODE = "Code starts with 0xEF"
    CONTRACT_ADDRESS_COLLISION = "Contract address collision"
    INTERNAL_ERROR = "Internal interpreter error"

    def __str__(self):
        return self.name


class Code:
    """Immutable program bytes plus lazily computed jump destinations."""

    __slots__ = ("bytes", "_jump_destinations")

    def __init__(self, code: bytes):
        self.bytes = bytes(code)
        self._jump_destinations: Optional[FrozenSet[int]] = None

    @property
    def jump_destinations(self) -> FrozenSet[int]:
        if self._jump_destinations is None:
            dests: Set[int] = set()
            pc = 0
            code = self.bytes
            while pc < len(code):
                op = code[pc]
                if op == Opcode.JUMPDEST:
                    dests.add(pc)
                pc += 1 + push_size(op)
            self._jump_destinations = frozenset(dests)
        return self._jump_destinations

    def hash(self) -> bytes:
        return keccak256(self.bytes)

    def __len__(self):
        return len(self.bytes)

    def __repr__(self):
        return f"Code({len(self.bytes)} bytes)"


@dataclass
class BlockValues:
    """Minimal synthetic block context."""
    number: int = 1
    timestamp: int = 0
    coinbase: str = ZERO_ADDRESS
    gas_limit: int = 30_000_000
    difficulty: int = 0
    base_fee: int = 10
    chain_id: int = 10
    block_hash_lookup: Callable[[int], Optional[bytes]] = field(
        default=lambda number: None, repr=False
    )


class AccessList:
    """Transaction-wide EIP-2929 warm address and storage-slot sets."""

    def __init__(self, addresses=(), slots=()):
        self.addresses: Set[str] = set(addresses)
        self.slots: Set[Tuple[str, int]] = set(slots)

    def warm_address(self, address: str) -> bool:
        """Mark *address* warm. Returns ``True`` if it was already warm."""
        if address in self.addresses:
            return True
        self.addresses.add(address)
        return False

    def warm_slot(self, address: str, key: int) -> bool:
        """Mark the storage slot warm. Returns ``True`` if it was already warm."""
        slot = (address, key)
        if slot in self.slots:
            return True
        self.slots.add(slot)
        return False


class OperationTracer:
    """Hook points for observing execution. The base class traces nothing."""

    def trace_context_enter(self, frame: "MessageFrame"):
        pass

    def trace_context_exit(self, frame: "MessageFrame"):
        pass

    def trace_operation(self, frame: "MessageFrame", opcode: int, gas_cost: int):
        pass


NO_TRACING = OperationTracer()


@dataclass
class Log:
    address: str
    topics: List[int]
    data: bytes


class MessageFrame:
    """Execution state of one call or creation context.

    Constructing a frame pushes it onto ``message_frame_stack``.
    """

    def __init__(
        self,
        *,
        frame_type: FrameType,
        message_frame_stack: Deque["MessageFrame"],
        world_updater: SimpleWorld,
        initial_gas: int,
        address: str,
        originator: str,
        sender: str,
        code: Code,
        block_values: BlockValues,
        access_list: AccessList,
        original_world: Optional[SimpleWorld] = None,
        contract: str = ZERO_ADDRESS,
        gas_price: int = 0,
        input_data: bytes = b"",
        value: int = 0,
        apparent_value: int = 0,
        depth: int = 0,
        is_static: bool = False,
        completer: Optional[Callable[["MessageFrame"], None]] = None,
    ):
        self.type = frame_type
        self.message_frame_stack = message_frame_stack
        self.world_updater = world_updater
        self.original_world = original_world if original_world is not None else world_updater.parent
        self.initial_gas = initial_gas
        self.remaining_gas = initial_gas
        self.address = to_address(address)
        self.originator = to_address(originator)
        self.sender = to_address(sender)
        self.contract = to_address(contract)
        self.code = code
        self.block_values = block_values
        self.access_list = access_list
        self.gas_price = gas_price
        self.input_data = bytes(input_data)
        self.value = value
        self.apparent_value = apparent_value
        self.depth = depth
        self.is_static = is_static
        self._completer = completer

        self.state = FrameState.NOT_STARTED
        self.pc = 0
        self.stack: List[int] = []
        self.memory = bytearray()
        self.return_data = b""
        self.output_data = b""
        self.revert_reason: Optional[bytes] = None
        self.exceptional_halt_reason: Optional[ExceptionalHaltReason] = None
        self.logs: List[Log] = []
        self.self_destructs: Set[str] = set()

        message_frame_stack.append(self)

    # ------------------------------------------------------------------
    # Gas
    # ------------------------------------------------------------------

    def decrement_remaining_gas(self, amount: int):
        self.remaining_gas -= amount

    def increment_remaining_gas(self, amount: int):
        self.remaining_gas += amount

    def clear_gas_remaining(self):
        self.remaining_gas = 0

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def set_exceptional_halt(self, reason: ExceptionalHaltReason):
        self.exceptional_halt_reason = reason
        self.state = FrameState.EXCEPTIONAL_HALT

    def notify_completion(self):
        if self._completer is not None:
            self._completer(self)

    @property
    def memory_words(self) -> int:
        return len(self.memory) // 32

    def __repr__(self):
        return (
            f"MessageFrame({self.type.value}, address={self.address}, "
            f"depth={self.depth}, state={self.state.value}, gas={self.remaining_gas})"
        )


def new_frame_stack() -> Deque[MessageFrame]:
    return deque()
