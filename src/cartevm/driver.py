"""
CartEVM — Execution Driver
==========================

Runs one compiled program against a fixture world and reports what happened.

The driver builds a single message-call frame (sender → receiver, a fixed
ERC-20 ``transfer`` shaped input, no value), then drives the frame stack until
it is empty, dispatching the top frame to the processor for its type. Child
frames pushed by CALL/CREATE are handled by the same loop, so nesting never
recurses.

Only the stack loop sits between the two ``perf_counter_ns()`` readings.

Outcomes are data: a revert or exceptional halt is an
:class:`ExecutionResult` with the matching :class:`ExecutionStatus`, never an
exception.

Usage::

    driver = ExecutionDriver()
    result = driver.run(bytes.fromhex(bytecode), build_world_state(code), 100_000)
    print(result.status, result.gas_used, result.elapsed_nanos)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .evm.frame import (
    AccessList, BlockValues, Code, ExceptionalHaltReason, FrameState, FrameType,
    MessageFrame, NO_TRACING, OperationTracer, new_frame_stack,
)
from .evm.interpreter import EVM
from .evm.processor import ContractCreationProcessor, MessageCallProcessor
from .evm.state import SimpleWorld, to_address
from .fixture import RECEIVER, SENDER

logger = logging.getLogger("cartevm.driver")

DEFAULT_GAS_MULTIPLIER = 300

# transfer(0x4bbeeb066ed09b7aed07bf39eee0460dfa261520, 0x02a34892d36d6c74)
CALL_INPUT = bytes.fromhex(
    "a9059cbb"
    "0000000000000000000000004bbeeb066ed09b7aed07bf39eee0460dfa261520"
    "00000000000000000000000000000000000000000000000002a34892d36d6c74"
)

PRECOMPILE_ADDRESSES = tuple(to_address(i) for i in range(1, 10))


class ExecutionStatus(Enum):
    NORMAL = "normal"
    REVERTED = "reverted"
    EXCEPTIONAL_HALT = "exceptional_halt"


@dataclass(frozen=True)
class ExecutionResult:
    """Terminal status, gas and wall-clock time of one execution."""
    status: ExecutionStatus
    gas_used: int
    elapsed_nanos: int
    halt_reason: Optional[ExceptionalHaltReason] = None
    revert_reason: Optional[bytes] = None
    output: bytes = b""

    @property
    def success(self) -> bool:
        return self.status is ExecutionStatus.NORMAL

    @property
    def status_label(self) -> str:
        """The halt reason name, else the terminal frame state name."""
        if self.status is ExecutionStatus.EXCEPTIONAL_HALT:
            return str(self.halt_reason) if self.halt_reason else "EXCEPTIONAL_HALT"
        state = FrameState.COMPLETED_SUCCESS if self.success else FrameState.COMPLETED_FAILED
        return state.value

    @property
    def revert_reason_hex(self) -> str:
        return "0x" + self.revert_reason.hex() if self.revert_reason else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "status_label": self.status_label,
            "gas_used": self.gas_used,
            "elapsed_nanos": self.elapsed_nanos,
            "halt_reason": str(self.halt_reason) if self.halt_reason else None,
            "revert_reason": self.revert_reason_hex,
            "output": "0x" + self.output.hex(),
        }


class ExecutionDriver:
    """Drives the interpreter's frame stack for one program at a time."""

    def __init__(
        self,
        evm: Optional[EVM] = None,
        gas_multiplier: int = DEFAULT_GAS_MULTIPLIER,
        block_values: Optional[BlockValues] = None,
        tracer: OperationTracer = NO_TRACING,
    ):
        if gas_multiplier < 1:
            raise ValueError("gas_multiplier must be positive")
        self.evm = evm or EVM()
        self.gas_multiplier = gas_multiplier
        self.block_values = block_values or BlockValues()
        self.tracer = tracer
        self.message_call_processor = MessageCallProcessor(self.evm)
        self.contract_creation_processor = ContractCreationProcessor(self.evm)

    def build_initial_frame(self, code_bytes: bytes, world_state: SimpleWorld,
                            initial_gas: int, stack) -> MessageFrame:
        """Create the top-level call frame and push it onto *stack*."""
        access_list = AccessList(addresses=(SENDER, RECEIVER) + PRECOMPILE_ADDRESSES)
        return MessageFrame(
            frame_type=FrameType.MESSAGE_CALL,
            message_frame_stack=stack,
            world_updater=world_state.updater(),
            original_world=world_state,
            initial_gas=initial_gas,
            address=RECEIVER,
            originator=SENDER,
            sender=SENDER,
            code=Code(code_bytes),
            block_values=self.block_values,
            access_list=access_list,
            input_data=CALL_INPUT,
            value=0,
            apparent_value=0,
            depth=0,
        )

    def run(self, code_bytes: bytes, world_state: SimpleWorld, gas_limit: int) -> ExecutionResult:
        """Execute *code_bytes* as the receiver's code and time the frame loop."""
        initial_gas = gas_limit * self.gas_multiplier
        stack = new_frame_stack()
        frame = self.build_initial_frame(code_bytes, world_state, initial_gas, stack)
        tracer = self.tracer
        processors = {
            FrameType.MESSAGE_CALL: self.message_call_processor,
            FrameType.CONTRACT_CREATION: self.contract_creation_processor,
        }

        start = time.perf_counter_ns()
        try:
            while stack:
                top = stack[-1]
                processors[top.type].process(top, tracer)
        except Exception:
            elapsed = time.perf_counter_ns() - start
            logger.exception("Interpreter failure after %d ns at depth %d", elapsed, len(stack))
            return ExecutionResult(
                status=ExecutionStatus.EXCEPTIONAL_HALT,
                gas_used=initial_gas,
                elapsed_nanos=elapsed,
                halt_reason=ExceptionalHaltReason.INTERNAL_ERROR,
            )
        elapsed = time.perf_counter_ns() - start

        return self._result(frame, initial_gas, elapsed)

    @staticmethod
    def _result(frame: MessageFrame, initial_gas: int, elapsed: int) -> ExecutionResult:
        gas_used = initial_gas - frame.remaining_gas
        if frame.exceptional_halt_reason is not None:
            status = ExecutionStatus.EXCEPTIONAL_HALT
        elif frame.state is FrameState.COMPLETED_SUCCESS:
            status = ExecutionStatus.NORMAL
        else:
            status = ExecutionStatus.REVERTED
        return ExecutionResult(
            status=status,
            gas_used=gas_used,
            elapsed_nanos=elapsed,
            halt_reason=frame.exceptional_halt_reason,
            revert_reason=frame.revert_reason,
            output=frame.output_data,
        )
