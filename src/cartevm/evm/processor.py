"""
CartEVM — Message Processors
============================

A processor advances the frame on top of the message frame stack through its
lifecycle. Each call to :meth:`AbstractMessageProcessor.process` handles one
frame and returns as soon as that frame either suspends (a child frame was
pushed) or completes (the frame was popped and its completer notified).

Two concrete processors exist, mirroring the two frame types:

* :class:`MessageCallProcessor` — transfers value, then runs the code.
* :class:`ContractCreationProcessor` — checks for address collisions,
  initialises the new account, runs the init code and deposits the returned
  runtime code.
"""

from __future__ import annotations

from .frame import (
    ExceptionalHaltReason, FrameState, MessageFrame, NO_TRACING, OperationTracer,
)
from .interpreter import EVM
from .opcodes import G_CODE_DEPOSIT, MAX_CODE_SIZE


class AbstractMessageProcessor:
    """Shared frame lifecycle; subclasses provide ``start`` and ``code_success``."""

    def __init__(self, evm: EVM):
        self.evm = evm

    def process(self, frame: MessageFrame, tracer: OperationTracer = NO_TRACING):
        if frame.state is FrameState.NOT_STARTED:
            tracer.trace_context_enter(frame)
            self.start(frame, tracer)

        if frame.state is FrameState.CODE_EXECUTING:
            self.evm.run_to_halt(frame, tracer)
            if frame.state is FrameState.CODE_SUSPENDED:
                return
            if frame.state is FrameState.CODE_SUCCESS:
                self.code_success(frame, tracer)

        if frame.state is FrameState.EXCEPTIONAL_HALT:
            self.exceptional_halt(frame)
        if frame.state is FrameState.REVERT:
            self.revert(frame)
        if frame.state is FrameState.COMPLETED_SUCCESS:
            self.completed_success(frame, tracer)
        if frame.state is FrameState.COMPLETED_FAILED:
            self.completed_failed(frame, tracer)

    # Lifecycle steps ---------------------------------------------------

    def start(self, frame: MessageFrame, tracer: OperationTracer):
        raise NotImplementedError

    def code_success(self, frame: MessageFrame, tracer: OperationTracer):
        raise NotImplementedError

    def exceptional_halt(self, frame: MessageFrame):
        frame.world_updater.revert()
        frame.clear_gas_remaining()
        frame.output_data = b""
        frame.state = FrameState.COMPLETED_FAILED

    def revert(self, frame: MessageFrame):
        frame.world_updater.revert()
        frame.state = FrameState.COMPLETED_FAILED

    def completed_success(self, frame: MessageFrame, tracer: OperationTracer):
        if frame.depth == 0:
            for address in frame.self_destructs:
                frame.world_updater.delete(address)
        frame.world_updater.commit()
        self._pop(frame, tracer)

    def completed_failed(self, frame: MessageFrame, tracer: OperationTracer):
        self._pop(frame, tracer)

    @staticmethod
    def _pop(frame: MessageFrame, tracer: OperationTracer):
        # The processed frame is always the top of the stack.
        frame.message_frame_stack.pop()
        tracer.trace_context_exit(frame)
        frame.notify_completion()

    @staticmethod
    def _transfer_value(frame: MessageFrame) -> bool:
        """Move ``frame.value`` from sender to recipient; ``False`` if unfunded."""
        if frame.value == 0 or frame.sender == frame.address:
            frame.world_updater.get_or_create(frame.address)
            return True
        world = frame.world_updater
        sender = world.get_mutable(frame.sender)
        if sender is None or sender.balance < frame.value:
            return False
        sender.balance -= frame.value
        world.get_or_create(frame.address).balance += frame.value
        return True


class MessageCallProcessor(AbstractMessageProcessor):
    """Processes ``MESSAGE_CALL`` frames."""

    def start(self, frame: MessageFrame, tracer: OperationTracer):
        if not self._transfer_value(frame):
            frame.set_exceptional_halt(ExceptionalHaltReason.ILLEGAL_STATE_CHANGE)
            return
        frame.state = FrameState.CODE_EXECUTING

    def code_success(self, frame: MessageFrame, tracer: OperationTracer):
        frame.state = FrameState.COMPLETED_SUCCESS


class ContractCreationProcessor(AbstractMessageProcessor):
    """Processes ``CONTRACT_CREATION`` frames."""

    def __init__(self, evm: EVM, initial_contract_nonce: int = 1,
                 max_code_size: int = MAX_CODE_SIZE, reject_ef_prefix: bool = True):
        super().__init__(evm)
        self.initial_contract_nonce = initial_contract_nonce
        self.max_code_size = max_code_size
        self.reject_ef_prefix = reject_ef_prefix

    def start(self, frame: MessageFrame, tracer: OperationTracer):
        world = frame.world_updater
        existing = world.get(frame.address)
        if existing is not None and (existing.nonce > 0 or existing.code):
            frame.set_exceptional_halt(ExceptionalHaltReason.CONTRACT_ADDRESS_COLLISION)
            return
        if not self._transfer_value(frame):
            frame.set_exceptional_halt(ExceptionalHaltReason.ILLEGAL_STATE_CHANGE)
            return
        contract = world.get_or_create(frame.address)
        contract.nonce = self.initial_contract_nonce
        contract.storage.clear()
        frame.state = FrameState.CODE_EXECUTING

    def code_success(self, frame: MessageFrame, tracer: OperationTracer):
        code = frame.output_data
        if len(code) > self.max_code_size:
            frame.set_exceptional_halt(ExceptionalHaltReason.CODE_TOO_LARGE)
            return
        if self.reject_ef_prefix and code[:1] == b"\xef":
            frame.set_exceptional_halt(ExceptionalHaltReason.INVALID_CODE)
            return
        deposit = G_CODE_DEPOSIT * len(code)
        if frame.remaining_gas < deposit:
            frame.set_exceptional_halt(ExceptionalHaltReason.INSUFFICIENT_GAS)
            return
        frame.decrement_remaining_gas(deposit)
        frame.world_updater.get_or_create(frame.address).code = code
        frame.state = FrameState.COMPLETED_SUCCESS
