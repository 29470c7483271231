"""
CartEVM — Bytecode Interpreter
==============================

Executes the code of a single :class:`MessageFrame` until the frame halts or
suspends. Call-family and create opcodes never recurse: they push a child
frame onto the shared message frame stack, mark the parent
``CODE_SUSPENDED`` and return. The child's completer resumes the parent.

Gas follows the London schedule: static costs from :mod:`.opcodes`, memory
expansion, EIP-2929 warm/cold access, EIP-2200 SSTORE metering and the
63/64 rule for child-call gas. Refunds are not tracked; gas used is measured
as initial gas minus remaining gas, before any refund.

Usage::

    evm = EVM()
    while frame.state is FrameState.CODE_EXECUTING:
        evm.run_to_halt(frame, NO_TRACING)
"""

from __future__ import annotations

from typing import Callable, Dict, Optional

from .frame import (
    Code, ExceptionalHaltReason, FrameState, FrameType, Log, MessageFrame,
    NO_TRACING, OperationTracer,
)
from .opcodes import (
    G_CALL_STIPEND, G_CALL_VALUE, G_COLD_ACCOUNT_ACCESS, G_COLD_SLOAD,
    G_COPY_WORD, G_EXP_BYTE, G_KECCAK256_WORD, G_LOG_DATA, G_LOG_TOPIC,
    G_MEMORY, G_NEW_ACCOUNT, G_QUAD_DIVISOR, G_SSTORE_RESET, G_SSTORE_SET,
    G_WARM_ACCESS, MAX_CALL_DEPTH, MAX_STACK_SIZE, OPCODE_TABLE, Opcode,
    push_size,
)
from .state import address_to_bytes, address_to_int, keccak256, to_address

UINT256_CEILING = 1 << 256
UINT256_MAX = UINT256_CEILING - 1
SIGN_BIT = 1 << 255


def to_signed(value: int) -> int:
    return value - UINT256_CEILING if value & SIGN_BIT else value


def to_unsigned(value: int) -> int:
    return value & UINT256_MAX


def words_for(size: int) -> int:
    return (size + 31) // 32


def memory_cost(words: int) -> int:
    return G_MEMORY * words + words * words // G_QUAD_DIVISOR


def _padded_slice(data: bytes, offset: int, size: int) -> bytes:
    if offset >= len(data):
        return bytes(size)
    chunk = data[offset:offset + size]
    return chunk + bytes(size - len(chunk))


def _rlp_create_payload(sender: bytes, nonce: int) -> bytes:
    """RLP encoding of ``[sender, nonce]`` used by CREATE addressing."""
    if nonce == 0:
        encoded_nonce = b"\x80"
    elif nonce < 0x80:
        encoded_nonce = bytes([nonce])
    else:
        raw = nonce.to_bytes((nonce.bit_length() + 7) // 8, "big")
        encoded_nonce = bytes([0x80 + len(raw)]) + raw
    payload = bytes([0x80 + len(sender)]) + sender + encoded_nonce
    return bytes([0xC0 + len(payload)]) + payload


def contract_address(sender: str, nonce: int) -> str:
    return to_address(keccak256(_rlp_create_payload(address_to_bytes(sender), nonce))[12:])


def contract_address2(sender: str, salt: int, init_code: bytes) -> str:
    preimage = b"\xff" + address_to_bytes(sender) + salt.to_bytes(32, "big") + keccak256(init_code)
    return to_address(keccak256(preimage)[12:])


class _Halt(Exception):
    """Internal signal that unwinds an opcode handler into an exceptional halt."""

    def __init__(self, reason: ExceptionalHaltReason):
        self.reason = reason
        super().__init__(reason.value)


class EVM:
    """London-rules bytecode interpreter driven one frame at a time."""

    def __init__(self):
        self._handlers: Dict[int, Callable[[MessageFrame], None]] = {
            # Stop and arithmetic
            Opcode.STOP: self._op_stop,
            Opcode.ADD: self._op_add,
            Opcode.MUL: self._op_mul,
            Opcode.SUB: self._op_sub,
            Opcode.DIV: self._op_div,
            Opcode.SDIV: self._op_sdiv,
            Opcode.MOD: self._op_mod,
            Opcode.SMOD: self._op_smod,
            Opcode.ADDMOD: self._op_addmod,
            Opcode.MULMOD: self._op_mulmod,
            Opcode.EXP: self._op_exp,
            Opcode.SIGNEXTEND: self._op_signextend,
            # Comparison and bitwise
            Opcode.LT: self._op_lt,
            Opcode.GT: self._op_gt,
            Opcode.SLT: self._op_slt,
            Opcode.SGT: self._op_sgt,
            Opcode.EQ: self._op_eq,
            Opcode.ISZERO: self._op_iszero,
            Opcode.AND: self._op_and,
            Opcode.OR: self._op_or,
            Opcode.XOR: self._op_xor,
            Opcode.NOT: self._op_not,
            Opcode.BYTE: self._op_byte,
            Opcode.SHL: self._op_shl,
            Opcode.SHR: self._op_shr,
            Opcode.SAR: self._op_sar,
            Opcode.KECCAK256: self._op_keccak256,
            # Environment
            Opcode.ADDRESS: self._op_address,
            Opcode.BALANCE: self._op_balance,
            Opcode.ORIGIN: self._op_origin,
            Opcode.CALLER: self._op_caller,
            Opcode.CALLVALUE: self._op_callvalue,
            Opcode.CALLDATALOAD: self._op_calldataload,
            Opcode.CALLDATASIZE: self._op_calldatasize,
            Opcode.CALLDATACOPY: self._op_calldatacopy,
            Opcode.CODESIZE: self._op_codesize,
            Opcode.CODECOPY: self._op_codecopy,
            Opcode.GASPRICE: self._op_gasprice,
            Opcode.EXTCODESIZE: self._op_extcodesize,
            Opcode.EXTCODECOPY: self._op_extcodecopy,
            Opcode.RETURNDATASIZE: self._op_returndatasize,
            Opcode.RETURNDATACOPY: self._op_returndatacopy,
            Opcode.EXTCODEHASH: self._op_extcodehash,
            # Block information
            Opcode.BLOCKHASH: self._op_blockhash,
            Opcode.COINBASE: self._op_coinbase,
            Opcode.TIMESTAMP: self._op_timestamp,
            Opcode.NUMBER: self._op_number,
            Opcode.DIFFICULTY: self._op_difficulty,
            Opcode.GASLIMIT: self._op_gaslimit,
            Opcode.CHAINID: self._op_chainid,
            Opcode.SELFBALANCE: self._op_selfbalance,
            Opcode.BASEFEE: self._op_basefee,
            # Stack, memory, storage and flow
            Opcode.POP: self._op_pop,
            Opcode.MLOAD: self._op_mload,
            Opcode.MSTORE: self._op_mstore,
            Opcode.MSTORE8: self._op_mstore8,
            Opcode.SLOAD: self._op_sload,
            Opcode.SSTORE: self._op_sstore,
            Opcode.JUMP: self._op_jump,
            Opcode.JUMPI: self._op_jumpi,
            Opcode.PC: self._op_pc,
            Opcode.MSIZE: self._op_msize,
            Opcode.GAS: self._op_gas,
            Opcode.JUMPDEST: self._op_jumpdest,
            # System
            Opcode.CREATE: self._op_create,
            Opcode.CREATE2: self._op_create2,
            Opcode.CALL: self._op_call,
            Opcode.CALLCODE: self._op_callcode,
            Opcode.DELEGATECALL: self._op_delegatecall,
            Opcode.STATICCALL: self._op_staticcall,
            Opcode.RETURN: self._op_return,
            Opcode.REVERT: self._op_revert,
            Opcode.SELFDESTRUCT: self._op_selfdestruct,
        }
        for n in range(1, 33):
            self._handlers[Opcode.PUSH1 + n - 1] = self._op_push
        for n in range(1, 17):
            self._handlers[Opcode.DUP1 + n - 1] = self._make_dup(n)
            self._handlers[Opcode.SWAP1 + n - 1] = self._make_swap(n)
        for n in range(0, 5):
            self._handlers[Opcode.LOG0 + n] = self._make_log(n)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run_to_halt(self, frame: MessageFrame, tracer: OperationTracer = NO_TRACING):
        """Execute *frame* until it leaves the ``CODE_EXECUTING`` state."""
        code = frame.code.bytes
        code_size = len(code)
        handlers = self._handlers
        table = OPCODE_TABLE
        tracing = tracer is not NO_TRACING
        try:
            while frame.state is FrameState.CODE_EXECUTING:
                pc = frame.pc
                if pc >= code_size:
                    self._op_stop(frame)
                    break
                opcode = code[pc]
                info = table.get(opcode)
                if info is None:
                    raise _Halt(ExceptionalHaltReason.INVALID_OPERATION)
                depth = len(frame.stack)
                if depth < info.inputs:
                    raise _Halt(ExceptionalHaltReason.INSUFFICIENT_STACK_ITEMS)
                if depth - info.inputs + info.outputs > MAX_STACK_SIZE:
                    raise _Halt(ExceptionalHaltReason.TOO_MANY_STACK_ITEMS)
                gas_before = frame.remaining_gas
                if gas_before < info.gas:
                    raise _Halt(ExceptionalHaltReason.INSUFFICIENT_GAS)
                frame.remaining_gas = gas_before - info.gas
                frame.pc = pc + 1
                handlers[opcode](frame)
                if tracing:
                    tracer.trace_operation(frame, opcode, gas_before - frame.remaining_gas)
        except _Halt as halt:
            frame.set_exceptional_halt(halt.reason)

    # ------------------------------------------------------------------
    # Gas and memory helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _use_gas(frame: MessageFrame, amount: int):
        if frame.remaining_gas < amount:
            raise _Halt(ExceptionalHaltReason.INSUFFICIENT_GAS)
        frame.remaining_gas -= amount

    def _expand_memory(self, frame: MessageFrame, offset: int, size: int):
        if size == 0:
            return
        end = offset + size
        current_words = frame.memory_words
        if end <= current_words * 32:
            return
        new_words = words_for(end)
        self._use_gas(frame, memory_cost(new_words) - memory_cost(current_words))
        frame.memory.extend(bytes((new_words - current_words) * 32))

    def _read_memory(self, frame: MessageFrame, offset: int, size: int) -> bytes:
        if size == 0:
            return b""
        self._expand_memory(frame, offset, size)
        return bytes(frame.memory[offset:offset + size])

    def _copy_to_memory(self, frame: MessageFrame, dest: int, source: bytes, offset: int, size: int):
        self._use_gas(frame, G_COPY_WORD * words_for(size))
        if size == 0:
            return
        self._expand_memory(frame, dest, size)
        frame.memory[dest:dest + size] = _padded_slice(source, offset, size)

    @staticmethod
    def _access_account(frame: MessageFrame, address: str) -> int:
        return G_WARM_ACCESS if frame.access_list.warm_address(address) else G_COLD_ACCOUNT_ACCESS

    # ------------------------------------------------------------------
    # Stop and arithmetic
    # ------------------------------------------------------------------

    def _op_stop(self, frame: MessageFrame):
        frame.output_data = b""
        frame.state = FrameState.CODE_SUCCESS

    def _op_add(self, frame):
        s = frame.stack
        s.append((s.pop() + s.pop()) & UINT256_MAX)

    def _op_mul(self, frame):
        s = frame.stack
        s.append((s.pop() * s.pop()) & UINT256_MAX)

    def _op_sub(self, frame):
        s = frame.stack
        a = s.pop()
        s.append((a - s.pop()) & UINT256_MAX)

    def _op_div(self, frame):
        s = frame.stack
        a, b = s.pop(), s.pop()
        s.append(a // b if b else 0)

    def _op_sdiv(self, frame):
        s = frame.stack
        a, b = to_signed(s.pop()), to_signed(s.pop())
        if b == 0:
            result = 0
        else:
            sign = -1 if (a < 0) != (b < 0) else 1
            result = sign * (abs(a) // abs(b))
        s.append(to_unsigned(result))

    def _op_mod(self, frame):
        s = frame.stack
        a, b = s.pop(), s.pop()
        s.append(a % b if b else 0)

    def _op_smod(self, frame):
        s = frame.stack
        a, b = to_signed(s.pop()), to_signed(s.pop())
        if b == 0:
            result = 0
        else:
            sign = -1 if a < 0 else 1
            result = sign * (abs(a) % abs(b))
        s.append(to_unsigned(result))

    def _op_addmod(self, frame):
        s = frame.stack
        a, b, n = s.pop(), s.pop(), s.pop()
        s.append((a + b) % n if n else 0)

    def _op_mulmod(self, frame):
        s = frame.stack
        a, b, n = s.pop(), s.pop(), s.pop()
        s.append((a * b) % n if n else 0)

    def _op_exp(self, frame):
        s = frame.stack
        base, exponent = s.pop(), s.pop()
        self._use_gas(frame, G_EXP_BYTE * ((exponent.bit_length() + 7) // 8))
        s.append(pow(base, exponent, UINT256_CEILING))

    def _op_signextend(self, frame):
        s = frame.stack
        b, x = s.pop(), s.pop()
        if b < 31:
            test_bit = b * 8 + 7
            if x & (1 << test_bit):
                x = (x | (UINT256_CEILING - (1 << test_bit))) & UINT256_MAX
            else:
                x &= (1 << test_bit) - 1
        s.append(x)

    # ------------------------------------------------------------------
    # Comparison and bitwise
    # ------------------------------------------------------------------

    def _op_lt(self, frame):
        s = frame.stack
        a, b = s.pop(), s.pop()
        s.append(1 if a < b else 0)

    def _op_gt(self, frame):
        s = frame.stack
        a, b = s.pop(), s.pop()
        s.append(1 if a > b else 0)

    def _op_slt(self, frame):
        s = frame.stack
        a, b = to_signed(s.pop()), to_signed(s.pop())
        s.append(1 if a < b else 0)

    def _op_sgt(self, frame):
        s = frame.stack
        a, b = to_signed(s.pop()), to_signed(s.pop())
        s.append(1 if a > b else 0)

    def _op_eq(self, frame):
        s = frame.stack
        s.append(1 if s.pop() == s.pop() else 0)

    def _op_iszero(self, frame):
        s = frame.stack
        s.append(1 if s.pop() == 0 else 0)

    def _op_and(self, frame):
        s = frame.stack
        s.append(s.pop() & s.pop())

    def _op_or(self, frame):
        s = frame.stack
        s.append(s.pop() | s.pop())

    def _op_xor(self, frame):
        s = frame.stack
        s.append(s.pop() ^ s.pop())

    def _op_not(self, frame):
        s = frame.stack
        s.append(UINT256_MAX ^ s.pop())

    def _op_byte(self, frame):
        s = frame.stack
        i, x = s.pop(), s.pop()
        s.append((x >> (248 - i * 8)) & 0xFF if i < 32 else 0)

    def _op_shl(self, frame):
        s = frame.stack
        shift, value = s.pop(), s.pop()
        s.append((value << shift) & UINT256_MAX if shift < 256 else 0)

    def _op_shr(self, frame):
        s = frame.stack
        shift, value = s.pop(), s.pop()
        s.append(value >> shift if shift < 256 else 0)

    def _op_sar(self, frame):
        s = frame.stack
        shift, value = s.pop(), to_signed(s.pop())
        if shift >= 256:
            s.append(0 if value >= 0 else UINT256_MAX)
        else:
            s.append(to_unsigned(value >> shift))

    def _op_keccak256(self, frame):
        s = frame.stack
        offset, size = s.pop(), s.pop()
        self._use_gas(frame, G_KECCAK256_WORD * words_for(size))
        data = self._read_memory(frame, offset, size)
        s.append(int.from_bytes(keccak256(data), "big"))

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def _op_address(self, frame):
        frame.stack.append(address_to_int(frame.address))

    def _op_balance(self, frame):
        address = to_address(frame.stack.pop())
        self._use_gas(frame, self._access_account(frame, address))
        account = frame.world_updater.get(address)
        frame.stack.append(account.balance if account else 0)

    def _op_origin(self, frame):
        frame.stack.append(address_to_int(frame.originator))

    def _op_caller(self, frame):
        frame.stack.append(address_to_int(frame.sender))

    def _op_callvalue(self, frame):
        frame.stack.append(frame.apparent_value)

    def _op_calldataload(self, frame):
        s = frame.stack
        s.append(int.from_bytes(_padded_slice(frame.input_data, s.pop(), 32), "big"))

    def _op_calldatasize(self, frame):
        frame.stack.append(len(frame.input_data))

    def _op_calldatacopy(self, frame):
        s = frame.stack
        dest, offset, size = s.pop(), s.pop(), s.pop()
        self._copy_to_memory(frame, dest, frame.input_data, offset, size)

    def _op_codesize(self, frame):
        frame.stack.append(len(frame.code))

    def _op_codecopy(self, frame):
        s = frame.stack
        dest, offset, size = s.pop(), s.pop(), s.pop()
        self._copy_to_memory(frame, dest, frame.code.bytes, offset, size)

    def _op_gasprice(self, frame):
        frame.stack.append(frame.gas_price)

    def _op_extcodesize(self, frame):
        address = to_address(frame.stack.pop())
        self._use_gas(frame, self._access_account(frame, address))
        account = frame.world_updater.get(address)
        frame.stack.append(len(account.code) if account else 0)

    def _op_extcodecopy(self, frame):
        s = frame.stack
        address = to_address(s.pop())
        dest, offset, size = s.pop(), s.pop(), s.pop()
        self._use_gas(frame, self._access_account(frame, address))
        account = frame.world_updater.get(address)
        self._copy_to_memory(frame, dest, account.code if account else b"", offset, size)

    def _op_returndatasize(self, frame):
        frame.stack.append(len(frame.return_data))

    def _op_returndatacopy(self, frame):
        s = frame.stack
        dest, offset, size = s.pop(), s.pop(), s.pop()
        if offset + size > len(frame.return_data):
            raise _Halt(ExceptionalHaltReason.INVALID_RETURN_DATA_BUFFER_ACCESS)
        self._copy_to_memory(frame, dest, frame.return_data, offset, size)

    def _op_extcodehash(self, frame):
        address = to_address(frame.stack.pop())
        self._use_gas(frame, self._access_account(frame, address))
        account = frame.world_updater.get(address)
        if account is None or account.is_empty():
            frame.stack.append(0)
        else:
            frame.stack.append(int.from_bytes(account.code_hash(), "big"))

    # ------------------------------------------------------------------
    # Block information
    # ------------------------------------------------------------------

    def _op_blockhash(self, frame):
        number = frame.stack.pop()
        current = frame.block_values.number
        block_hash = None
        if current - 256 <= number < current:
            block_hash = frame.block_values.block_hash_lookup(number)
        frame.stack.append(int.from_bytes(block_hash, "big") if block_hash else 0)

    def _op_coinbase(self, frame):
        frame.stack.append(address_to_int(frame.block_values.coinbase))

    def _op_timestamp(self, frame):
        frame.stack.append(frame.block_values.timestamp)

    def _op_number(self, frame):
        frame.stack.append(frame.block_values.number)

    def _op_difficulty(self, frame):
        frame.stack.append(frame.block_values.difficulty)

    def _op_gaslimit(self, frame):
        frame.stack.append(frame.block_values.gas_limit)

    def _op_chainid(self, frame):
        frame.stack.append(frame.block_values.chain_id)

    def _op_selfbalance(self, frame):
        account = frame.world_updater.get(frame.address)
        frame.stack.append(account.balance if account else 0)

    def _op_basefee(self, frame):
        frame.stack.append(frame.block_values.base_fee)

    # ------------------------------------------------------------------
    # Stack, memory, storage and flow
    # ------------------------------------------------------------------

    def _op_pop(self, frame):
        frame.stack.pop()

    def _op_mload(self, frame):
        s = frame.stack
        offset = s.pop()
        s.append(int.from_bytes(self._read_memory(frame, offset, 32), "big"))

    def _op_mstore(self, frame):
        s = frame.stack
        offset, value = s.pop(), s.pop()
        self._expand_memory(frame, offset, 32)
        frame.memory[offset:offset + 32] = value.to_bytes(32, "big")

    def _op_mstore8(self, frame):
        s = frame.stack
        offset, value = s.pop(), s.pop()
        self._expand_memory(frame, offset, 1)
        frame.memory[offset] = value & 0xFF

    def _op_sload(self, frame):
        key = frame.stack.pop()
        warm = frame.access_list.warm_slot(frame.address, key)
        self._use_gas(frame, G_WARM_ACCESS if warm else G_COLD_SLOAD)
        account = frame.world_updater.get(frame.address)
        frame.stack.append(account.get_storage_value(key) if account else 0)

    def _op_sstore(self, frame):
        if frame.is_static:
            raise _Halt(ExceptionalHaltReason.ILLEGAL_STATE_CHANGE)
        if frame.remaining_gas <= G_CALL_STIPEND:
            raise _Halt(ExceptionalHaltReason.INSUFFICIENT_GAS)
        s = frame.stack
        key, new_value = s.pop(), s.pop()
        world = frame.world_updater
        account = world.get(frame.address)
        current = account.get_storage_value(key) if account else 0
        original_account = frame.original_world.get(frame.address) if frame.original_world else None
        original = original_account.get_storage_value(key) if original_account else 0

        cost = 0 if frame.access_list.warm_slot(frame.address, key) else G_COLD_SLOAD
        if current == new_value:
            cost += G_WARM_ACCESS
        elif original == current:
            cost += G_SSTORE_SET if original == 0 else G_SSTORE_RESET
        else:
            cost += G_WARM_ACCESS
        self._use_gas(frame, cost)
        world.get_or_create(frame.address).set_storage_value(key, new_value)

    def _op_jump(self, frame):
        dest = frame.stack.pop()
        if dest not in frame.code.jump_destinations:
            raise _Halt(ExceptionalHaltReason.INVALID_JUMP_DESTINATION)
        frame.pc = dest

    def _op_jumpi(self, frame):
        s = frame.stack
        dest, condition = s.pop(), s.pop()
        if condition:
            if dest not in frame.code.jump_destinations:
                raise _Halt(ExceptionalHaltReason.INVALID_JUMP_DESTINATION)
            frame.pc = dest

    def _op_pc(self, frame):
        frame.stack.append(frame.pc - 1)

    def _op_msize(self, frame):
        frame.stack.append(frame.memory_words * 32)

    def _op_gas(self, frame):
        frame.stack.append(frame.remaining_gas)

    def _op_jumpdest(self, frame):
        pass

    def _op_push(self, frame):
        code = frame.code.bytes
        start = frame.pc
        size = push_size(code[start - 1])
        data = code[start:start + size]
        if len(data) < size:
            data = data + bytes(size - len(data))
        frame.stack.append(int.from_bytes(data, "big"))
        frame.pc = start + size

    @staticmethod
    def _make_dup(n: int):
        def _op_dup(frame):
            frame.stack.append(frame.stack[-n])
        return _op_dup

    @staticmethod
    def _make_swap(n: int):
        def _op_swap(frame):
            s = frame.stack
            s[-1], s[-1 - n] = s[-1 - n], s[-1]
        return _op_swap

    def _make_log(self, topic_count: int):
        def _op_log(frame):
            if frame.is_static:
                raise _Halt(ExceptionalHaltReason.ILLEGAL_STATE_CHANGE)
            s = frame.stack
            offset, size = s.pop(), s.pop()
            topics = [s.pop() for _ in range(topic_count)]
            self._use_gas(frame, G_LOG_TOPIC * topic_count + G_LOG_DATA * size)
            data = self._read_memory(frame, offset, size)
            frame.logs.append(Log(frame.address, topics, data))
        return _op_log

    # ------------------------------------------------------------------
    # Halting
    # ------------------------------------------------------------------

    def _op_return(self, frame):
        s = frame.stack
        offset, size = s.pop(), s.pop()
        frame.output_data = self._read_memory(frame, offset, size)
        frame.state = FrameState.CODE_SUCCESS

    def _op_revert(self, frame):
        s = frame.stack
        offset, size = s.pop(), s.pop()
        data = self._read_memory(frame, offset, size)
        frame.output_data = data
        frame.revert_reason = data
        frame.state = FrameState.REVERT

    def _op_selfdestruct(self, frame):
        if frame.is_static:
            raise _Halt(ExceptionalHaltReason.ILLEGAL_STATE_CHANGE)
        beneficiary = to_address(frame.stack.pop())
        world = frame.world_updater
        cost = 0 if frame.access_list.warm_address(beneficiary) else G_COLD_ACCOUNT_ACCESS
        own = world.get(frame.address)
        balance = own.balance if own else 0
        if balance and world.is_dead(beneficiary):
            cost += G_NEW_ACCOUNT
        self._use_gas(frame, cost)

        world.get_or_create(beneficiary).balance += balance
        world.get_or_create(frame.address).balance = 0
        frame.self_destructs.add(frame.address)
        frame.output_data = b""
        frame.state = FrameState.CODE_SUCCESS

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def _op_call(self, frame):
        self._generic_call(frame, Opcode.CALL)

    def _op_callcode(self, frame):
        self._generic_call(frame, Opcode.CALLCODE)

    def _op_delegatecall(self, frame):
        self._generic_call(frame, Opcode.DELEGATECALL)

    def _op_staticcall(self, frame):
        self._generic_call(frame, Opcode.STATICCALL)

    def _generic_call(self, frame: MessageFrame, kind: Opcode):
        s = frame.stack
        requested_gas = s.pop()
        target = to_address(s.pop())
        value = s.pop() if kind in (Opcode.CALL, Opcode.CALLCODE) else 0
        in_offset, in_size, out_offset, out_size = s.pop(), s.pop(), s.pop(), s.pop()

        if kind is Opcode.CALL and frame.is_static and value:
            raise _Halt(ExceptionalHaltReason.ILLEGAL_STATE_CHANGE)

        world = frame.world_updater
        self._expand_memory(frame, in_offset, in_size)
        self._expand_memory(frame, out_offset, out_size)
        cost = self._access_account(frame, target)
        if value:
            cost += G_CALL_VALUE
            if kind is Opcode.CALL and world.is_dead(target):
                cost += G_NEW_ACCOUNT
        self._use_gas(frame, cost)

        available = frame.remaining_gas
        child_gas = min(requested_gas, available - available // 64)
        self._use_gas(frame, child_gas)
        if value:
            child_gas += G_CALL_STIPEND

        frame.return_data = b""
        own = world.get(frame.address)
        balance = own.balance if own else 0
        if frame.depth >= MAX_CALL_DEPTH or balance < value:
            frame.increment_remaining_gas(child_gas)
            s.append(0)
            return

        input_data = bytes(frame.memory[in_offset:in_offset + in_size]) if in_size else b""
        target_account = world.get(target)
        code = Code(target_account.code if target_account else b"")

        if kind is Opcode.CALL:
            recipient, sender, apparent_value = target, frame.address, value
            is_static = frame.is_static
        elif kind is Opcode.CALLCODE:
            recipient, sender, apparent_value = frame.address, frame.address, value
            is_static = frame.is_static
        elif kind is Opcode.DELEGATECALL:
            recipient, sender, apparent_value = frame.address, frame.sender, frame.apparent_value
            is_static = frame.is_static
        else:
            recipient, sender, apparent_value = target, frame.address, 0
            is_static = True

        def complete(child: MessageFrame):
            frame.increment_remaining_gas(child.remaining_gas)
            output = child.output_data
            frame.return_data = output
            if out_size and output:
                n = min(out_size, len(output))
                frame.memory[out_offset:out_offset + n] = output[:n]
            if child.state is FrameState.COMPLETED_SUCCESS:
                frame.logs.extend(child.logs)
                frame.self_destructs |= child.self_destructs
                frame.stack.append(1)
            else:
                frame.stack.append(0)
            frame.state = FrameState.CODE_EXECUTING

        frame.state = FrameState.CODE_SUSPENDED
        MessageFrame(
            frame_type=FrameType.MESSAGE_CALL,
            message_frame_stack=frame.message_frame_stack,
            world_updater=world.updater(),
            original_world=frame.original_world,
            initial_gas=child_gas,
            address=recipient,
            contract=target,
            originator=frame.originator,
            sender=sender,
            code=code,
            block_values=frame.block_values,
            access_list=frame.access_list,
            gas_price=frame.gas_price,
            input_data=input_data,
            value=value if kind is not Opcode.DELEGATECALL else 0,
            apparent_value=apparent_value,
            depth=frame.depth + 1,
            is_static=is_static,
            completer=complete,
        )

    # ------------------------------------------------------------------
    # Creates
    # ------------------------------------------------------------------

    def _op_create(self, frame):
        self._generic_create(frame, salt=None)

    def _op_create2(self, frame):
        self._generic_create(frame, salt=0)

    def _generic_create(self, frame: MessageFrame, salt: Optional[int]):
        if frame.is_static:
            raise _Halt(ExceptionalHaltReason.ILLEGAL_STATE_CHANGE)
        s = frame.stack
        value, offset, size = s.pop(), s.pop(), s.pop()
        if salt is not None:
            salt = s.pop()
            self._use_gas(frame, G_KECCAK256_WORD * words_for(size))
        init_code = self._read_memory(frame, offset, size)

        frame.return_data = b""
        world = frame.world_updater
        own = world.get(frame.address)
        if frame.depth >= MAX_CALL_DEPTH or (own.balance if own else 0) < value:
            s.append(0)
            return

        available = frame.remaining_gas
        child_gas = available - available // 64
        self._use_gas(frame, child_gas)

        creator = world.get_or_create(frame.address)
        nonce = creator.nonce
        creator.nonce += 1
        if salt is None:
            new_address = contract_address(frame.address, nonce)
        else:
            new_address = contract_address2(frame.address, salt, init_code)
        frame.access_list.warm_address(new_address)

        def complete(child: MessageFrame):
            frame.increment_remaining_gas(child.remaining_gas)
            if child.state is FrameState.COMPLETED_SUCCESS:
                frame.logs.extend(child.logs)
                frame.self_destructs |= child.self_destructs
                frame.stack.append(address_to_int(child.address))
            else:
                if child.exceptional_halt_reason is None:
                    frame.return_data = child.output_data
                frame.stack.append(0)
            frame.state = FrameState.CODE_EXECUTING

        frame.state = FrameState.CODE_SUSPENDED
        MessageFrame(
            frame_type=FrameType.CONTRACT_CREATION,
            message_frame_stack=frame.message_frame_stack,
            world_updater=world.updater(),
            original_world=frame.original_world,
            initial_gas=child_gas,
            address=new_address,
            contract=new_address,
            originator=frame.originator,
            sender=frame.address,
            code=Code(init_code),
            block_values=frame.block_values,
            access_list=frame.access_list,
            gas_price=frame.gas_price,
            value=value,
            apparent_value=value,
            depth=frame.depth + 1,
            completer=complete,
        )
