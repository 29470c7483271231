"""
Fixture world state for benchmark executions.

Every measured execution starts from a freshly built state with four fixed
accounts:

* ``SENDER`` — funded externally owned account that originates the call.
* ``RECEIVER`` — holds the program under test; storage slot ``0x54`` is
  preset to ``0x99``.
* ``RETURN_CONTRACT_ADDRESS`` — returns its caller's address as one word.
* ``REVERT_CONTRACT_ADDRESS`` — writes storage, then reverts with one byte.

:func:`build_world_state` depends on nothing but its argument.
"""

from __future__ import annotations

from .evm.state import Account, SimpleWorld, to_address
from .step import RETURN_CONTRACT_ADDRESS, REVERT_CONTRACT_ADDRESS

SENDER = to_address("12345678")
RECEIVER = to_address("9abcdef0")

SENDER_BALANCE = 1 << 20
CONTRACT_BALANCE = 0x0BA1A9CE0BA1A9CE

PRESET_SLOT = 0x54
PRESET_VALUE = 0x99

# CALLER PUSH1 0 MSTORE PUSH1 32 PUSH1 0 RETURN
RETURN_CONTRACT_CODE = bytes.fromhex("3360005260206000f3")
# SSTORE(0x55, 0x55) MSTORE(0xa0, 0x43) REVERT(0xa0, 1)
REVERT_CONTRACT_CODE = bytes.fromhex("6055605555604360a052600160a0fd")

FIXTURE_ADDRESSES = (SENDER, RECEIVER, RETURN_CONTRACT_ADDRESS, REVERT_CONTRACT_ADDRESS)


def build_world_state(code_bytes: bytes) -> SimpleWorld:
    """Return a new world whose receiver runs *code_bytes*."""
    world = SimpleWorld()

    sender = world.get_or_create(SENDER)
    sender.balance = SENDER_BALANCE

    receiver = world.get_or_create(RECEIVER)
    receiver.code = bytes(code_bytes)
    receiver.set_storage_value(PRESET_SLOT, PRESET_VALUE)

    for address, code in ((RETURN_CONTRACT_ADDRESS, RETURN_CONTRACT_CODE),
                          (REVERT_CONTRACT_ADDRESS, REVERT_CONTRACT_CODE)):
        contract = world.get_or_create(address)
        contract.balance = CONTRACT_BALANCE
        contract.code = code
    return world


def snapshot_accounts(world: SimpleWorld) -> dict:
    """Plain-data view of the fixture accounts, for comparisons and debugging."""
    result = {}
    for address in FIXTURE_ADDRESSES:
        account = world.get(address)
        result[address] = None if account is None else {
            "balance": account.balance,
            "nonce": account.nonce,
            "code": account.code.hex(),
            "storage": dict(account.storage),
        }
    return result
