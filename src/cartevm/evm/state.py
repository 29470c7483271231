"""
CartEVM — World State
=====================

In-memory account model used by the interpreter.

``SimpleWorld`` is both the root world state and, via :meth:`SimpleWorld.updater`,
a journalled child layer. Each message frame executes against its own child
layer; a successful frame commits its layer into the parent, a failed frame
simply drops it.

Reads go through :meth:`SimpleWorld.get` and must not mutate the returned
account. Writes go through :meth:`SimpleWorld.get_or_create` or
:meth:`SimpleWorld.get_mutable`, which copy the account into the current layer
first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Union

from Crypto.Hash import keccak

ADDRESS_MASK = (1 << 160) - 1
ZERO_ADDRESS = "0x" + "00" * 20
EMPTY_CODE_HASH = bytes.fromhex(
    "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
)


def keccak256(data: bytes) -> bytes:
    """Keccak-256 digest (the pre-standard SHA-3 variant Ethereum uses)."""
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def to_address(value: Union[int, str, bytes]) -> str:
    """Normalize an int, hex string or raw bytes into a ``0x``-prefixed,
    lowercase, 20-byte address string.

    Short hex strings are left-padded, so ``to_address("12345678")`` yields
    ``0x0000000000000000000000000000000012345678``.
    """
    if isinstance(value, int):
        return "0x%040x" % (value & ADDRESS_MASK)
    if isinstance(value, (bytes, bytearray)):
        return "0x%040x" % (int.from_bytes(value[-20:], "big") if value else 0)
    text = value.lower()
    if text.startswith("0x"):
        text = text[2:]
    if len(text) > 40:
        raise ValueError(f"Address longer than 20 bytes: {value!r}")
    return "0x" + text.rjust(40, "0")


def address_to_int(address: str) -> int:
    return int(address, 16)


def address_to_bytes(address: str) -> bytes:
    return bytes.fromhex(address[2:])


@dataclass
class Account:
    """A single account: balance, nonce, code and word-addressed storage."""
    balance: int = 0
    nonce: int = 0
    code: bytes = b""
    storage: Dict[int, int] = field(default_factory=dict)

    def is_empty(self) -> bool:
        """EIP-161 emptiness: no code, zero nonce, zero balance."""
        return self.nonce == 0 and self.balance == 0 and not self.code

    def get_storage_value(self, key: int) -> int:
        return self.storage.get(key, 0)

    def set_storage_value(self, key: int, value: int):
        if value == 0:
            self.storage.pop(key, None)
        else:
            self.storage[key] = value

    def code_hash(self) -> bytes:
        return keccak256(self.code) if self.code else EMPTY_CODE_HASH

    def copy(self) -> "Account":
        return Account(
            balance=self.balance,
            nonce=self.nonce,
            code=self.code,
            storage=dict(self.storage),
        )


class SimpleWorld:
    """Layered address -> account mapping.

    A layer records only the accounts it touched. ``None`` marks an account
    deleted in this layer (e.g. by SELFDESTRUCT).
    """

    def __init__(self, parent: Optional["SimpleWorld"] = None):
        self._parent = parent
        self._accounts: Dict[str, Optional[Account]] = {}

    @property
    def parent(self) -> Optional["SimpleWorld"]:
        return self._parent

    # Reads ---------------------------------------------------------------

    def get(self, address: str) -> Optional[Account]:
        """Return the visible account or ``None``. Do not mutate the result."""
        if address in self._accounts:
            return self._accounts[address]
        if self._parent is not None:
            return self._parent.get(address)
        return None

    def is_dead(self, address: str) -> bool:
        account = self.get(address)
        return account is None or account.is_empty()

    # Writes --------------------------------------------------------------

    def get_mutable(self, address: str) -> Optional[Account]:
        """Return an account owned by this layer, or ``None`` if absent."""
        if address in self._accounts:
            return self._accounts[address]
        visible = self._parent.get(address) if self._parent is not None else None
        if visible is None:
            return None
        account = visible.copy()
        self._accounts[address] = account
        return account

    def get_or_create(self, address: str) -> Account:
        account = self.get_mutable(address)
        if account is None:
            account = Account()
            self._accounts[address] = account
        return account

    def delete(self, address: str):
        self._accounts[address] = None

    # Layering ------------------------------------------------------------

    def updater(self) -> "SimpleWorld":
        """Open a child layer on top of this one."""
        return SimpleWorld(parent=self)

    def commit(self):
        """Fold this layer's changes into the parent layer."""
        if self._parent is None:
            return
        self._parent._accounts.update(self._accounts)
        self._accounts.clear()

    def revert(self):
        """Discard every change recorded in this layer."""
        self._accounts.clear()

    # Inspection ----------------------------------------------------------

    def addresses(self) -> Iterator[str]:
        seen = set()
        layer: Optional[SimpleWorld] = self
        while layer is not None:
            for address in layer._accounts:
                if address not in seen:
                    seen.add(address)
                    yield address
            layer = layer._parent

    def accounts(self) -> Dict[str, Account]:
        """Flattened view of every live account visible from this layer."""
        result: Dict[str, Account] = {}
        for address in self.addresses():
            account = self.get(address)
            if account is not None:
                result[address] = account
        return result

    def __repr__(self):
        return f"SimpleWorld({len(self._accounts)} local accounts, parent={self._parent is not None})"
