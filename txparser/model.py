"""Domain models for indexed ledger transactions.

``TransactionRecord`` is what the address store keeps and what the REST layer
returns. ``RPCBlock`` and ``RPCTransaction`` are thin views over the
``eth_getBlockByNumber`` payload so the scanner does not poke at raw dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Mapping

from .hexutil import parse_int, to_decimal_string
from .rpc_client import RPCTransportError


@dataclass(frozen=True)
class TransactionRecord:
    """A ledger transaction filed under one of its participants.

    The same transaction is stored twice: under ``from_address`` with
    ``inbound=False`` and under ``to_address`` with ``inbound=True``.
    ``value`` is a base-10 string so amounts above 2**64 survive JSON.
    """

    hash: str
    from_address: str
    to_address: str
    value: str
    block: int
    inbound: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "block": self.block,
            "inbound": self.inbound,
        }


def _as_str(value: Any) -> str:
    # Contract creations carry ``"to": null``.
    if value is None:
        return ""
    return str(value)


@dataclass(frozen=True)
class RPCTransaction:
    hash: str
    from_address: str
    to_address: str
    value: str

    @classmethod
    def from_rpc(cls, payload: Mapping[str, Any]) -> "RPCTransaction":
        if not isinstance(payload, Mapping):
            raise RPCTransportError(f"Malformed transaction object: {payload!r}")
        return cls(
            hash=_as_str(payload.get("hash")),
            from_address=_as_str(payload.get("from")),
            to_address=_as_str(payload.get("to")),
            value=_as_str(payload.get("value")),
        )

    def records(self, block: int) -> tuple[TransactionRecord, TransactionRecord]:
        """Return the outbound (sender) and inbound (receiver) records."""

        value = to_decimal_string(self.value)
        outbound = TransactionRecord(
            hash=self.hash,
            from_address=self.from_address,
            to_address=self.to_address,
            value=value,
            block=block,
            inbound=False,
        )
        inbound = TransactionRecord(
            hash=self.hash,
            from_address=self.from_address,
            to_address=self.to_address,
            value=value,
            block=block,
            inbound=True,
        )
        return outbound, inbound


@dataclass(frozen=True)
class RPCBlock:
    number: str
    transactions: List[RPCTransaction] = field(default_factory=list)

    @property
    def height(self) -> int:
        return parse_int(self.number)

    @classmethod
    def from_rpc(cls, payload: Any) -> "RPCBlock":
        """Build a block view; a ``null`` or non-object result is malformed."""

        if not isinstance(payload, Mapping):
            raise RPCTransportError(f"Malformed block object: {payload!r}")
        raw_txs = payload.get("transactions") or []
        if not isinstance(raw_txs, list):
            raise RPCTransportError("Malformed block object: 'transactions' is not a list")
        return cls(
            number=_as_str(payload.get("number")),
            transactions=[RPCTransaction.from_rpc(tx) for tx in raw_txs],
        )
