"""In-memory, thread-safe address index for scanned transactions."""

from __future__ import annotations

import threading
from typing import Dict, List, Set

from .model import TransactionRecord


class AddressStore:
    """Interface for subscription tracking and per-address transaction lists."""

    def subscribe(self, address: str) -> bool:
        raise NotImplementedError

    def add_transaction(self, address: str, record: TransactionRecord) -> None:
        raise NotImplementedError

    def get_transactions(self, address: str) -> list[TransactionRecord]:
        raise NotImplementedError

    def is_subscribed(self, address: str) -> bool:
        raise NotImplementedError


class MemoryAddressStore(AddressStore):
    """Keep every participant's transactions in memory.

    Writes are unconditional: the scanner indexes every address it sees so a
    late subscriber still gets the history accumulated before it subscribed.
    Reads are gated on subscription unless ``gate_reads`` is ``False``.

    Addresses are opaque and case-sensitive. Lists keep arrival order, which
    is not block order when the forward and backward scans both write.
    """

    def __init__(self, *, gate_reads: bool = True) -> None:
        self.gate_reads = gate_reads
        self._lock = threading.Lock()
        self._subscriptions: Set[str] = set()
        self._transactions: Dict[str, List[TransactionRecord]] = {}

    def subscribe(self, address: str) -> bool:
        """Register ``address``; returns ``False`` if it was already subscribed."""

        with self._lock:
            if address in self._subscriptions:
                return False
            self._subscriptions.add(address)
            return True

    def add_transaction(self, address: str, record: TransactionRecord) -> None:
        with self._lock:
            self._transactions.setdefault(address, []).append(record)

    def get_transactions(self, address: str) -> list[TransactionRecord]:
        """Return a snapshot of the records filed under ``address``."""

        with self._lock:
            if self.gate_reads and address not in self._subscriptions:
                return []
            return list(self._transactions.get(address, ()))

    def is_subscribed(self, address: str) -> bool:
        with self._lock:
            return address in self._subscriptions

    def addresses(self) -> list[str]:
        """Return every address that has at least one record, subscribed or not."""

        with self._lock:
            return list(self._transactions)


__all__ = ["AddressStore", "MemoryAddressStore"]
