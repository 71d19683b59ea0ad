"""Read-side facade consumed by the REST layer."""

from __future__ import annotations

from .model import TransactionRecord
from .scanner import BlockScanner
from .storage import AddressStore


class TxParser:
    """Expose the scanner cursor and the address store behind one object.

    Nothing here mutates the scanner; errors from the scanning threads never
    reach these methods.
    """

    def __init__(self, scanner: BlockScanner, store: AddressStore) -> None:
        self.scanner = scanner
        self.store = store

    def get_current_block(self) -> int:
        return self.scanner.current_block

    def subscribe(self, address: str) -> bool:
        return self.store.subscribe(address)

    def get_transactions(self, address: str) -> list[TransactionRecord]:
        return self.store.get_transactions(address)


__all__ = ["TxParser"]
