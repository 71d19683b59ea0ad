from __future__ import annotations

import threading
import time
from typing import Any, Callable

import pytest

from txparser.config import ScannerConfig
from txparser.model import TransactionRecord
from txparser.rpc_client import RPCClientError, RPCError, RPCTransportError
from txparser.scanner import BlockScanner, ScannerState, _next_tick
from txparser.storage import MemoryAddressStore


def _tx(hash_: str, from_: str, to: str, value: str = "0x1") -> dict[str, Any]:
    return {"hash": hash_, "from": from_, "to": to, "value": value}


class StubLedger:
    """Thread-safe stand-in for the JSON-RPC node."""

    def __init__(self, head: int = 100, blocks: dict[int, list] | None = None, delay: float = 0.0) -> None:
        self.head = head
        self.delay = delay
        self.blocks = blocks or {}
        self.failing_blocks: set[int] = set()
        self.fail_head = False
        self._lock = threading.Lock()
        self.calls: list[tuple[str, list]] = []

    def call(self, method: str, params: list | None = None) -> Any:
        with self._lock:
            self.calls.append((method, list(params or [])))
        if method == "eth_blockNumber":
            if self.fail_head:
                raise RPCTransportError("head unavailable", status_code=503)
            return hex(self.head)
        if method == "eth_getBlockByNumber":
            block_hex, full = params
            assert full is True
            number = int(block_hex, 16)
            if self.delay:
                time.sleep(self.delay)
            if number in self.failing_blocks:
                raise RPCError(-32000, f"block {number} unavailable")
            return {"number": block_hex, "transactions": self.blocks.get(number, [])}
        raise AssertionError(f"unexpected method {method}")

    def head_calls(self) -> int:
        with self._lock:
            return sum(1 for method, _ in self.calls if method == "eth_blockNumber")

    def fetched_blocks(self) -> list[int]:
        with self._lock:
            return [int(params[0], 16) for method, params in self.calls if method == "eth_getBlockByNumber"]


class CountingStore(MemoryAddressStore):
    def __init__(self) -> None:
        super().__init__(gate_reads=False)
        self.writes = 0

    def add_transaction(self, address: str, record: TransactionRecord) -> None:
        super().add_transaction(address, record)
        self.writes += 1


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def _scanner(ledger: StubLedger, store=None, **config: Any) -> BlockScanner:
    settings = {"poll_interval": 60.0, "backward_scan_enabled": False}
    settings.update(config)
    return BlockScanner(ledger, store if store is not None else MemoryAddressStore(), ScannerConfig(**settings))


# process_block -------------------------------------------------------------


def test_process_block_files_outbound_and_inbound_records() -> None:
    ledger = StubLedger(blocks={7: [_tx("h1", "A", "B", "0x1000")]})
    store = MemoryAddressStore()
    scanner = _scanner(ledger, store)

    assert scanner.process_block(7) == 1
    store.subscribe("A")
    store.subscribe("B")

    expected = {"hash": "h1", "from": "A", "to": "B", "value": "4096", "block": 7}
    assert [r.to_dict() for r in store.get_transactions("A")] == [{**expected, "inbound": False}]
    assert [r.to_dict() for r in store.get_transactions("B")] == [{**expected, "inbound": True}]


def test_process_block_sends_minimal_hex_block_number() -> None:
    ledger = StubLedger()
    scanner = _scanner(ledger)

    scanner.process_block(0)
    scanner.process_block(255)

    assert ledger.calls == [
        ("eth_getBlockByNumber", ["0x0", True]),
        ("eth_getBlockByNumber", ["0xff", True]),
    ]


def test_process_block_coerces_malformed_values_to_zero() -> None:
    ledger = StubLedger(blocks={3: [_tx("h1", "A", "B", "0xnope"), {"hash": "h2", "from": "A", "to": None}]})
    store = MemoryAddressStore(gate_reads=False)
    scanner = _scanner(ledger, store)

    scanner.process_block(3)

    assert [r.value for r in store.get_transactions("A")] == ["0", "0"]
    assert store.get_transactions("")[0].hash == "h2"


def test_process_block_failure_writes_nothing() -> None:
    ledger = StubLedger(blocks={9: [_tx("h1", "A", "B")]})
    ledger.failing_blocks.add(9)
    store = CountingStore()
    scanner = _scanner(ledger, store)

    with pytest.raises(RPCClientError):
        scanner.process_block(9)

    assert store.writes == 0


@pytest.mark.parametrize(
    "transactions",
    [
        [_tx("h1", "A", "B"), "0xdeadbeef"],
        "not-a-list",
    ],
)
def test_malformed_block_is_rejected_before_any_write(transactions) -> None:
    class MalformedLedger(StubLedger):
        def call(self, method, params=None):
            if method == "eth_getBlockByNumber":
                return {"number": params[0], "transactions": transactions}
            return super().call(method, params)

    store = CountingStore()
    scanner = _scanner(MalformedLedger(), store)

    with pytest.raises(RPCTransportError):
        scanner.process_block(1)
    assert store.writes == 0


def test_null_block_is_an_error() -> None:
    class MissingBlockLedger(StubLedger):
        def call(self, method, params=None):
            return None

    with pytest.raises(RPCClientError):
        _scanner(MissingBlockLedger()).process_block(1)


def test_scanner_writes_into_the_store_it_was_given() -> None:
    store = CountingStore()
    scanner = _scanner(StubLedger(blocks={5: [_tx("h5", "A", "B")]}), store)

    assert scanner.store is store
    assert scanner.process_block(5) == 1
    assert store.writes == 2
    assert store.addresses() == ["A", "B"]


# forward poll ----------------------------------------------------------------


def test_poll_once_skips_failed_block_and_still_advances_cursor() -> None:
    ledger = StubLedger(
        head=13,
        blocks={
            11: [_tx("h11", "A", "B")],
            12: [_tx("h12", "A", "B")],
            13: [_tx("h13", "A", "B")],
        },
    )
    ledger.failing_blocks.add(12)
    store = MemoryAddressStore()
    scanner = _scanner(ledger, store)
    scanner._cursor = 10

    assert scanner.poll_once() == 3

    assert scanner.current_block == 13
    assert ledger.fetched_blocks() == [11, 12, 13]
    store.subscribe("A")
    assert [r.block for r in store.get_transactions("A")] == [11, 13]


def test_poll_once_head_failure_leaves_cursor_unchanged() -> None:
    ledger = StubLedger(head=20)
    ledger.fail_head = True
    scanner = _scanner(ledger)
    scanner._cursor = 10

    with pytest.raises(RPCClientError):
        scanner.poll_once()

    assert scanner.current_block == 10
    assert ledger.fetched_blocks() == []


def test_poll_once_is_a_noop_when_head_has_not_moved() -> None:
    ledger = StubLedger(head=10)
    scanner = _scanner(ledger)
    scanner._cursor = 10

    assert scanner.poll_once() == 0
    ledger.head = 9
    assert scanner.poll_once() == 0

    assert scanner.current_block == 10
    assert ledger.fetched_blocks() == []


# backward scan -------------------------------------------------------------


def test_backward_scan_descends_and_survives_failures() -> None:
    ledger = StubLedger(blocks={n: [_tx(f"h{n}", "A", "B")] for n in range(1, 6)})
    ledger.failing_blocks.add(3)
    store = MemoryAddressStore(gate_reads=False)
    scanner = _scanner(ledger, store)

    scanner._scan_backward(4, 2, threading.Event())

    assert ledger.fetched_blocks() == [4, 3, 2]
    assert [r.block for r in store.get_transactions("A")] == [4, 2]
    assert scanner.current_block == 0


def test_backward_scan_honours_cancellation() -> None:
    ledger = StubLedger()
    scanner = _scanner(ledger)
    cancel = threading.Event()
    cancel.set()

    scanner._scan_backward(50, 1, cancel)

    assert ledger.fetched_blocks() == []


def test_start_backfills_down_to_depth() -> None:
    ledger = StubLedger(head=5)
    scanner = _scanner(ledger, backward_scan_enabled=True, backward_scan_depth=3)

    scanner.start()
    assert wait_for(lambda: 2 in ledger.fetched_blocks())
    assert scanner.stop(timeout=5)

    assert ledger.fetched_blocks() == [5, 4, 3, 2]
    assert scanner.current_block == 5


def test_start_backfill_never_goes_below_block_one() -> None:
    ledger = StubLedger(head=3)
    scanner = _scanner(ledger, backward_scan_enabled=True, backward_scan_depth=10000)

    scanner.start()
    assert wait_for(lambda: 1 in ledger.fetched_blocks())
    assert scanner.stop(timeout=5)

    assert ledger.fetched_blocks() == [3, 2, 1]


# lifecycle -----------------------------------------------------------------


def test_start_twice_spawns_a_single_coordinator() -> None:
    ledger = StubLedger(head=42)
    scanner = _scanner(ledger)

    scanner.start()
    scanner.start()
    assert wait_for(lambda: scanner.current_block == 42)
    scanner.start()
    assert scanner.stop(timeout=5)

    assert ledger.head_calls() == 1
    assert ledger.fetched_blocks() == [42]


def test_failed_head_lookup_is_fatal_to_startup() -> None:
    ledger = StubLedger(head=42)
    ledger.fail_head = True
    scanner = _scanner(ledger, backward_scan_enabled=True)

    scanner.start()
    assert wait_for(lambda: scanner.state is ScannerState.STOPPED)

    assert scanner.current_block == 0
    assert ledger.head_calls() == 1
    assert ledger.fetched_blocks() == []

    # The started flag was cleared, so a later start tries again.
    ledger.fail_head = False
    scanner.start()
    assert wait_for(lambda: scanner.current_block == 42)
    assert scanner.stop(timeout=5)
    assert ledger.head_calls() == 2


@pytest.mark.parametrize(
    ("now", "expected"),
    [
        (1.02, 1.5),  # batch finished well inside the interval
        (1.49, 1.5),
        (1.5, 2.0),  # landed exactly on the next tick
        (2.3, 2.5),  # two ticks overran, both dropped
    ],
)
def test_next_tick_keeps_a_fixed_rate(now: float, expected: float) -> None:
    assert _next_tick(1.0, now, 0.5) == pytest.approx(expected)


def test_forward_poll_follows_the_head() -> None:
    ledger = StubLedger(head=10, blocks={11: [_tx("h11", "A", "B")], 12: [_tx("h12", "B", "C")]})
    store = MemoryAddressStore()
    scanner = _scanner(ledger, store, poll_interval=0.01)

    scanner.start()
    assert wait_for(lambda: scanner.current_block == 10)
    ledger.head = 12
    assert wait_for(lambda: scanner.current_block == 12)
    assert scanner.stop(timeout=5)

    assert ledger.fetched_blocks() == [10, 11, 12]
    store.subscribe("B")
    assert [(r.hash, r.inbound) for r in store.get_transactions("B")] == [("h11", True), ("h12", False)]


def test_forward_poll_keeps_cursor_through_head_outage() -> None:
    ledger = StubLedger(head=10)
    scanner = _scanner(ledger, poll_interval=0.01)

    scanner.start()
    assert wait_for(lambda: scanner.current_block == 10)
    ledger.fail_head = True
    ledger.head = 15
    assert wait_for(lambda: ledger.head_calls() >= 4)
    assert scanner.current_block == 10
    assert scanner.is_running

    ledger.fail_head = False
    assert wait_for(lambda: scanner.current_block == 15)
    assert scanner.stop(timeout=5)


def test_stop_right_after_start_leaves_no_writers_behind() -> None:
    blocks = {n: [_tx(f"h{n}", f"from{n}", f"to{n}")] for n in range(1, 201)}
    ledger = StubLedger(head=200, blocks=blocks)
    store = CountingStore()
    scanner = _scanner(ledger, store, poll_interval=0.001, backward_scan_enabled=True)

    scanner.start()
    assert scanner.stop(timeout=5)

    writes = store.writes
    assert scanner.state is ScannerState.STOPPED
    assert scanner._live_threads() == []
    time.sleep(0.05)
    assert store.writes == writes


def test_stop_before_start_returns_promptly() -> None:
    scanner = _scanner(StubLedger())

    assert scanner.stop(timeout=1) is True
    assert scanner.state is ScannerState.NOT_STARTED


def test_external_cancellation_stops_every_thread() -> None:
    ledger = StubLedger(head=5000, delay=0.002)
    scanner = _scanner(ledger, backward_scan_enabled=True, backward_scan_depth=4000)
    cancel = threading.Event()

    scanner.start(cancel)
    assert wait_for(lambda: len(ledger.fetched_blocks()) > 3)
    cancel.set()

    assert wait_for(lambda: scanner.state is ScannerState.STOPPED)
    assert scanner.stop(timeout=1) is True
    assert len(ledger.fetched_blocks()) < 4000


def test_start_with_already_cancelled_token_terminates() -> None:
    ledger = StubLedger(head=8)
    scanner = _scanner(ledger, backward_scan_enabled=True)
    cancel = threading.Event()
    cancel.set()

    scanner.start(cancel)
    assert scanner.stop(timeout=5) is True

    assert scanner.state is ScannerState.STOPPED
    assert ledger.fetched_blocks() == [8]
