"""Block scanner feeding the address store from a JSON-RPC ledger.

The scanner runs on plain threads. :meth:`BlockScanner.start` spawns one
coordinating thread that

1. reads the ledger head (a failure here is fatal: there is no cursor to
   start from, so the thread exits and the scanner can be started again),
2. processes the head block synchronously and sets the cursor to it,
3. optionally spawns a bounded backward scan over ``[head-1, max(1, head-depth)]``,
4. polls forward every ``poll_interval`` seconds until cancelled.

Both loops share one :class:`threading.Event` for cancellation and check it
between blocks; an in-flight RPC call is never interrupted.
:meth:`BlockScanner.stop` sets the event and joins every spawned thread.

Only the coordinating thread writes the cursor. The backward scan writes to
the store and nothing else, so records for one address may arrive out of
block order when both scans are active.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Any, Callable, List, Optional

from .config import ScannerConfig
from .hexutil import encode_block_number, parse_int
from .model import RPCBlock
from .rpc_client import RPCClientError
from .storage import AddressStore

logger = logging.getLogger(__name__)

BACKWARD_PROGRESS_EVERY = 1000


def _next_tick(deadline: float, now: float, interval: float) -> float:
    """Return the first tick after ``now`` on the grid that ``deadline`` sits on.

    Ticks that passed while a batch was running are dropped, not queued.
    """

    missed = max(0, int((now - deadline) // interval))
    return deadline + (missed + 1) * interval


class ScannerState(str, enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class BlockScanner:
    """Coordinate the historical backfill and the real-time forward poll.

    Args:
        rpc: Anything exposing ``call(method, params)``, typically an
            :class:`~txparser.rpc_client.EthereumRPCClient`.
        store: Destination for the decoded transaction records.
        config: Poll interval and backward-scan settings.
    """

    def __init__(self, rpc: Any, store: AddressStore, config: ScannerConfig | None = None) -> None:
        self.rpc = rpc
        self.store = store
        self.config = config or ScannerConfig()
        self._cursor = 0
        self._started = False
        self._ever_started = False
        self._started_lock = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._threads_lock = threading.Lock()
        self._cancel = threading.Event()

    # Public surface -------------------------------------------------------

    @property
    def current_block(self) -> int:
        """Highest block number the forward path has fully attempted."""

        return self._cursor

    @property
    def state(self) -> ScannerState:
        with self._started_lock:
            if not self._ever_started:
                return ScannerState.NOT_STARTED
        if self._live_threads():
            return ScannerState.STOPPING if self._cancel.is_set() else ScannerState.RUNNING
        return ScannerState.STOPPED

    @property
    def is_running(self) -> bool:
        return self.state is ScannerState.RUNNING

    def start(self, cancel_event: Optional[threading.Event] = None) -> None:
        """Launch the coordinating thread unless it is already running.

        ``cancel_event`` lets the caller share a cancellation signal with other
        components; when omitted the scanner creates its own, which
        :meth:`stop` sets.
        """

        with self._started_lock:
            if self._started:
                logger.debug("scanner already started; ignoring start request")
                return
            if self._live_threads():
                logger.warning("previous scan threads are still exiting; ignoring start request")
                return
            self._started = True
            self._ever_started = True
            self._cancel = cancel_event if cancel_event is not None else threading.Event()
            self._spawn("txparser-poll", self._poll_loop, self._cancel)

    def stop(self, timeout: float | None = None) -> bool:
        """Cancel the scan and wait for every spawned thread to exit.

        Returns ``False`` only when ``timeout`` elapsed with threads still alive.
        """

        logger.info("stopping scanner and waiting for threads to complete")
        self._cancel.set()
        deadline = None if timeout is None else time.monotonic() + timeout
        # The coordinator may spawn the backward thread while we wait, so keep
        # joining until nothing registered is alive.
        while True:
            pending = self._live_threads()
            if not pending:
                break
            for thread in pending:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                thread.join(remaining)
            if deadline is not None and time.monotonic() >= deadline and self._live_threads():
                logger.warning("scanner threads still running after %.1fs", timeout)
                return False
        logger.info("all scanner threads stopped")
        return True

    def process_block(self, number: int) -> int:
        """Fetch block ``number`` and file each transaction under both participants.

        The whole block is decoded before the first write, so a fetch or
        decode failure leaves the store untouched.

        Returns:
            The number of transactions indexed.

        Raises:
            RPCClientError: if the block cannot be fetched or is malformed.
        """

        payload = self.rpc.call("eth_getBlockByNumber", [encode_block_number(number), True])
        block = RPCBlock.from_rpc(payload)
        for tx in block.transactions:
            outbound, inbound = tx.records(number)
            self.store.add_transaction(tx.from_address, outbound)
            self.store.add_transaction(tx.to_address, inbound)
        logger.debug("indexed %d transactions from block %d", len(block.transactions), number)
        return len(block.transactions)

    def poll_once(self) -> int:
        """Catch the cursor up to the ledger head.

        Blocks in ``(cursor, head]`` are processed in ascending order. A block
        that fails is logged and skipped; the cursor still moves to ``head``
        once the batch has been attempted.

        Returns:
            How many blocks were attempted.

        Raises:
            RPCClientError: if the head lookup fails; the cursor is unchanged.
        """

        head = self._fetch_head()
        if head <= self._cursor:
            return 0
        first = self._cursor + 1
        for number in range(first, head + 1):
            try:
                self.process_block(number)
            except RPCClientError as exc:
                logger.warning("[forward] failed to process block %d: %s", number, exc)
            else:
                logger.debug("[forward] processed block %d", number)
        self._cursor = head
        return head - first + 1

    # Threads --------------------------------------------------------------

    def _live_threads(self) -> List[threading.Thread]:
        with self._threads_lock:
            self._threads = [thread for thread in self._threads if thread.is_alive()]
            return list(self._threads)

    def _spawn(self, name: str, target: Callable[..., None], *args: Any) -> None:
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        # Start under the lock so _live_threads never prunes a registered,
        # not-yet-started thread.
        with self._threads_lock:
            thread.start()
            self._threads.append(thread)

    def _fetch_head(self) -> int:
        return parse_int(self.rpc.call("eth_blockNumber", []))

    def _poll_loop(self, cancel: threading.Event) -> None:
        try:
            try:
                head = self._fetch_head()
            except RPCClientError as exc:
                logger.error("[poll] failed to init current block: %s", exc)
                return
            logger.info("[poll] initialized at block %d", head)

            try:
                self.process_block(head)
            except RPCClientError as exc:
                logger.warning("[poll] failed to process initial block %d: %s", head, exc)
            self._cursor = head

            if self.config.backward_scan_enabled and not cancel.is_set():
                stop_at = max(1, head - self.config.backward_scan_depth)
                self._spawn("txparser-backward", self._scan_backward, head - 1, stop_at, cancel)

            self._scan_forward(cancel)
        except Exception:  # pragma: no cover - keep the thread from dying silently
            logger.exception("[poll] coordinator crashed")
        finally:
            with self._started_lock:
                self._started = False

    def _scan_backward(self, start: int, stop_at: int, cancel: threading.Event) -> None:
        logger.info("[backward] starting scan from %d -> %d", start, stop_at)
        for number in range(start, stop_at - 1, -1):
            if cancel.is_set():
                logger.info("[backward] stopping backward scan at block %d", number)
                return
            try:
                self.process_block(number)
            except RPCClientError as exc:
                logger.warning("[backward] failed to process block %d: %s", number, exc)
            except Exception:  # pragma: no cover - one bad block must not end the backfill
                logger.exception("[backward] unexpected error on block %d", number)
            if number % BACKWARD_PROGRESS_EVERY == 0:
                logger.info("[backward] scanned down to block %d", number)
        logger.info("[backward] completed bounded historical scan")

    def _scan_forward(self, cancel: threading.Event) -> None:
        logger.info("[forward] starting scan from %d", self._cursor)
        interval = self.config.poll_interval
        deadline = time.monotonic() + interval
        while not cancel.wait(max(0.0, deadline - time.monotonic())):
            try:
                self.poll_once()
            except RPCClientError as exc:
                logger.warning("[forward] error checking new blocks: %s", exc)
            except Exception:  # pragma: no cover - keep polling on unexpected errors
                logger.exception("[forward] unexpected error checking new blocks")
            deadline = _next_tick(deadline, time.monotonic(), interval)
        logger.info("[forward] stopping forward scan")


__all__ = ["BlockScanner", "ScannerState"]
