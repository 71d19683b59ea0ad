"""Typed JSON-RPC client for Ethereum-style ledger nodes.

The scanner only needs ``eth_blockNumber`` and ``eth_getBlockByNumber``, but
the client exposes a generic :meth:`EthereumRPCClient.call` so any other
method can be reached the same way. Every failure mode (network, HTTP status,
malformed envelope, JSON-RPC error object) surfaces as a subclass of
:class:`RPCClientError`, which is the only error type callers need to catch.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, Optional

import requests
from requests import RequestException, Response

from .config import RPCConfig, load_config
from .hexutil import encode_block_number, parse_int

logger = logging.getLogger(__name__)


class RPCClientError(RuntimeError):
    """Base class for every failure raised by the RPC client."""


class RPCError(RPCClientError):
    """Raised when the node responds with a JSON-RPC error object."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class RPCTransportError(RPCClientError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_rpc_hint(error: RPCClientError | None) -> str | None:
    """Return a short remediation hint for common public-node failures."""

    if error is None:
        return None
    if isinstance(error, RPCTransportError):
        if error.status_code == 429:
            return "The node is rate limiting requests. Raise the poll interval or use a private endpoint."
        if error.status_code in {401, 403}:
            return "The node rejected the request. Check that TXPARSER_RPC_URL includes any required API key."
        return None
    if isinstance(error, RPCError):
        if error.code == -32601:
            return "The node does not expose this method. Point TXPARSER_RPC_URL at an Ethereum JSON-RPC endpoint."
        if error.code == -32005 or "limit" in error.message.lower():
            return "The node reported a request limit. Slow down polling or lower BACKWARD_SCAN_DEPTH."
    return None


class EthereumRPCClient:
    """Thin JSON-RPC 2.0 client over a pooled ``requests`` session.

    Instances are shared by the scanner's forward and backward threads, so
    request ids come from a locked counter.
    """

    def __init__(self, config: RPCConfig) -> None:
        self.config = config
        self._session = requests.Session()
        self._id_lock = threading.Lock()
        self._next_id = 0

    @classmethod
    def from_config(cls) -> "EthereumRPCClient":
        """Instantiate a client using environment variables or config file."""

        return cls(load_config().rpc)

    def close(self) -> None:
        self._session.close()

    def _request_id(self) -> int:
        with self._id_lock:
            self._next_id += 1
            return self._next_id

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        """Perform a JSON-RPC request and return its ``result`` member."""

        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id(),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC call %s params=%s", method, params)
        try:
            response = self._session.post(
                self.config.url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                timeout=self.config.timeout,
            )
        except RequestException as exc:
            logger.debug("RPC connection failed: %s", exc, exc_info=True)
            raise RPCTransportError(f"RPC call failed for method {method}: {exc}") from exc

        self._raise_for_status(method, response)

        try:
            envelope = response.json()
        except ValueError as exc:
            logger.debug("RPC JSON parse error: %s", response.text)
            raise RPCTransportError(
                f"Failed to decode JSON-RPC response for method {method}",
                status_code=response.status_code,
            ) from exc
        if not isinstance(envelope, dict):
            raise RPCTransportError(
                f"Malformed JSON-RPC envelope for method {method}",
                status_code=response.status_code,
            )
        error = envelope.get("error")
        if error:
            if isinstance(error, dict):
                code = error.get("code", -1)
                raise RPCError(code if isinstance(code, int) else -1, str(error.get("message", "unknown")))
            raise RPCError(-1, str(error))
        if "result" not in envelope:
            raise RPCTransportError(
                f"JSON-RPC response for method {method} has no result",
                status_code=response.status_code,
            )
        return envelope["result"]

    def _raise_for_status(self, method: str, response: Response) -> None:
        if response.ok:
            return
        logger.debug("RPC HTTP error %s from %s: %s", response.status_code, response.url, response.text)
        raise RPCTransportError(
            f"RPC call failed with status {response.status_code} for method {method}",
            status_code=response.status_code,
        )

    # Convenience wrappers -------------------------------------------------

    def get_block_number(self) -> str:
        return self.call("eth_blockNumber")

    def get_block_number_int(self) -> int:
        return parse_int(self.get_block_number())

    def get_block_by_number(
        self, block_number: str, include_transactions: bool = True
    ) -> Dict[str, Any]:
        return self.call("eth_getBlockByNumber", [block_number, include_transactions])

    def get_block_by_number_int(
        self, block_number: int, include_transactions: bool = True
    ) -> Dict[str, Any]:
        return self.get_block_by_number(encode_block_number(block_number), include_transactions)
