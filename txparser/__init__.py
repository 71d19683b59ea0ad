"""Address-indexed transaction scanner for Ethereum-style JSON-RPC ledgers."""

from .config import AppConfig, ConfigurationError, RPCConfig, ScannerConfig, ServerConfig, load_config
from .facade import TxParser
from .hexutil import (
    HexDecodeError,
    decode_leading_byte,
    encode_block_number,
    parse_int,
    to_decimal_string,
)
from .model import RPCBlock, RPCTransaction, TransactionRecord
from .rpc_client import EthereumRPCClient, RPCClientError, RPCError, RPCTransportError
from .scanner import BlockScanner, ScannerState
from .storage import AddressStore, MemoryAddressStore

__all__ = [
    "AppConfig",
    "ConfigurationError",
    "RPCConfig",
    "ScannerConfig",
    "ServerConfig",
    "load_config",
    "TxParser",
    "HexDecodeError",
    "decode_leading_byte",
    "encode_block_number",
    "parse_int",
    "to_decimal_string",
    "RPCBlock",
    "RPCTransaction",
    "TransactionRecord",
    "EthereumRPCClient",
    "RPCClientError",
    "RPCError",
    "RPCTransportError",
    "BlockScanner",
    "ScannerState",
    "AddressStore",
    "MemoryAddressStore",
]
