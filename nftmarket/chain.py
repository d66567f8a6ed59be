"""
nftmarket/chain.py

Read-only ledger access.

ChainReader is the surface the reconciliation engine consumes. JsonRpcChainReader
implements it with plain JSON-RPC `eth_call` requests against an Ethereum node
(ERC-721 + ERC-4907 view functions only; nothing here ever sends a transaction).

Failure semantics:
- ContractCallError: the node answered but the call reverted or returned no data
  (token does not exist, contract does not implement the function, no code at address)
- ExternalServiceError: transport failure, timeout, non-2xx, malformed response
- CallCancelled: the caller's Deadline was cancelled or spent before the call
"""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from nftmarket.config import IS_DEV, RPC_TIMEOUT_SECONDS, RPC_URL
from nftmarket.deadline import Deadline
from nftmarket.errors import ContractCallError, ExternalServiceError

# 4-byte function selectors (keccak256 of the signature, first 4 bytes)
SELECTOR_OWNER_OF = "6352211e"            # ownerOf(uint256)
SELECTOR_TOKEN_URI = "c87b56dd"           # tokenURI(uint256)
SELECTOR_NAME = "06fdde03"                # name()
SELECTOR_SYMBOL = "95d89b41"              # symbol()
SELECTOR_SUPPORTS_INTERFACE = "01ffc9a7"  # supportsInterface(bytes4)
SELECTOR_USER_OF = "c2f1f14a"             # userOf(uint256)
SELECTOR_USER_EXPIRES = "8fc88c48"        # userExpires(uint256)

ERC4907_INTERFACE_ID = "0xad092b5c"


class ChainReader(ABC):
    """Read-only view of one ledger. Addresses are returned lower-case."""

    @abstractmethod
    def owner_of(self, contract: str, token_id: int, deadline: Optional[Deadline] = None) -> str: ...

    @abstractmethod
    def token_uri(self, contract: str, token_id: int, deadline: Optional[Deadline] = None) -> str: ...

    @abstractmethod
    def name(self, contract: str, deadline: Optional[Deadline] = None) -> str: ...

    @abstractmethod
    def symbol(self, contract: str, deadline: Optional[Deadline] = None) -> str: ...

    @abstractmethod
    def supports_interface(self, contract: str, interface_id: str, deadline: Optional[Deadline] = None) -> bool: ...

    @abstractmethod
    def user_of(self, contract: str, token_id: int, deadline: Optional[Deadline] = None) -> str: ...

    @abstractmethod
    def user_expires(self, contract: str, token_id: int, deadline: Optional[Deadline] = None) -> int: ...


# ---------------------------------------------------------
# ABI helpers (static types + a single dynamic string)
# ---------------------------------------------------------
def encode_uint256(value: int) -> str:
    if value < 0 or value >= 2 ** 256:
        raise ValueError(f"uint256 out of range: {value}")
    return format(value, "064x")


def encode_bytes4(value: str) -> str:
    raw = value[2:] if value.startswith("0x") else value
    if len(raw) != 8:
        raise ValueError(f"bytes4 must be 4 bytes: {value}")
    return raw.lower().ljust(64, "0")


def _words(data: str) -> bytes:
    raw = data[2:] if data.startswith("0x") else data
    try:
        return bytes.fromhex(raw)
    except ValueError:
        raise ExternalServiceError(f"Malformed eth_call result: {data[:20]}...")


def decode_uint256(data: str) -> int:
    buf = _words(data)
    if len(buf) < 32:
        raise ContractCallError("Empty or short return data for uint256")
    return int.from_bytes(buf[:32], "big")


def decode_address(data: str) -> str:
    buf = _words(data)
    if len(buf) < 32:
        raise ContractCallError("Empty or short return data for address")
    return "0x" + buf[12:32].hex()


def decode_bool(data: str) -> bool:
    return decode_uint256(data) != 0


def decode_string(data: str) -> str:
    buf = _words(data)
    if len(buf) < 64:
        raise ContractCallError("Empty or short return data for string")
    offset = int.from_bytes(buf[:32], "big")
    if offset + 32 > len(buf):
        raise ContractCallError("String offset out of range")
    length = int.from_bytes(buf[offset:offset + 32], "big")
    start = offset + 32
    if start + length > len(buf):
        raise ContractCallError("String length out of range")
    return buf[start:start + length].decode("utf-8", errors="replace")


# ---------------------------------------------------------
# JSON-RPC implementation
# ---------------------------------------------------------
class JsonRpcChainReader(ChainReader):
    """
    ChainReader over an Ethereum JSON-RPC endpoint.

    Every call runs with timeout = min(per-call cap, deadline remaining); there is
    no retry at this layer.
    """

    def __init__(
        self,
        rpc_url: str = RPC_URL,
        timeout: float = RPC_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    def _rpc(self, method: str, params: list, deadline: Optional[Deadline]) -> Any:
        deadline = deadline or Deadline.none()
        timeout = deadline.timeout_for(self.timeout, label=f"ledger {method}")
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = self.session.post(self.rpc_url, json=payload, timeout=timeout)
        except requests.Timeout:
            raise ExternalServiceError(f"Ledger RPC timed out after {timeout:.1f}s")
        except requests.RequestException as e:
            raise ExternalServiceError(f"Ledger RPC transport error: {type(e).__name__}")

        if resp.status_code < 200 or resp.status_code >= 300:
            raise ExternalServiceError(f"Ledger RPC returned HTTP {resp.status_code}")
        try:
            body: Dict[str, Any] = resp.json()
        except ValueError:
            raise ExternalServiceError("Ledger RPC returned a non-JSON body")
        if not isinstance(body, dict):
            raise ExternalServiceError("Ledger RPC returned an unexpected payload")

        error = body.get("error")
        if error:
            message = error.get("message", "call failed") if isinstance(error, dict) else str(error)
            raise ContractCallError(f"Ledger call reverted: {message}")
        if "result" not in body:
            raise ExternalServiceError("Ledger RPC response has no result")
        return body["result"]

    def _call(self, contract: str, data: str, deadline: Optional[Deadline]) -> str:
        result = self._rpc("eth_call", [{"to": contract.lower(), "data": "0x" + data}, "latest"], deadline)
        if not isinstance(result, str):
            raise ExternalServiceError("eth_call result is not a hex string")
        if result in ("0x", ""):
            # No code at the address, or the function is missing without a fallback
            raise ContractCallError(f"Empty return data from {contract}")
        if IS_DEV:
            print(f"[CHAIN] eth_call to={contract} selector=0x{data[:8]} ok")
        return result

    def owner_of(self, contract: str, token_id: int, deadline: Optional[Deadline] = None) -> str:
        return decode_address(self._call(contract, SELECTOR_OWNER_OF + encode_uint256(token_id), deadline))

    def token_uri(self, contract: str, token_id: int, deadline: Optional[Deadline] = None) -> str:
        return decode_string(self._call(contract, SELECTOR_TOKEN_URI + encode_uint256(token_id), deadline))

    def name(self, contract: str, deadline: Optional[Deadline] = None) -> str:
        return decode_string(self._call(contract, SELECTOR_NAME, deadline))

    def symbol(self, contract: str, deadline: Optional[Deadline] = None) -> str:
        return decode_string(self._call(contract, SELECTOR_SYMBOL, deadline))

    def supports_interface(self, contract: str, interface_id: str, deadline: Optional[Deadline] = None) -> bool:
        return decode_bool(self._call(contract, SELECTOR_SUPPORTS_INTERFACE + encode_bytes4(interface_id), deadline))

    def user_of(self, contract: str, token_id: int, deadline: Optional[Deadline] = None) -> str:
        return decode_address(self._call(contract, SELECTOR_USER_OF + encode_uint256(token_id), deadline))

    def user_expires(self, contract: str, token_id: int, deadline: Optional[Deadline] = None) -> int:
        return decode_uint256(self._call(contract, SELECTOR_USER_EXPIRES + encode_uint256(token_id), deadline))
