"""
Execution contexts.

A wallet hands the engine one of two capabilities:

* ``DirectSigner`` - a web3 connection whose node or middleware can author,
  sign and submit transactions for ``account`` (browser-extension style).
* ``RelayProvider`` - an EIP-1193 style ``request(method, params)`` channel
  that can only forward JSON-RPC requests (embedded / smart-contract
  wallets). State changes go out as ``eth_sendTransaction`` and reads may use
  the EIP-5792 batched-call protocol.

Both expose ``transport_path`` and ``account`` so the transaction executor can
dispatch on the variant once.
"""

from __future__ import annotations

import itertools
import logging
from abc import ABC
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import requests
from eth_utils import is_hex_address, to_checksum_address
from web3 import Web3
from web3.contract import Contract

from tdeed.core import config
from tdeed.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# EIP-1193 provider error code for a request the user rejected
USER_REJECTED_CODE = 4001

EIP5792_GET_CAPABILITIES = "wallet_getCapabilities"
EIP5792_SEND_CALLS = "wallet_sendCalls"
EIP5792_GET_CALLS_STATUS = "wallet_getCallsStatus"


class TransportPath(str, Enum):
    DIRECT = "direct"
    RELAY = "relay"


class RpcError(Exception):
    """JSON-RPC error object returned by a provider."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data


def _checksum_account(account: Optional[str]) -> str:
    if not account or not is_hex_address(account):
        raise ConfigurationError(
            f"Execution context requires a valid account address, got {account!r}",
            details={"account": account},
        )
    return to_checksum_address(account)


class ExecutionContext(ABC):
    """Capability handed over by the wallet layer."""

    transport_path: TransportPath
    account: str

    @property
    def is_relay(self) -> bool:
        return self.transport_path is TransportPath.RELAY


class DirectSigner(ExecutionContext):
    """Web3 connection able to submit transactions from ``account`` itself."""

    transport_path = TransportPath.DIRECT

    def __init__(self, w3: Web3, account: Optional[str] = None) -> None:
        self.w3 = w3
        self.account = _checksum_account(account or w3.eth.default_account or None)

    def contract(self, address: str, abi: List[Dict[str, Any]]) -> Contract:
        return self.w3.eth.contract(address=address, abi=abi)

    def __repr__(self) -> str:
        return f"DirectSigner(account={self.account})"


RelayRequest = Callable[[str, List[Any]], Any]


class RelayProvider(ExecutionContext):
    """Request/response JSON-RPC channel of an embedded wallet."""

    transport_path = TransportPath.RELAY

    def __init__(self, request: RelayRequest, account: str, chain_id: int) -> None:
        self._request = request
        self.account = _checksum_account(account)
        self.chain_id = int(chain_id)

    @property
    def chain_id_hex(self) -> str:
        return hex(self.chain_id)

    def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        logger.debug("Relay request %s", method, extra={"event": "relay.request", "method": method})
        return self._request(method, params or [])

    # -- EIP-5792 batched-call protocol --

    def get_capabilities(self) -> Dict[str, Any]:
        capabilities = self.request(EIP5792_GET_CAPABILITIES, [self.account, [self.chain_id_hex]])
        return capabilities or {}

    def supports_atomic_batch(self) -> bool:
        capabilities = self.get_capabilities()
        # Newer wallets key capabilities by chain id; older ones return them flat
        scoped = capabilities.get(self.chain_id_hex, capabilities)
        atomic = scoped.get("atomic") if isinstance(scoped, dict) else None
        if isinstance(atomic, dict):
            atomic = atomic.get("status") or ("supported" if atomic.get("supported") else None)
        return atomic in ("supported", "ready")

    def send_calls(self, calls: List[Dict[str, str]], atomic_required: bool = True) -> str:
        response = self.request(
            EIP5792_SEND_CALLS,
            [
                {
                    "version": "2.0.0",
                    "from": self.account,
                    "chainId": self.chain_id_hex,
                    "calls": calls,
                    "atomicRequired": atomic_required,
                }
            ],
        )
        if isinstance(response, str):
            return response
        if isinstance(response, dict):
            batch_id = response.get("id") or response.get("batchId")
            if batch_id:
                return str(batch_id)
        raise RpcError(f"{EIP5792_SEND_CALLS} returned no batch id: {response!r}")

    def get_calls_status(self, batch_id: str) -> Dict[str, Any]:
        return self.request(EIP5792_GET_CALLS_STATUS, [batch_id]) or {}

    # -- plain JSON-RPC --

    def call(self, to: str, data: str) -> str:
        return self.request("eth_call", [{"from": self.account, "to": to, "data": data}, "latest"])

    def send_transaction(self, to: str, data: str) -> str:
        return self.request("eth_sendTransaction", [{"from": self.account, "to": to, "data": data}])

    def __repr__(self) -> str:
        return f"RelayProvider(account={self.account}, chain_id={self.chain_id})"


class JsonRpcTransport:
    """HTTP JSON-RPC channel usable as a RelayProvider request function."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = config.RPC_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    def __call__(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        resp = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        body = resp.json()
        error = body.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcError(str(error.get("message", error)), error.get("code"), error.get("data"))
            raise RpcError(str(error))
        return body.get("result")
