"""
Contract handle factory.

A handle binds an address, an interface and an execution context. Handles are
cheap, involve no network I/O and are built fresh for every operation because
the active wallet may change between calls.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from eth_utils import is_hex_address, to_checksum_address
from web3.contract import Contract

from tdeed.core.abi_codec import decode_output, encode_call
from tdeed.core.abi_loader import AbiDescriptor
from tdeed.core.exceptions import ConfigurationError
from tdeed.core.execution import DirectSigner, ExecutionContext
from tdeed.core.networks import is_contract_deployed


@dataclass(frozen=True, eq=False)
class ContractHandle:
    address: str
    abi: AbiDescriptor
    context: ExecutionContext

    @property
    def contract_name(self) -> str:
        return self.abi.contract_name

    @property
    def supports_direct_write(self) -> bool:
        """Relay contexts cannot write through the handle; they use the executor."""
        return isinstance(self.context, DirectSigner)

    def function_abi(self, function_name: str, arg_count: Optional[int] = None) -> Dict[str, Any]:
        return self.abi.function(function_name, arg_count)

    def encode(self, function_name: str, args: Sequence[Any] = ()) -> bytes:
        return encode_call(self.function_abi(function_name, len(args)), args)

    def decode(self, function_name: str, data: bytes | str, arg_count: Optional[int] = None) -> Any:
        return decode_output(self.function_abi(function_name, arg_count), data)

    def contract(self) -> Contract:
        """web3 contract bound to the direct signer's connection."""
        if not isinstance(self.context, DirectSigner):
            raise ConfigurationError(
                f"{self.contract_name} handle has a relay context; use the transaction executor",
                details={"address": self.address},
            )
        return self.context.contract(self.address, self.abi.as_list())

    def __repr__(self) -> str:
        return f"ContractHandle({self.contract_name}@{self.address}, {self.context!r})"


def make_handle(address: Optional[str], abi: AbiDescriptor, context: ExecutionContext) -> ContractHandle:
    """Build a handle; rejects blank, malformed and zero addresses."""
    if not address or not str(address).strip():
        raise ConfigurationError(
            f"No {abi.contract_name} address configured",
            details={"contract": abi.contract_name},
        )
    address = str(address).strip()
    if not is_hex_address(address):
        raise ConfigurationError(
            f"Invalid {abi.contract_name} address {address!r}",
            details={"contract": abi.contract_name, "address": address},
        )
    if not is_contract_deployed(address):
        raise ConfigurationError(
            f"{abi.contract_name} is not deployed (zero address)",
            details={"contract": abi.contract_name},
        )
    return ContractHandle(address=to_checksum_address(address), abi=abi, context=context)
