"""
Validator binding resolution.

Each deed may be bound to a validator contract through its ``validator``
trait on the registry. The trait value is an ABI-encoded address; an unset
trait or the zero address means the token has no binding.
"""

from __future__ import annotations

import logging
from typing import Optional

from tdeed.core.abi_codec import decode_values
from tdeed.core.abi_loader import AbiLoader, get_default_loader
from tdeed.core.contract_handle import ContractHandle, make_handle
from tdeed.core.execution import ExecutionContext
from tdeed.core.logging_config import truncate_address
from tdeed.core.networks import DEED_NFT, NetworkDescriptor, is_contract_deployed
from tdeed.core.traits import VALIDATOR_TRAIT_KEY
from tdeed.core.transaction_executor import TransactionExecutor

logger = logging.getLogger(__name__)


def registry_handle(
    network: NetworkDescriptor,
    context: ExecutionContext,
    loader: Optional[AbiLoader] = None,
) -> ContractHandle:
    """Handle on the network's DeedNFT registry."""
    loader = loader or get_default_loader()
    abi = loader.load(network.chain_id, DEED_NFT)
    return make_handle(network.registry_address, abi, context)


def decode_binding(raw: bytes) -> Optional[str]:
    """Decode a ``validator`` trait value; None when unset or zero."""
    raw = bytes(raw or b"")
    if not raw:
        return None
    address = decode_values(["address"], raw)[0]
    if not is_contract_deployed(address):
        return None
    return address


def resolve_validator_binding(
    token_id: int,
    network: NetworkDescriptor,
    context: ExecutionContext,
    *,
    loader: Optional[AbiLoader] = None,
    executor: Optional[TransactionExecutor] = None,
) -> Optional[str]:
    """Return the validator contract bound to ``token_id``, or None.

    Transport errors propagate; malformed trait bytes raise DecodeError.
    """
    executor = executor or TransactionExecutor()
    registry = registry_handle(network, context, loader)
    raw = executor.read(registry, "getTraitValue", [int(token_id), VALIDATOR_TRAIT_KEY])
    binding = decode_binding(raw)
    if binding is None:
        logger.debug("Token %s has no validator binding", token_id)
    else:
        logger.debug(
            "Token %s bound to validator %s",
            token_id,
            truncate_address(binding),
            extra={"event": "binding.resolved", "token_id": int(token_id)},
        )
    return binding
