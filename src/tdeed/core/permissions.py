"""
Permission resolution for mutating deed operations.

A caller may modify a token when any of these sources grants it, checked in
this order and stopping at the first grant:

1. ownership       - ``ownerOf(tokenId)`` on the registry is the caller
2. registry role   - caller holds the registry's ``VALIDATOR_ROLE``
3. validator role  - caller holds ``VALIDATOR_ROLE`` on the token's bound
                     validator contract
4. metadata role   - caller holds ``VALIDATOR_ROLE`` on the metadata renderer

A probe that cannot be queried because its contract is not bound or not
deployed is not applicable and skipped. A probe that fails is logged and
treated as non-matching; the remaining probes still run. Decisions are never
cached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from eth_utils import is_hex_address, to_checksum_address

from tdeed.core.abi_loader import AbiLoader, get_default_loader
from tdeed.core.contract_handle import ContractHandle, make_handle
from tdeed.core.exceptions import InputValidationError
from tdeed.core.execution import ExecutionContext
from tdeed.core.logging_config import truncate_address
from tdeed.core.networks import (
    DEED_NFT,
    METADATA_RENDERER,
    VALIDATOR,
    NetworkDescriptor,
    is_contract_deployed,
)
from tdeed.core.transaction_executor import TransactionExecutor
from tdeed.core.validator_binding import resolve_validator_binding

logger = logging.getLogger(__name__)


class PermissionSource(str, Enum):
    OWNERSHIP = "ownership"
    REGISTRY_ROLE = "registry-role"
    VALIDATOR_ROLE = "validator-role"
    METADATA_ROLE = "metadata-role"
    NONE = "none"


class ProbeOutcome(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    NOT_APPLICABLE = "not-applicable"
    ERROR = "error"


class DecisionStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    # no source answered and at least one errored; still not granted
    UNVERIFIED = "unverified"


@dataclass(frozen=True)
class ProbeResult:
    source: PermissionSource
    outcome: ProbeOutcome
    error: Optional[str] = None


@dataclass(frozen=True)
class PermissionDecision:
    granted: bool
    source: PermissionSource
    status: DecisionStatus
    probes: Tuple[ProbeResult, ...] = ()

    @property
    def could_not_verify(self) -> bool:
        return self.status is DecisionStatus.UNVERIFIED

    @property
    def reachable_sources(self) -> List[PermissionSource]:
        """Sources that answered, whether they granted or not."""
        return [
            p.source for p in self.probes
            if p.outcome in (ProbeOutcome.GRANTED, ProbeOutcome.DENIED)
        ]

    def outcome_of(self, source: PermissionSource) -> Optional[ProbeOutcome]:
        for probe in self.probes:
            if probe.source is source:
                return probe.outcome
        return None


class _Unresolved:
    def __repr__(self) -> str:
        return "UNRESOLVED"


# Sentinel: binding not looked up yet; the validator-role probe resolves it lazily
UNRESOLVED: Any = _Unresolved()


def _normalize_caller(caller: Optional[str]) -> str:
    if not caller or not is_hex_address(caller):
        raise InputValidationError(
            f"Caller address {caller!r} is not a valid address",
            details={"caller": caller},
        )
    return to_checksum_address(caller)


class PermissionResolver:
    """Ordered probe pipeline over the registry, validator and metadata contracts."""

    def __init__(
        self,
        network: NetworkDescriptor,
        context: ExecutionContext,
        *,
        loader: Optional[AbiLoader] = None,
        executor: Optional[TransactionExecutor] = None,
    ) -> None:
        self.network = network
        self.context = context
        self.loader = loader or get_default_loader()
        self.executor = executor or TransactionExecutor()

    def _handle(self, contract_name: str, address: str) -> ContractHandle:
        abi = self.loader.load(self.network.chain_id, contract_name)
        return make_handle(address, abi, self.context)

    def _registry(self) -> ContractHandle:
        return self._handle(DEED_NFT, self.network.registry_address)

    def _has_validator_role(self, handle: ContractHandle, caller: str) -> bool:
        role = self.executor.read(handle, "VALIDATOR_ROLE")
        return bool(self.executor.read(handle, "hasRole", [role, caller]))

    # ==================== Probes ====================

    def _probe_ownership(self, token_id: int, caller: str, binding: Any) -> ProbeOutcome:
        owner = self.executor.read(self._registry(), "ownerOf", [token_id])
        if owner and str(owner).lower() == caller.lower():
            return ProbeOutcome.GRANTED
        return ProbeOutcome.DENIED

    def _probe_registry_role(self, token_id: int, caller: str, binding: Any) -> ProbeOutcome:
        if self._has_validator_role(self._registry(), caller):
            return ProbeOutcome.GRANTED
        return ProbeOutcome.DENIED

    def _probe_validator_role(self, token_id: int, caller: str, binding: Any) -> ProbeOutcome:
        if binding is UNRESOLVED:
            binding = resolve_validator_binding(
                token_id, self.network, self.context, loader=self.loader, executor=self.executor
            )
        if not binding:
            return ProbeOutcome.NOT_APPLICABLE
        if self._has_validator_role(self._handle(VALIDATOR, binding), caller):
            return ProbeOutcome.GRANTED
        return ProbeOutcome.DENIED

    def _probe_metadata_role(self, token_id: int, caller: str, binding: Any) -> ProbeOutcome:
        address = self.metadata_renderer_address()
        if address is None:
            return ProbeOutcome.NOT_APPLICABLE
        if self._has_validator_role(self._handle(METADATA_RENDERER, address), caller):
            return ProbeOutcome.GRANTED
        return ProbeOutcome.DENIED

    def metadata_renderer_address(self) -> Optional[str]:
        """Configured renderer, else the one the registry points at; None if neither."""
        configured = self.network.contract_address(METADATA_RENDERER)
        if configured:
            return configured
        address = self.executor.read(self._registry(), "metadataRenderer")
        return address if is_contract_deployed(address) else None

    def _probes(self) -> List[Tuple[PermissionSource, Callable[[int, str, Any], ProbeOutcome]]]:
        return [
            (PermissionSource.OWNERSHIP, self._probe_ownership),
            (PermissionSource.REGISTRY_ROLE, self._probe_registry_role),
            (PermissionSource.VALIDATOR_ROLE, self._probe_validator_role),
            (PermissionSource.METADATA_ROLE, self._probe_metadata_role),
        ]

    # ==================== Resolution ====================

    def resolve(self, token_id: int, caller: str, binding: Any = UNRESOLVED) -> PermissionDecision:
        caller = _normalize_caller(caller)
        token_id = int(token_id)
        results: List[ProbeResult] = []

        for source, probe in self._probes():
            try:
                outcome = probe(token_id, caller, binding)
            except Exception as exc:
                logger.warning(
                    "Permission probe %s failed for token %s: %s",
                    source.value,
                    token_id,
                    exc,
                    extra={
                        "event": "permission.probe_failed",
                        "source": source.value,
                        "token_id": token_id,
                        "error_type": type(exc).__name__,
                    },
                )
                results.append(ProbeResult(source, ProbeOutcome.ERROR, str(exc)))
                continue

            results.append(ProbeResult(source, outcome))
            if outcome is ProbeOutcome.GRANTED:
                logger.info(
                    "Caller %s authorized for token %s via %s",
                    truncate_address(caller),
                    token_id,
                    source.value,
                    extra={"event": "permission.granted", "source": source.value, "token_id": token_id},
                )
                return PermissionDecision(True, source, DecisionStatus.GRANTED, tuple(results))

        answered = any(r.outcome is ProbeOutcome.DENIED for r in results)
        errored = any(r.outcome is ProbeOutcome.ERROR for r in results)
        status = DecisionStatus.UNVERIFIED if errored and not answered else DecisionStatus.DENIED
        logger.info(
            "Caller %s not authorized for token %s (%s)",
            truncate_address(caller),
            token_id,
            status.value,
            extra={
                "event": "permission.denied",
                "status": status.value,
                "token_id": token_id,
                "probes": {r.source.value: r.outcome.value for r in results},
            },
        )
        return PermissionDecision(False, PermissionSource.NONE, status, tuple(results))

    def list_caller_roles(self, caller: str) -> List[str]:
        """Names of the registry roles the caller holds."""
        caller = _normalize_caller(caller)
        registry = self._registry()
        held: List[str] = []
        for role_name in ("DEFAULT_ADMIN_ROLE", "VALIDATOR_ROLE"):
            try:
                role = self.executor.read(registry, role_name)
                if self.executor.read(registry, "hasRole", [role, caller]):
                    held.append(role_name)
            except Exception as exc:
                logger.warning("Could not check %s for %s: %s", role_name, truncate_address(caller), exc)
        return held


def resolve_permission(
    token_id: int,
    caller: str,
    network: NetworkDescriptor,
    context: ExecutionContext,
    *,
    binding: Any = UNRESOLVED,
    loader: Optional[AbiLoader] = None,
    executor: Optional[TransactionExecutor] = None,
) -> PermissionDecision:
    resolver = PermissionResolver(network, context, loader=loader, executor=executor)
    return resolver.resolve(token_id, caller, binding)


def list_caller_roles(
    caller: str,
    network: NetworkDescriptor,
    context: ExecutionContext,
    *,
    loader: Optional[AbiLoader] = None,
    executor: Optional[TransactionExecutor] = None,
) -> List[str]:
    resolver = PermissionResolver(network, context, loader=loader, executor=executor)
    return resolver.list_caller_roles(caller)
