"""
Deed operation handlers.

Every mutating operation walks the same state machine:

    IDLE -> VALIDATING_INPUT -> RESOLVING_BINDING -> CHECKING_PERMISSION
         -> EXECUTING -> SUCCESS | FAILED

Input is validated before any network call, the token's validator binding is
resolved, permission is checked, and only then is the write submitted. A
successful write schedules a delayed refresh of the token. Handlers never
raise for operational failures: they return an OperationResult whose
``message`` is safe to show to the user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from tdeed.core.abi_loader import AbiLoader, get_default_loader
from tdeed.core.contract_handle import ContractHandle, make_handle
from tdeed.core.exceptions import (
    ConfigurationError,
    DeedEngineError,
    InputValidationError,
    PermissionDenied,
    user_message_for,
)
from tdeed.core.execution import ExecutionContext
from tdeed.core.networks import METADATA_RENDERER, VALIDATOR, NetworkDescriptor
from tdeed.core.permissions import PermissionDecision, PermissionResolver
from tdeed.core.refresh import RefreshScheduler
from tdeed.core.traits import decode_trait_value, encode_trait_value, trait_key
from tdeed.core.transaction_executor import CallAttempt, TransactionExecutor
from tdeed.core.validator_binding import registry_handle, resolve_validator_binding

logger = logging.getLogger(__name__)


class OperationState(Enum):
    IDLE = "idle"
    VALIDATING_INPUT = "validating_input"
    RESOLVING_BINDING = "resolving_binding"
    CHECKING_PERMISSION = "checking_permission"
    EXECUTING = "executing"
    SUCCESS = "success"
    FAILED = "failed"


STATE_TRANSITIONS: Dict[OperationState, List[OperationState]] = {
    OperationState.IDLE: [OperationState.VALIDATING_INPUT],
    OperationState.VALIDATING_INPUT: [OperationState.RESOLVING_BINDING, OperationState.FAILED],
    OperationState.RESOLVING_BINDING: [OperationState.CHECKING_PERMISSION, OperationState.FAILED],
    OperationState.CHECKING_PERMISSION: [OperationState.EXECUTING, OperationState.FAILED],
    OperationState.EXECUTING: [OperationState.SUCCESS, OperationState.FAILED],
    OperationState.SUCCESS: [],  # Terminal state
    OperationState.FAILED: [],  # Terminal state
}

TERMINAL_STATES = (OperationState.SUCCESS, OperationState.FAILED)


@dataclass
class OperationResult:
    operation: str
    token_id: Optional[int]
    state: OperationState = OperationState.IDLE
    message: str = ""
    error: Optional[BaseException] = None
    tx_id: Optional[str] = None
    decision: Optional[PermissionDecision] = None
    binding: Optional[str] = None
    transitions: List[OperationState] = field(default_factory=lambda: [OperationState.IDLE])
    refresh_scheduled: bool = False
    attempts: List[CallAttempt] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is OperationState.SUCCESS

    def transition(self, new_state: OperationState) -> None:
        """Move to ``new_state``; raises ValueError on an invalid transition."""
        if new_state not in STATE_TRANSITIONS[self.state]:
            raise ValueError(f"Invalid transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.transitions.append(new_state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "token_id": self.token_id,
            "state": self.state.value,
            "message": self.message,
            "tx_id": self.tx_id,
            "binding": self.binding,
            "permission": self.decision.source.value if self.decision else None,
            "refresh_scheduled": self.refresh_scheduled,
            "attempts": len(self.attempts),
        }


# Builds (handle, function name, args) once the token, binding and caller are known
CallBuilder = Callable[[int, Optional[str], str], Tuple[ContractHandle, str, List[Any]]]


def parse_token_id(token_id: Any) -> int:
    """Token ids are non-negative integers; decimal strings are accepted."""
    if isinstance(token_id, bool):
        raise InputValidationError(f"Invalid token id {token_id!r}")
    if isinstance(token_id, str):
        text = token_id.strip()
        if not text:
            raise InputValidationError("Token ID is required", details={"field": "token_id"})
        if not (text.isascii() and text.isdigit()):
            raise InputValidationError(f"Invalid token id {token_id!r}", details={"field": "token_id"})
        return int(text)
    if token_id is None:
        raise InputValidationError("Token ID is required", details={"field": "token_id"})
    if not isinstance(token_id, int) or token_id < 0:
        raise InputValidationError(f"Invalid token id {token_id!r}", details={"field": "token_id"})
    return token_id


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "valid"):
        return True
    if text in ("false", "0", "no", "invalid"):
        return False
    raise InputValidationError(f"Invalid validation flag {value!r}", details={"field": "is_valid"})


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]


class DeedOperations:
    """Operation handlers bound to one network and one execution context."""

    def __init__(
        self,
        network: NetworkDescriptor,
        context: ExecutionContext,
        *,
        loader: Optional[AbiLoader] = None,
        executor: Optional[TransactionExecutor] = None,
        refresh: Optional[RefreshScheduler] = None,
    ) -> None:
        self.network = network
        self.context = context
        self.loader = loader or get_default_loader()
        self.executor = executor or TransactionExecutor()
        self.refresh = refresh or RefreshScheduler(callback=self._refresh_token)
        self._refresh_executor = self.executor.copy()
        self.permissions = PermissionResolver(network, context, loader=self.loader, executor=self.executor)
        self.is_loading = False
        self.token_uris: Dict[int, str] = {}

    # ==================== Contract handles ====================

    def _registry(self) -> ContractHandle:
        return registry_handle(self.network, self.context, self.loader)

    def _handle(self, contract_name: str, address: Optional[str]) -> ContractHandle:
        return make_handle(address, self.loader.load(self.network.chain_id, contract_name), self.context)

    def _validator(self, binding: Optional[str]) -> ContractHandle:
        address = binding or self.network.contract_address(VALIDATOR)
        if not address:
            raise ConfigurationError(
                f"No validator contract for {self.network.name}",
                details={"chain_id": self.network.chain_id},
            )
        return self._handle(VALIDATOR, address)

    def _metadata_renderer(self) -> ContractHandle:
        address = self.permissions.metadata_renderer_address()
        if address is None:
            raise ConfigurationError(
                f"No metadata renderer for {self.network.name}",
                details={"chain_id": self.network.chain_id},
            )
        return self._handle(METADATA_RENDERER, address)

    def _refresh_token(self, token_id: int) -> None:
        # timer thread
        self._refresh_executor.reset()
        uri = self._refresh_executor.read(self._registry(), "tokenURI", [token_id])
        self.token_uris[token_id] = uri
        logger.info("Refreshed token %s", token_id, extra={"event": "refresh.completed", "token_id": token_id})

    # ==================== State machine ====================

    def _run(
        self,
        operation: str,
        token_id: Any,
        required: Dict[str, Any],
        build: CallBuilder,
        validate: Optional[Callable[[], None]] = None,
    ) -> OperationResult:
        result = OperationResult(operation=operation, token_id=None)
        self.is_loading = True
        self.executor.reset()
        try:
            result.transition(OperationState.VALIDATING_INPUT)
            token = parse_token_id(token_id)
            result.token_id = token
            for name, value in required.items():
                if _is_blank(value):
                    raise InputValidationError(
                        f"{name.replace('_', ' ').capitalize()} is required",
                        details={"field": name},
                    )
            if validate is not None:
                validate()

            result.transition(OperationState.RESOLVING_BINDING)
            result.binding = resolve_validator_binding(
                token, self.network, self.context, loader=self.loader, executor=self.executor
            )

            result.transition(OperationState.CHECKING_PERMISSION)
            caller = self.context.account
            result.decision = self.permissions.resolve(token, caller, binding=result.binding)
            if not result.decision.granted:
                raise PermissionDenied(
                    f"{caller} may not {operation} on token {token}",
                    decision=result.decision,
                    details={"token_id": token, "status": result.decision.status.value},
                )

            result.transition(OperationState.EXECUTING)
            handle, function_name, args = build(token, result.binding, caller)
            result.tx_id = self.executor.write(handle, function_name, args)

            result.transition(OperationState.SUCCESS)
            result.message = f"{operation} succeeded"
            result.refresh_scheduled = self.refresh.schedule(token) is not None
            logger.info(
                "%s succeeded for token %s",
                operation,
                token,
                extra={"event": "operation.succeeded", "operation": operation, "tx_hash": result.tx_id},
            )
        except DeedEngineError as exc:
            self._fail(result, exc)
        except Exception as exc:
            logger.error("Unexpected error in %s: %s", operation, exc, exc_info=True)
            self._fail(result, exc)
        finally:
            result.attempts = list(self.executor.attempts)
            self.is_loading = False
        return result

    def _fail(self, result: OperationResult, exc: BaseException) -> None:
        if result.state not in TERMINAL_STATES:
            result.transition(OperationState.FAILED)
        result.error = exc
        result.message = user_message_for(exc)
        logger.warning(
            "%s failed for token %s: %s",
            result.operation,
            result.token_id,
            exc,
            extra={
                "event": "operation.failed",
                "operation": result.operation,
                "error_type": type(exc).__name__,
            },
        )

    # ==================== Trait operations ====================

    def _trait_call(self, trait_name: str, trait_value: Any, value_type: Any) -> CallBuilder:
        def build(token: int, binding: Optional[str], caller: str) -> Tuple[ContractHandle, str, List[Any]]:
            encoded, tag = encode_trait_value(trait_value, value_type)
            return self._registry(), "setTrait", [token, trait_name.encode("utf-8"), encoded, int(tag)]

        return build

    def set_trait(self, token_id: Any, trait_name: str, trait_value: Any, value_type: Any = "string") -> OperationResult:
        return self._run(
            "set_trait",
            token_id,
            {"trait_name": trait_name, "trait_value": trait_value},
            self._trait_call(trait_name, trait_value, value_type),
            validate=lambda: encode_trait_value(trait_value, value_type),
        )

    def update_trait(self, token_id: Any, trait_name: str, trait_value: Any, value_type: Any = "string") -> OperationResult:
        """Overwrite an existing trait; the registry replaces the stored value."""
        return self._run(
            "update_trait",
            token_id,
            {"trait_name": trait_name, "trait_value": trait_value},
            self._trait_call(trait_name, trait_value, value_type),
            validate=lambda: encode_trait_value(trait_value, value_type),
        )

    def remove_trait(self, token_id: Any, trait_name: str) -> OperationResult:
        return self._run(
            "remove_trait",
            token_id,
            {"trait_name": trait_name},
            lambda token, binding, caller: (self._registry(), "removeTrait", [token, trait_name]),
        )

    def set_trait_name(self, token_id: Any, trait_key_name: str, human_name: str) -> OperationResult:
        return self._run(
            "set_trait_name",
            token_id,
            {"trait_key": trait_key_name, "trait_name": human_name},
            lambda token, binding, caller: (
                self._registry(),
                "setTraitName",
                [trait_key(trait_key_name), human_name],
            ),
        )

    # ==================== Validation ====================

    def update_validation_status(self, token_id: Any, is_valid: Any) -> OperationResult:
        return self._run(
            "update_validation_status",
            token_id,
            {"is_valid": is_valid},
            lambda token, binding, caller: (
                self._validator(binding),
                "updateValidationStatus",
                [token, _parse_flag(is_valid), caller],
            ),
            validate=lambda: _parse_flag(is_valid),
        )

    def validate_deed(self, token_id: Any) -> OperationResult:
        return self._run(
            "validate_deed",
            token_id,
            {},
            lambda token, binding, caller: (self._validator(binding), "validateDeed", [token]),
        )

    # ==================== Metadata ====================

    def _metadata_call(self, function_name: str, values: Sequence[Any]) -> CallBuilder:
        return lambda token, binding, caller: (self._metadata_renderer(), function_name, [token, *values])

    def set_custom_metadata(self, token_id: Any, metadata: str) -> OperationResult:
        return self._run(
            "set_custom_metadata",
            token_id,
            {"metadata": metadata},
            self._metadata_call("setTokenCustomMetadata", [metadata]),
        )

    def set_animation_url(self, token_id: Any, animation_url: str) -> OperationResult:
        return self._run(
            "set_animation_url",
            token_id,
            {"animation_url": animation_url},
            self._metadata_call("setTokenAnimationURL", [animation_url]),
        )

    def set_external_link(self, token_id: Any, external_link: str) -> OperationResult:
        return self._run(
            "set_external_link",
            token_id,
            {"external_link": external_link},
            self._metadata_call("setTokenExternalLink", [external_link]),
        )

    def manage_document(self, token_id: Any, doc_type: str, document_uri: str = "", is_remove: bool = False) -> OperationResult:
        required = {"doc_type": doc_type}
        if not is_remove:
            required["document_uri"] = document_uri
        return self._run(
            "manage_document",
            token_id,
            required,
            self._metadata_call("manageTokenDocument", [doc_type, document_uri or "", bool(is_remove)]),
        )

    def set_asset_condition(
        self,
        token_id: Any,
        general_condition: str,
        last_inspection_date: str = "",
        known_issues: Any = None,
        improvements: Any = None,
        additional_notes: str = "",
    ) -> OperationResult:
        return self._run(
            "set_asset_condition",
            token_id,
            {"general_condition": general_condition},
            self._metadata_call(
                "setAssetCondition",
                [
                    general_condition,
                    last_inspection_date or "",
                    _string_list(known_issues),
                    _string_list(improvements),
                    additional_notes or "",
                ],
            ),
        )

    def set_legal_info(
        self,
        token_id: Any,
        jurisdiction: str,
        registration_number: str = "",
        registration_date: str = "",
        documents: Any = None,
        restrictions: Any = None,
        additional_info: str = "",
    ) -> OperationResult:
        return self._run(
            "set_legal_info",
            token_id,
            {"jurisdiction": jurisdiction},
            self._metadata_call(
                "setTokenLegalInfo",
                [
                    jurisdiction,
                    registration_number or "",
                    registration_date or "",
                    _string_list(documents),
                    _string_list(restrictions),
                    additional_info or "",
                ],
            ),
        )

    def set_features(self, token_id: Any, features: Any) -> OperationResult:
        items = _string_list(features)
        return self._run(
            "set_features",
            token_id,
            {"features": items or None},
            self._metadata_call("setTokenFeatures", [items]),
        )

    def set_gallery(self, token_id: Any, image_urls: Any) -> OperationResult:
        items = _string_list(image_urls)
        return self._run(
            "set_gallery",
            token_id,
            {"image_urls": items or None},
            self._metadata_call("setTokenGallery", [items]),
        )

    # ==================== Reads ====================

    def get_trait_value(self, token_id: Any, trait_name: str, value_type: Any = "string") -> Any:
        """Current value of a trait, or None when unset. Errors propagate."""
        token = parse_token_id(token_id)
        if _is_blank(trait_name):
            raise InputValidationError("Trait name is required", details={"field": "trait_name"})
        raw = self.executor.read(self._registry(), "getTraitValue", [token, trait_key(trait_name)])
        return decode_trait_value(raw, value_type)

    def get_trait_name(self, trait_key_name: str) -> str:
        if _is_blank(trait_key_name):
            raise InputValidationError("Trait key is required", details={"field": "trait_key"})
        return self.executor.read(self._registry(), "getTraitName", [trait_key(trait_key_name)])

    def get_validator_binding(self, token_id: Any) -> Optional[str]:
        return resolve_validator_binding(
            parse_token_id(token_id), self.network, self.context, loader=self.loader, executor=self.executor
        )
