"""
Transaction executor.

Runs a read or a state-changing call against a contract handle, choosing the
transport from the handle's execution context:

* direct path - web3 contract call / transact, writes wait for one
  confirmation;
* relay path - reads try the EIP-5792 batched-call protocol and fall back to a
  plain ``eth_call``; writes are always a plain ``eth_sendTransaction``.

Every dispatch is recorded as a CallAttempt on ``executor.attempts``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from eth_utils import to_hex

from tdeed.core import config
from tdeed.core.contract_handle import ContractHandle
from tdeed.core.exceptions import (
    DeedEngineError,
    InputValidationError,
    TransportFailure,
    UserRejected,
)
from tdeed.core.execution import USER_REJECTED_CODE, RelayProvider, TransportPath

logger = logging.getLogger(__name__)

_REJECTION_MARKERS = ("user rejected", "user denied", "rejected by user", "user cancelled")


class CallMode(str, Enum):
    READ = "read"
    WRITE = "write"


class AttemptPath(str, Enum):
    DIRECT = "direct"
    RELAY_BATCHED = "relay-batched"
    RELAY_PLAIN = "relay-plain"


@dataclass
class CallAttempt:
    """One dispatch of a call through one transport path."""

    path: AttemptPath
    mode: CallMode
    function_name: str
    target: str
    data: str
    result: Any = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.time)

    @property
    def succeeded(self) -> bool:
        return self.error is None


def _error_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    # web3 raises ValueError / Web3RPCError carrying the RPC error dict
    for candidate in (getattr(exc, "rpc_response", None), *getattr(exc, "args", ())):
        if isinstance(candidate, dict):
            inner = candidate.get("error", candidate)
            if isinstance(inner, dict) and isinstance(inner.get("code"), int):
                return inner["code"]
    return None


def _error_message(exc: BaseException) -> str:
    for candidate in getattr(exc, "args", ()):
        if isinstance(candidate, dict):
            inner = candidate.get("error", candidate)
            if isinstance(inner, dict) and inner.get("message"):
                return str(inner["message"])
    return str(getattr(exc, "message", None) or exc) or type(exc).__name__


def classify_transport_error(exc: BaseException, function_name: str) -> DeedEngineError:
    """Map a provider/library exception onto the engine's taxonomy."""
    if isinstance(exc, DeedEngineError):
        return exc
    message = _error_message(exc)
    details = {"function": function_name, "cause": type(exc).__name__}
    code = _error_code(exc)
    if code is not None:
        details["code"] = code
    if code == USER_REJECTED_CODE or any(m in message.lower() for m in _REJECTION_MARKERS):
        return UserRejected(f"{function_name} was rejected in the wallet: {message}", details=details)
    return TransportFailure(f"{function_name} failed: {message}", details=details)


class TransactionExecutor:
    """Dispatches reads and writes over the direct or relay transport."""

    def __init__(
        self,
        receipt_timeout: float = config.RECEIPT_TIMEOUT_SECONDS,
        status_attempts: int = config.CALLS_STATUS_ATTEMPTS,
        status_interval: float = config.CALLS_STATUS_INTERVAL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.receipt_timeout = receipt_timeout
        self.status_attempts = status_attempts
        self.status_interval = status_interval
        self._sleep = sleep
        self.attempts: List[CallAttempt] = []
        self._dispatch: Dict[Tuple[TransportPath, CallMode], Callable[..., Any]] = {
            (TransportPath.DIRECT, CallMode.READ): self._direct_read,
            (TransportPath.DIRECT, CallMode.WRITE): self._direct_write,
            (TransportPath.RELAY, CallMode.READ): self._relay_read,
            (TransportPath.RELAY, CallMode.WRITE): self._relay_write,
        }

    def execute(
        self,
        handle: ContractHandle,
        function_name: str,
        args: Sequence[Any] = (),
        mode: CallMode | str = CallMode.READ,
    ) -> Any:
        """Run ``function_name(*args)`` on the handle.

        Returns the decoded result for reads and the transaction id for writes.
        Raises UserRejected, TransportFailure, DecodeError or
        InputValidationError.
        """
        mode = CallMode(mode)
        args = list(args)
        try:
            data = "0x" + handle.encode(function_name, args).hex()
        except ValueError as exc:
            raise InputValidationError(
                str(exc), details={"function": function_name, "contract": handle.contract_name}
            ) from exc
        runner = self._dispatch[(handle.context.transport_path, mode)]
        return runner(handle, function_name, args, data)

    def read(self, handle: ContractHandle, function_name: str, args: Sequence[Any] = ()) -> Any:
        return self.execute(handle, function_name, args, CallMode.READ)

    def write(self, handle: ContractHandle, function_name: str, args: Sequence[Any] = ()) -> str:
        return self.execute(handle, function_name, args, CallMode.WRITE)

    def reset(self) -> None:
        self.attempts.clear()

    def copy(self) -> "TransactionExecutor":
        """Executor with the same settings and an empty attempt log."""
        return TransactionExecutor(
            receipt_timeout=self.receipt_timeout,
            status_attempts=self.status_attempts,
            status_interval=self.status_interval,
            sleep=self._sleep,
        )

    def _record(self, path: AttemptPath, mode: CallMode, handle: ContractHandle, function_name: str, data: str) -> CallAttempt:
        attempt = CallAttempt(
            path=path,
            mode=mode,
            function_name=function_name,
            target=handle.address,
            data=data,
        )
        self.attempts.append(attempt)
        return attempt

    def _fail(self, attempt: CallAttempt, exc: BaseException) -> DeedEngineError:
        error = classify_transport_error(exc, attempt.function_name)
        attempt.error = error
        logger.warning(
            "%s %s via %s failed: %s",
            attempt.mode.value,
            attempt.function_name,
            attempt.path.value,
            error.message,
            extra={
                "event": "executor.attempt_failed",
                "path": attempt.path.value,
                "function": attempt.function_name,
                "error_type": type(error).__name__,
            },
        )
        return error

    # ==================== Direct path ====================

    def _direct_read(self, handle: ContractHandle, function_name: str, args: List[Any], data: str) -> Any:
        attempt = self._record(AttemptPath.DIRECT, CallMode.READ, handle, function_name, data)
        try:
            contract_fn = getattr(handle.contract().functions, function_name)
            result = contract_fn(*args).call({"from": handle.context.account})
        except Exception as exc:
            raise self._fail(attempt, exc) from exc
        attempt.result = result
        return result

    def _direct_write(self, handle: ContractHandle, function_name: str, args: List[Any], data: str) -> str:
        attempt = self._record(AttemptPath.DIRECT, CallMode.WRITE, handle, function_name, data)
        w3 = handle.context.w3
        try:
            contract_fn = getattr(handle.contract().functions, function_name)
            tx_hash = contract_fn(*args).transact({"from": handle.context.account})
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except Exception as exc:
            raise self._fail(attempt, exc) from exc

        tx_id = tx_hash if isinstance(tx_hash, str) else to_hex(tx_hash)
        if receipt["status"] == 0:
            error = TransportFailure(
                f"{function_name} transaction {tx_id} reverted",
                details={"function": function_name, "tx_hash": tx_id},
                recoverable=False,
            )
            attempt.error = error
            raise error
        attempt.result = tx_id
        logger.info(
            "%s confirmed in block %s",
            function_name,
            receipt.get("blockNumber"),
            extra={"event": "executor.write_confirmed", "tx_hash": tx_id, "function": function_name},
        )
        return tx_id

    # ==================== Relay path ====================

    def _relay_read(self, handle: ContractHandle, function_name: str, args: List[Any], data: str) -> Any:
        relay: RelayProvider = handle.context
        batched = self._record(AttemptPath.RELAY_BATCHED, CallMode.READ, handle, function_name, data)
        try:
            raw = self._batched_call(relay, handle.address, data)
            result = handle.decode(function_name, raw, len(args))
        except Exception as exc:
            batched.error = exc
            logger.info(
                "Batched call for %s unavailable, falling back to eth_call: %s",
                function_name,
                exc,
                extra={"event": "executor.batched_fallback", "function": function_name},
            )
        else:
            batched.result = result
            return result

        plain = self._record(AttemptPath.RELAY_PLAIN, CallMode.READ, handle, function_name, data)
        try:
            raw = relay.call(handle.address, data)
        except Exception as exc:
            raise self._fail(plain, exc) from exc
        try:
            result = handle.decode(function_name, raw or "0x", len(args))
        except DeedEngineError as exc:
            plain.error = exc
            raise
        plain.result = result
        return result

    def _batched_call(self, relay: RelayProvider, to: str, data: str) -> str:
        if not relay.supports_atomic_batch():
            raise TransportFailure("Wallet does not support atomic batched calls")
        batch_id = relay.send_calls([{"to": to, "data": data}], atomic_required=True)
        status = self._wait_for_calls_status(relay, batch_id)
        receipts = status.get("receipts") or []
        if not receipts or receipts[0].get("status") not in ("0x1", 1, "success"):
            raise TransportFailure(f"Batched call {batch_id} failed or returned error status")
        logs = receipts[0].get("logs") or []
        return logs[0].get("data", "0x") if logs else "0x"

    def _wait_for_calls_status(self, relay: RelayProvider, batch_id: str) -> Dict[str, Any]:
        for attempt in range(self.status_attempts):
            try:
                status = relay.get_calls_status(batch_id)
            except Exception as exc:
                logger.debug("Calls status attempt %d not ready: %s", attempt + 1, exc)
            else:
                code = status.get("status")
                if code == 200 or code == "CONFIRMED":
                    return status
                if isinstance(code, int) and code >= 400:
                    raise TransportFailure(f"Batched call {batch_id} ended with status {code}")
            self._sleep(self.status_interval)
        raise TransportFailure(f"Timeout waiting for batched call {batch_id} status")

    def _relay_write(self, handle: ContractHandle, function_name: str, args: List[Any], data: str) -> str:
        relay: RelayProvider = handle.context
        attempt = self._record(AttemptPath.RELAY_PLAIN, CallMode.WRITE, handle, function_name, data)
        try:
            tx_id = relay.send_transaction(handle.address, data)
        except Exception as exc:
            raise self._fail(attempt, exc) from exc
        attempt.result = tx_id
        logger.info(
            "%s submitted through relay",
            function_name,
            extra={"event": "executor.relay_submitted", "tx_hash": tx_id, "function": function_name},
        )
        return tx_id
