"""
Contract interface loading.

Interface definitions are bundled with the package, one JSON document per
(network, contract name) under ``tdeed/contracts/<network>/<Contract>.json``.
Each document's ``abi`` field holds the descriptor array, usually as a
JSON-encoded string. When a chain has no usable definition the default
network's document for the same contract is used instead.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from tdeed.core import config
from tdeed.core.abi_codec import function_selector, function_signature
from tdeed.core.exceptions import ConfigurationError
from tdeed.core.networks import ABI_DIRECTORIES, DEFAULT_ABI_NETWORK

logger = logging.getLogger(__name__)


class AbiSourceError(Exception):
    """A single ABI source could not be read or parsed."""


@dataclass(frozen=True)
class AbiDescriptor:
    """A named contract interface with its descriptors in source order."""

    contract_name: str
    network: str
    entries: Tuple[Dict[str, Any], ...]

    def functions(self, name: str) -> list[Dict[str, Any]]:
        return [e for e in self.entries if e.get("type") == "function" and e.get("name") == name]

    def has_function(self, name: str) -> bool:
        return bool(self.functions(name))

    def function(self, name: str, arg_count: Optional[int] = None) -> Dict[str, Any]:
        """Look up a function descriptor, disambiguating overloads by arity."""
        candidates = self.functions(name)
        if arg_count is not None and len(candidates) > 1:
            candidates = [c for c in candidates if len(c.get("inputs", [])) == arg_count]
        if not candidates:
            raise ConfigurationError(
                f"{self.contract_name} interface ({self.network}) has no function {name!r}",
                details={"contract": self.contract_name, "function": name},
            )
        return candidates[0]

    def signature(self, name: str, arg_count: Optional[int] = None) -> str:
        return function_signature(self.function(name, arg_count))

    def selector(self, name: str, arg_count: Optional[int] = None) -> bytes:
        return function_selector(self.signature(name, arg_count))

    @property
    def function_names(self) -> list[str]:
        return [e["name"] for e in self.entries if e.get("type") == "function"]

    def as_list(self) -> list[Dict[str, Any]]:
        """Plain list form accepted by web3's contract factory."""
        return [dict(e) for e in self.entries]


def parse_abi_document(raw: str) -> list[Dict[str, Any]]:
    """Parse an ABI document, accepting a JSON string or a list under ``abi``."""
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise AbiSourceError(f"Malformed ABI document: {exc}") from exc

    abi = document.get("abi") if isinstance(document, dict) else document
    if isinstance(abi, str):
        try:
            abi = json.loads(abi)
        except json.JSONDecodeError as exc:
            raise AbiSourceError(f"Malformed embedded abi string: {exc}") from exc

    if not isinstance(abi, list) or not all(isinstance(e, dict) for e in abi):
        raise AbiSourceError("ABI must be a list of JSON objects")
    return abi


class AbiLoader:
    """Loads and caches contract interfaces per (chain, contract name).

    Failed loads are not cached, so a later call retries both sources.
    """

    def __init__(
        self,
        source_root: Optional[Any] = None,
        fallback_network: str = DEFAULT_ABI_NETWORK,
    ) -> None:
        if source_root is None:
            source_root = Path(config.ABI_DIR) if config.ABI_DIR else resources.files("tdeed.contracts")
        self.source_root = source_root
        self.fallback_network = fallback_network
        self._cache: Dict[Tuple[int, str], AbiDescriptor] = {}
        self._lock = threading.Lock()

    def _read_source(self, network: str, contract_name: str) -> AbiDescriptor:
        source = self.source_root.joinpath(network).joinpath(f"{contract_name}.json")
        try:
            raw = source.read_text(encoding="utf-8")
        except OSError as exc:
            raise AbiSourceError(f"No ABI source {network}/{contract_name}.json") from exc
        except UnicodeDecodeError as exc:
            raise AbiSourceError(f"ABI source {network}/{contract_name}.json is not UTF-8: {exc}") from exc
        entries = parse_abi_document(raw)
        return AbiDescriptor(
            contract_name=contract_name,
            network=network,
            entries=tuple(entries),
        )

    def load(self, chain_id: int, contract_name: str) -> AbiDescriptor:
        key = (chain_id, contract_name)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        network = ABI_DIRECTORIES.get(chain_id)
        errors: list[str] = []
        descriptor: Optional[AbiDescriptor] = None

        if network is not None:
            try:
                descriptor = self._read_source(network, contract_name)
            except AbiSourceError as exc:
                errors.append(str(exc))
        else:
            errors.append(f"No ABI directory registered for chain {chain_id}")

        if descriptor is None and network != self.fallback_network:
            logger.warning(
                "Falling back to %s interface for %s on chain %s",
                self.fallback_network,
                contract_name,
                chain_id,
                extra={"event": "abi.fallback", "chain_id": chain_id, "contract": contract_name},
            )
            try:
                descriptor = self._read_source(self.fallback_network, contract_name)
            except AbiSourceError as exc:
                errors.append(str(exc))

        if descriptor is None:
            logger.error(
                "No usable %s interface for chain %s: %s",
                contract_name,
                chain_id,
                "; ".join(errors),
                extra={"event": "abi.load_failed", "chain_id": chain_id, "contract": contract_name},
            )
            raise ConfigurationError(
                f"Could not load {contract_name} ABI for chain {chain_id}",
                details={"chain_id": chain_id, "contract": contract_name, "errors": errors},
            )

        with self._lock:
            self._cache[key] = descriptor
        logger.debug(
            "Loaded %s interface for chain %s from %s (%d entries)",
            contract_name,
            chain_id,
            descriptor.network,
            len(descriptor.entries),
        )
        return descriptor

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def is_cached(self, chain_id: int, contract_name: str) -> bool:
        with self._lock:
            return (chain_id, contract_name) in self._cache


_default_loader: Optional[AbiLoader] = None
_default_loader_lock = threading.Lock()


def get_default_loader() -> AbiLoader:
    """Process-wide loader shared by callers that do not inject their own."""
    global _default_loader
    with _default_loader_lock:
        if _default_loader is None:
            _default_loader = AbiLoader()
        return _default_loader


def load_abi(chain_id: int, contract_name: str) -> AbiDescriptor:
    return get_default_loader().load(chain_id, contract_name)
