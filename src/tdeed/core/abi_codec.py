"""
ABI encoding helpers.

Builds canonical function signatures and selectors from ABI descriptors and
encodes call data / decodes return data with eth_abi. Used by the relay path,
which has no client-side contract object to do it for us.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import is_hex_address, keccak, to_bytes, to_checksum_address

from tdeed.core.exceptions import DecodeError


def canonical_type(param: Dict[str, Any]) -> str:
    """Return the canonical ABI type of a parameter, expanding tuples."""
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param.get("components", []))
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def input_types(fn_abi: Dict[str, Any]) -> List[str]:
    return [canonical_type(p) for p in fn_abi.get("inputs", [])]


def output_types(fn_abi: Dict[str, Any]) -> List[str]:
    return [canonical_type(p) for p in fn_abi.get("outputs", [])]


def function_signature(fn_abi: Dict[str, Any]) -> str:
    """e.g. ``hasRole(bytes32,address)``"""
    return f"{fn_abi['name']}({','.join(input_types(fn_abi))})"


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256 of the signature."""
    return keccak(text=signature)[:4]


def _normalize_arg(abi_type: str, value: Any) -> Any:
    if abi_type.endswith("]"):
        base = abi_type[: abi_type.rindex("[")]
        return [_normalize_arg(base, v) for v in value]
    if abi_type.startswith("bytes") and isinstance(value, str):
        return to_bytes(hexstr=value)
    if (abi_type.startswith("uint") or abi_type.startswith("int")) and isinstance(value, str):
        return int(value, 0)
    if abi_type == "address" and isinstance(value, str) and is_hex_address(value):
        return to_checksum_address(value)
    return value


def encode_args(types: Sequence[str], args: Sequence[Any]) -> bytes:
    normalized = [_normalize_arg(t, a) for t, a in zip(types, args)]
    return abi_encode(list(types), normalized)


def encode_call(fn_abi: Dict[str, Any], args: Sequence[Any]) -> bytes:
    """Selector plus ABI-encoded arguments."""
    types = input_types(fn_abi)
    if len(types) != len(args):
        raise ValueError(
            f"{fn_abi['name']} expects {len(types)} arguments, got {len(args)}"
        )
    try:
        return function_selector(function_signature(fn_abi)) + encode_args(types, args)
    except (EncodingError, TypeError, ValueError) as exc:
        raise ValueError(f"Cannot encode arguments for {fn_abi['name']}: {exc}") from exc


def _normalize_result(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return to_checksum_address(value)
    if abi_type.endswith("]") and isinstance(value, (list, tuple)):
        base = abi_type[: abi_type.rindex("[")]
        return [_normalize_result(base, v) for v in value]
    return value


def decode_values(types: Sequence[str], data: bytes) -> tuple:
    """Decode raw ABI data; failures become DecodeError."""
    try:
        values = abi_decode(list(types), bytes(data))
    except (DecodingError, TypeError, ValueError, OverflowError) as exc:
        raise DecodeError(
            f"Could not decode {list(types)} from {len(data)} bytes: {exc}",
            details={"types": list(types), "data": "0x" + bytes(data).hex()},
        ) from exc
    return tuple(_normalize_result(t, v) for t, v in zip(types, values))


def decode_output(fn_abi: Dict[str, Any], data: bytes | str) -> Any:
    """Decode a function's return data.

    A single output is unwrapped; multiple outputs come back as a tuple and no
    outputs as None.
    """
    if isinstance(data, str):
        data = to_bytes(hexstr=data)
    types = output_types(fn_abi)
    if not types:
        return None
    values = decode_values(types, data)
    return values[0] if len(values) == 1 else values
