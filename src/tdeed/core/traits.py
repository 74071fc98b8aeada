"""
Trait keys and typed trait values.

Traits are stored on the registry as raw bytes keyed by ``keccak256(name)``
together with a value type tag:

    1 = string  (UTF-8 bytes)
    2 = number  (32-byte big-endian, left-padded)
    3 = boolean (32-byte word, 0 or 1)
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Tuple, Union

from eth_utils import keccak

from tdeed.core.abi_codec import decode_values
from tdeed.core.exceptions import DecodeError, InputValidationError

VALIDATOR_TRAIT = "validator"

_WORD = 32
_MAX_UINT256 = 2**256 - 1


class TraitValueType(IntEnum):
    STRING = 1
    NUMBER = 2
    BOOLEAN = 3


def trait_key(name: str) -> bytes:
    """bytes32 key under which a trait is stored."""
    return keccak(text=name)


VALIDATOR_TRAIT_KEY = trait_key(VALIDATOR_TRAIT)


def parse_value_type(value_type: Union[str, int, TraitValueType]) -> TraitValueType:
    if isinstance(value_type, TraitValueType):
        return value_type
    if isinstance(value_type, int):
        try:
            return TraitValueType(value_type)
        except ValueError:
            raise InputValidationError(f"Unknown trait value type tag {value_type}") from None
    try:
        return TraitValueType[str(value_type).strip().upper()]
    except KeyError:
        raise InputValidationError(f"Unknown trait value type {value_type!r}") from None


def _word(value: int) -> bytes:
    return value.to_bytes(_WORD, "big")


def encode_trait_value(value: Any, value_type: Union[str, int, TraitValueType]) -> Tuple[bytes, TraitValueType]:
    """Encode a user-supplied value for ``setTrait``; returns (bytes, type tag)."""
    kind = parse_value_type(value_type)

    if kind is TraitValueType.STRING:
        return str(value).encode("utf-8"), kind

    if kind is TraitValueType.NUMBER:
        if isinstance(value, bool):
            raise InputValidationError("Number trait values must be integers")
        try:
            number = int(str(value).strip(), 10) if isinstance(value, str) else int(value)
        except (TypeError, ValueError):
            raise InputValidationError(f"Invalid number trait value {value!r}") from None
        if not 0 <= number <= _MAX_UINT256:
            raise InputValidationError(f"Number trait value {number} out of uint256 range")
        return _word(number), kind

    if isinstance(value, bool):
        flag = value
    else:
        text = str(value).strip().lower()
        if text in ("true", "1", "yes"):
            flag = True
        elif text in ("false", "0", "no"):
            flag = False
        else:
            raise InputValidationError(f"Invalid boolean trait value {value!r}")
    return _word(1 if flag else 0), kind


def decode_trait_value(raw: bytes, value_type: Union[str, int, TraitValueType]) -> Any:
    """Decode bytes returned by ``getTraitValue``.

    Empty bytes mean the trait is not set and decode to None. String traits
    written at mint time are ABI-encoded rather than raw UTF-8; both are
    accepted.
    """
    kind = parse_value_type(value_type)
    raw = bytes(raw)
    if not raw:
        return None

    if kind is TraitValueType.STRING:
        if len(raw) >= 2 * _WORD and raw[:_WORD] == _word(_WORD):
            return decode_values(["string"], raw)[0]
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError("String trait is not valid UTF-8") from exc

    if len(raw) != _WORD:
        raise DecodeError(
            f"{kind.name.lower()} trait must be {_WORD} bytes, got {len(raw)}",
            details={"length": len(raw)},
        )
    number = int.from_bytes(raw, "big")
    if kind is TraitValueType.NUMBER:
        return number
    if number not in (0, 1):
        raise DecodeError(f"Boolean trait word holds {number}")
    return bool(number)
