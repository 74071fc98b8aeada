"""
Tests for ABI loading, fallback and caching.
"""

import json

import pytest

from tdeed.core.abi_loader import AbiLoader, AbiSourceError, parse_abi_document
from tdeed.core.exceptions import ConfigurationError

OWNER_OF = {
    "type": "function",
    "name": "ownerOf",
    "stateMutability": "view",
    "inputs": [{"name": "tokenId", "type": "uint256"}],
    "outputs": [{"name": "", "type": "address"}],
}


def _write_source(root, network, contract_name, entries, as_string=True):
    directory = root / network
    directory.mkdir(parents=True, exist_ok=True)
    abi = json.dumps(entries) if as_string else entries
    (directory / f"{contract_name}.json").write_text(
        json.dumps({"contractName": contract_name, "abi": abi}), encoding="utf-8"
    )


def test_bundled_base_sepolia_interfaces_load():
    loader = AbiLoader()
    deed = loader.load(84532, "DeedNFT")
    assert deed.network == "base-sepolia"
    for name in ("getTraitValue", "setTrait", "removeTrait", "ownerOf", "hasRole", "VALIDATOR_ROLE"):
        assert deed.has_function(name)
    assert loader.load(84532, "Validator").has_function("updateValidationStatus")
    assert loader.load(84532, "MetadataRenderer").has_function("setTokenGallery")


def test_chain_without_sources_falls_back_to_base_sepolia():
    loader = AbiLoader()
    abi = loader.load(11155111, "DeedNFT")
    assert abi.network == "base-sepolia"
    assert abi.has_function("getTraitValue")


def test_unknown_chain_uses_fallback(tmp_path):
    _write_source(tmp_path, "base-sepolia", "Validator", [OWNER_OF])
    loader = AbiLoader(source_root=tmp_path)
    abi = loader.load(999999, "Validator")
    assert abi.network == "base-sepolia"


def test_chain_source_preferred_over_fallback(tmp_path):
    _write_source(tmp_path, "base-sepolia", "DeedNFT", [OWNER_OF])
    _write_source(tmp_path, "ethereum", "DeedNFT", [OWNER_OF, dict(OWNER_OF, name="tokenURI")])
    loader = AbiLoader(source_root=tmp_path)
    abi = loader.load(1, "DeedNFT")
    assert abi.network == "ethereum"
    assert abi.has_function("tokenURI")


def test_missing_chain_and_fallback_raises_configuration_error(tmp_path):
    loader = AbiLoader(source_root=tmp_path)
    with pytest.raises(ConfigurationError) as excinfo:
        loader.load(1, "DeedNFT")
    assert len(excinfo.value.details["errors"]) == 2


def test_undecodable_chain_source_falls_back(tmp_path):
    _write_source(tmp_path, "base-sepolia", "DeedNFT", [OWNER_OF])
    (tmp_path / "sepolia").mkdir()
    (tmp_path / "sepolia" / "DeedNFT.json").write_bytes(b'{"abi": "\xff\xfe"}')
    loader = AbiLoader(source_root=tmp_path)
    abi = loader.load(11155111, "DeedNFT")
    assert abi.network == "base-sepolia"


def test_undecodable_chain_and_fallback_raise_configuration_error(tmp_path):
    for network in ("sepolia", "base-sepolia"):
        (tmp_path / network).mkdir()
        (tmp_path / network / "DeedNFT.json").write_bytes(b'{"abi": "\xff\xfe"}')
    loader = AbiLoader(source_root=tmp_path)
    with pytest.raises(ConfigurationError) as excinfo:
        loader.load(11155111, "DeedNFT")
    assert len(excinfo.value.details["errors"]) == 2


def test_fallback_network_is_not_tried_twice(tmp_path):
    loader = AbiLoader(source_root=tmp_path)
    with pytest.raises(ConfigurationError) as excinfo:
        loader.load(84532, "DeedNFT")
    assert len(excinfo.value.details["errors"]) == 1


def test_successful_loads_are_cached(tmp_path):
    _write_source(tmp_path, "base-sepolia", "DeedNFT", [OWNER_OF])
    loader = AbiLoader(source_root=tmp_path)
    first = loader.load(84532, "DeedNFT")
    (tmp_path / "base-sepolia" / "DeedNFT.json").unlink()
    assert loader.load(84532, "DeedNFT") is first
    assert loader.is_cached(84532, "DeedNFT")

    loader.clear_cache()
    with pytest.raises(ConfigurationError):
        loader.load(84532, "DeedNFT")


def test_failed_loads_are_retried(tmp_path):
    loader = AbiLoader(source_root=tmp_path)
    with pytest.raises(ConfigurationError):
        loader.load(84532, "Validator")
    assert not loader.is_cached(84532, "Validator")

    _write_source(tmp_path, "base-sepolia", "Validator", [OWNER_OF])
    assert loader.load(84532, "Validator").has_function("ownerOf")


def test_parse_abi_document_accepts_list_form():
    raw = json.dumps({"abi": [OWNER_OF]})
    assert parse_abi_document(raw) == [OWNER_OF]


def test_parse_abi_document_rejects_malformed_sources():
    with pytest.raises(AbiSourceError):
        parse_abi_document("not json")
    with pytest.raises(AbiSourceError):
        parse_abi_document(json.dumps({"abi": "[not json"}))
    with pytest.raises(AbiSourceError):
        parse_abi_document(json.dumps({"abi": {"name": "x"}}))


def test_function_lookup_raises_for_unknown_function():
    abi = AbiLoader().load(84532, "Validator")
    with pytest.raises(ConfigurationError):
        abi.function("burn")
    assert abi.signature("updateValidationStatus") == "updateValidationStatus(uint256,bool,address)"
