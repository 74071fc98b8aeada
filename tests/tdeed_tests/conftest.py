import sys
from pathlib import Path

import pytest
from eth_utils import keccak

# src for `tdeed.*`, this directory for the shared test doubles
project_root = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(project_root / "src"))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from chain_fakes import (  # noqa: E402
    BASE_SEPOLIA,
    DEFAULT_ADMIN_ROLE,
    OWNER,
    VALIDATOR_ROLE,
    FakeChain,
    role_check,
    trait_store,
)
from tdeed.core.abi_loader import AbiLoader  # noqa: E402
from tdeed.core.networks import DEED_NFT, METADATA_RENDERER, VALIDATOR, get_network  # noqa: E402
from tdeed.core.transaction_executor import TransactionExecutor  # noqa: E402


@pytest.fixture
def network():
    return get_network(BASE_SEPOLIA)


@pytest.fixture
def loader():
    return AbiLoader()


@pytest.fixture
def executor():
    return TransactionExecutor(status_attempts=3, status_interval=0, sleep=lambda _: None)


@pytest.fixture
def chain(loader):
    return FakeChain(loader)


@pytest.fixture
def deployed_chain(chain, network):
    """Registry with token 1 owned by OWNER; renderer and validator with no role holders."""
    traits = chain.traits

    def set_trait(token_id, name, value, value_type):
        traits[(token_id, keccak(name))] = value

    chain.deploy(
        network.contract_address(DEED_NFT),
        DEED_NFT,
        ownerOf=lambda token_id: OWNER,
        getTraitValue=trait_store(traits),
        setTrait=set_trait,
        removeTrait=lambda token_id, name: traits.pop((token_id, keccak(text=name)), None),
        setTraitName=lambda key, name: None,
        getTraitName=lambda key: "Color",
        tokenURI=lambda token_id: f"ipfs://deed/{token_id}",
        metadataRenderer=lambda: network.contract_address(METADATA_RENDERER),
        VALIDATOR_ROLE=lambda: VALIDATOR_ROLE,
        DEFAULT_ADMIN_ROLE=lambda: DEFAULT_ADMIN_ROLE,
        hasRole=role_check(chain.registry_roles),
    )
    chain.deploy(
        network.contract_address(METADATA_RENDERER),
        METADATA_RENDERER,
        VALIDATOR_ROLE=lambda: VALIDATOR_ROLE,
        hasRole=role_check(chain.renderer_roles),
        setTokenCustomMetadata=lambda token_id, metadata: None,
        setTokenAnimationURL=lambda token_id, url: None,
        setTokenExternalLink=lambda token_id, link: None,
        manageTokenDocument=lambda token_id, doc_type, uri, is_remove: None,
        setAssetCondition=lambda *args: None,
        setTokenLegalInfo=lambda *args: None,
        setTokenFeatures=lambda token_id, features: None,
        setTokenGallery=lambda token_id, urls: None,
    )
    chain.deploy(
        network.contract_address(VALIDATOR),
        VALIDATOR,
        VALIDATOR_ROLE=lambda: VALIDATOR_ROLE,
        hasRole=role_check(chain.validator_roles),
        updateValidationStatus=lambda token_id, is_valid, validator: None,
        validateDeed=lambda token_id: True,
    )
    return chain
