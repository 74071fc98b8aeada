"""
Static network registry.

Maps chain ids to contract addresses, RPC endpoints and the directory holding
each network's bundled contract interfaces. Descriptors are immutable and
defined once at import time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from tdeed.core import config
from tdeed.core.exceptions import ConfigurationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

DEED_NFT = "DeedNFT"
VALIDATOR = "Validator"
VALIDATOR_REGISTRY = "ValidatorRegistry"
FUND_MANAGER = "FundManager"
METADATA_RENDERER = "MetadataRenderer"

# Network whose interface definitions are used when a chain has none of its own
DEFAULT_ABI_NETWORK = "base-sepolia"


@dataclass(frozen=True)
class NetworkDescriptor:
    """A supported chain and the contracts deployed on it."""

    chain_id: int
    name: str
    short_name: str
    rpc_url: str
    block_explorer: str
    contracts: Mapping[str, str] = field(default_factory=dict, compare=False)
    env_key: str = ""
    infura_host: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "contracts", MappingProxyType(dict(self.contracts)))

    def contract_address(self, contract_name: str) -> Optional[str]:
        """Return the deployed address of a contract, or None if not deployed."""
        address = self.contracts.get(contract_name)
        if not is_contract_deployed(address):
            return None
        return address

    @property
    def registry_address(self) -> str:
        """Address of the DeedNFT registry; raises if not deployed here."""
        address = self.contract_address(DEED_NFT)
        if address is None:
            raise ConfigurationError(
                f"No {DEED_NFT} contract deployed on {self.name} (chain {self.chain_id})",
                details={"chain_id": self.chain_id, "contract": DEED_NFT},
            )
        return address

    @property
    def rpc_endpoint(self) -> str:
        """Best available RPC URL: Alchemy, then Infura, then the public endpoint."""
        return (
            config.alchemy_url(self.env_key)
            or config.infura_url(self.env_key, self.infura_host)
            or self.rpc_url
        )


def _undeployed() -> dict[str, str]:
    return {
        DEED_NFT: ZERO_ADDRESS,
        VALIDATOR: ZERO_ADDRESS,
        VALIDATOR_REGISTRY: ZERO_ADDRESS,
        FUND_MANAGER: ZERO_ADDRESS,
        METADATA_RENDERER: ZERO_ADDRESS,
    }


_NETWORKS = (
    NetworkDescriptor(
        chain_id=84532,
        name="Base Sepolia",
        short_name="base-sepolia",
        rpc_url="https://sepolia.base.org",
        block_explorer="https://sepolia.basescan.org",
        contracts={
            DEED_NFT: "0x1a4e89225015200f70e5a06f766399a3de6e21E6",
            VALIDATOR: "0x18C53C0D046f98322954f971c21125E4443c79b9",
            VALIDATOR_REGISTRY: "0x979E6cC741A8481f96739A996D06EcFb9BA2bc91",
            FUND_MANAGER: "0x73ea6B404E6B81E7Fe6B112605dD8661B52d401e",
            METADATA_RENDERER: "0xAc50869E89004aa25A8c1044195AC760A7FC48BE",
        },
        env_key="BASE_SEPOLIA",
    ),
    NetworkDescriptor(
        chain_id=11155111,
        name="Sepolia",
        short_name="sepolia",
        rpc_url="https://rpc.sepolia.org",
        block_explorer="https://sepolia.etherscan.io",
        contracts=_undeployed(),
        env_key="ETH_SEPOLIA",
        infura_host="sepolia.infura.io",
    ),
    NetworkDescriptor(
        chain_id=8453,
        name="Base",
        short_name="base",
        rpc_url="https://mainnet.base.org",
        block_explorer="https://basescan.org",
        contracts=_undeployed(),
        env_key="BASE_MAINNET",
    ),
    NetworkDescriptor(
        chain_id=1,
        name="Ethereum",
        short_name="ethereum",
        rpc_url="https://eth.llamarpc.com",
        block_explorer="https://etherscan.io",
        contracts=_undeployed(),
        env_key="ETH_MAINNET",
        infura_host="mainnet.infura.io",
    ),
    NetworkDescriptor(
        chain_id=42161,
        name="Arbitrum One",
        short_name="arbitrum",
        rpc_url="https://arb1.arbitrum.io/rpc",
        block_explorer="https://arbiscan.io",
        contracts=_undeployed(),
        env_key="ARBITRUM_MAINNET",
        infura_host="arbitrum-mainnet.infura.io",
    ),
    NetworkDescriptor(
        chain_id=137,
        name="Polygon",
        short_name="polygon",
        rpc_url="https://polygon-rpc.com",
        block_explorer="https://polygonscan.com",
        contracts=_undeployed(),
        env_key="POLYGON_MAINNET",
        infura_host="polygon-mainnet.infura.io",
    ),
    NetworkDescriptor(
        chain_id=100,
        name="Gnosis",
        short_name="gnosis",
        rpc_url="https://rpc.gnosischain.com",
        block_explorer="https://gnosisscan.io",
        contracts=_undeployed(),
        env_key="GNOSIS_MAINNET",
    ),
)

NETWORKS: Mapping[int, NetworkDescriptor] = MappingProxyType(
    {network.chain_id: network for network in _NETWORKS}
)

# chain id -> directory of bundled interface definitions
ABI_DIRECTORIES: Mapping[int, str] = MappingProxyType(
    {network.chain_id: network.short_name for network in _NETWORKS}
)


def is_contract_deployed(address: Optional[str]) -> bool:
    """A contract counts as deployed when its address is set and non-zero."""
    return bool(address) and address.lower() != ZERO_ADDRESS


def get_network(chain_id: int) -> NetworkDescriptor:
    """Return the descriptor for a chain or raise ConfigurationError."""
    try:
        return NETWORKS[int(chain_id)]
    except (KeyError, TypeError, ValueError):
        raise ConfigurationError(
            f"Chain {chain_id} is not supported",
            details={"chain_id": chain_id},
        ) from None


def is_network_supported(chain_id: int) -> bool:
    return chain_id in NETWORKS


def get_deployed_networks() -> list[NetworkDescriptor]:
    """Networks on which the DeedNFT registry is deployed."""
    return [n for n in NETWORKS.values() if n.contract_address(DEED_NFT) is not None]
