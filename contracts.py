import json
from dataclasses import dataclass, field
from typing import Dict, List

from web3 import Web3

from errors import ConfigError

SUPPORTED_VERSIONS = (1,)


@dataclass(frozen=True)
class ContractSpec:
    name: str
    address: str
    abi: list = field(default_factory=list, compare=False)
    selectors: Dict[str, str] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class NftCollection:
    name: str
    address: str


def _checksum(address: str, where: str) -> str:
    try:
        return Web3.to_checksum_address(address)
    except (TypeError, ValueError) as error:
        raise ConfigError(f"Bad address for {where}: {address!r}") from error


class ContractRegistry:
    """Contract addresses and ABI fragments keyed by logical name."""

    def __init__(self, contracts: Dict[str, ContractSpec], abis: Dict[str, list], nft_collections: List[NftCollection], version: int = 1):
        self.contracts = contracts
        self.abis = abis
        self.nft_collections = nft_collections
        self.version = version

    @classmethod
    def from_dict(cls, data: dict) -> "ContractRegistry":
        version = data.get("version")
        if version not in SUPPORTED_VERSIONS:
            raise ConfigError(f"Unsupported contracts file version: {version}")

        contracts = {}
        for name, raw in data.get("contracts", {}).items():
            contracts[name] = ContractSpec(
                name=name,
                address=_checksum(raw["address"], name),
                abi=raw.get("abi", []),
                selectors=raw.get("selectors", {}),
            )

        nft_collections = [
            NftCollection(name=raw.get("name") or "NFT", address=_checksum(raw["address"], raw.get("name", "NFT")))
            for raw in data.get("nft_collections", [])
        ]

        return cls(contracts, data.get("abis", {}), nft_collections, version)

    def get(self, name: str) -> ContractSpec:
        try:
            return self.contracts[name]
        except KeyError:
            raise ConfigError(f"Contract {name!r} is not in the registry") from None

    def abi(self, name: str) -> list:
        try:
            return self.abis[name]
        except KeyError:
            raise ConfigError(f"ABI {name!r} is not in the registry") from None

    def contract(self, w3: Web3, name: str):
        spec = self.get(name)
        return w3.eth.contract(address=spec.address, abi=spec.abi)


def load_registry(path: str) -> ContractRegistry:
    with open(path, encoding="utf-8") as f:
        return ContractRegistry.from_dict(json.load(f))
