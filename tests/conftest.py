"""Shared fixtures and an in-memory stand-in for a Web3 client."""

from __future__ import annotations

from collections import Counter

import pytest
import requests
from eth_account import Account as EthAccount
from eth_utils import keccak

from contracts import ContractRegistry
from endpoints import Endpoint, EndpointPool
from retry import RetryPolicy
from status import BalanceThresholds

PRIVATE_KEY = "0x" + "11" * 32
ADDRESS = EthAccount.from_key(PRIVATE_KEY).address
OTHER_KEY = "0x" + "22" * 32
OTHER_ADDRESS = EthAccount.from_key(OTHER_KEY).address

WMON = "0x760AfE86e5de5fa0Ee542fc7B7B713e1c5425701"
NFT_A = "0x00000000000000000000000000000000000000A1"
NFT_B = "0x00000000000000000000000000000000000000b2"

ETHER = 10**18


# ---------------------------------------------------------------------------
# Fake chain
# ---------------------------------------------------------------------------


class FakeChain:
    """State shared by every fake client; endpoints in ``down`` refuse connections."""

    def __init__(self):
        self.block_number = 1000
        self.chain_id = 10143
        self.gas_price = 50 * 10**9
        self.balances: dict = {}
        self.token_balances: dict = {}  # (contract, owner) -> amount
        self.nonces: dict = {}
        self.logs: list = []
        self.down: set = set()
        self.failures: dict = {}  # method -> exception or list of exceptions
        self.calls = Counter()
        self.sent: list = []
        self.receipt_status = 1

    def enter(self, endpoint: Endpoint, method: str):
        self.calls[method] += 1
        if endpoint in self.down:
            raise requests.exceptions.ConnectionError(f"{endpoint.url} is down")
        failure = self.failures.get(method)
        if isinstance(failure, list):
            if failure:
                raise failure.pop(0)
        elif failure is not None:
            raise failure


class FakeCall:
    def __init__(self, eth, contract, name, args):
        self.eth = eth
        self.contract = contract
        self.name = name
        self.args = args

    def call(self):
        self.eth.chain.enter(self.eth.endpoint, f"{self.name}.call")
        if self.name == "balanceOf":
            return self.eth.chain.token_balances.get((self.contract.address.lower(), self.args[0]), 0)
        raise NotImplementedError(self.name)

    def build_transaction(self, tx):
        return {**tx, "to": self.contract.address, "data": "0x" + keccak(text=self.name)[:4].hex()}


class FakeFunctions:
    def __init__(self, eth, contract):
        self._eth = eth
        self._contract = contract

    def __getattr__(self, name):
        return lambda *args: FakeCall(self._eth, self._contract, name, args)


class FakeContract:
    def __init__(self, eth, address):
        self.address = address
        self.functions = FakeFunctions(eth, self)


class FakeEth:
    account = EthAccount

    def __init__(self, chain: FakeChain, endpoint: Endpoint):
        self.chain = chain
        self.endpoint = endpoint

    @property
    def block_number(self):
        self.chain.enter(self.endpoint, "block_number")
        return self.chain.block_number

    @property
    def chain_id(self):
        self.chain.enter(self.endpoint, "chain_id")
        return self.chain.chain_id

    @property
    def gas_price(self):
        self.chain.enter(self.endpoint, "gas_price")
        return self.chain.gas_price

    def get_balance(self, address):
        self.chain.enter(self.endpoint, "get_balance")
        return self.chain.balances.get(address, 0)

    def get_transaction_count(self, address):
        self.chain.enter(self.endpoint, "get_transaction_count")
        return self.chain.nonces.get(address, 0)

    def get_logs(self, params):
        self.chain.enter(self.endpoint, "get_logs")
        topics = params["topics"]
        position = len(topics) - 1
        return [
            log
            for log in self.chain.logs
            if params["fromBlock"] <= log["blockNumber"] <= params["toBlock"]
            and len(log["topics"]) > position
            and log["topics"][position] == topics[position]
        ]

    def contract(self, address, abi):
        return FakeContract(self, address)

    def send_raw_transaction(self, raw):
        self.chain.enter(self.endpoint, "send_raw_transaction")
        self.chain.sent.append(raw)
        return keccak(raw)

    def get_transaction_receipt(self, tx_hash):
        self.chain.enter(self.endpoint, "get_transaction_receipt")
        return {"status": self.chain.receipt_status}


class FakeWeb3:
    def __init__(self, chain: FakeChain, endpoint: Endpoint):
        self.eth = FakeEth(chain, endpoint)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def make_pool(chain):
    def _make(urls=("https://rpc-1.test", "https://rpc-2.test"), proxy=None) -> EndpointPool:
        return EndpointPool.from_urls(list(urls), proxy=proxy, timeout=5, client_factory=lambda e: FakeWeb3(chain, e))

    return _make


@pytest.fixture
def pool(make_pool) -> EndpointPool:
    return make_pool()


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, retry_delay=0)


@pytest.fixture
def thresholds() -> BalanceThresholds:
    return BalanceThresholds(insufficient_floor=ETHER // 100, low_threshold=ETHER)


@pytest.fixture
def registry() -> ContractRegistry:
    return ContractRegistry.from_dict(
        {
            "version": 1,
            "abis": {"erc20": [], "erc721": []},
            "contracts": {
                "wmon": {"address": WMON, "abi": []},
                "magma": {
                    "address": "0x2c9C959516e9AAEdB2C748224a41249202ca8BE7",
                    "selectors": {"stake": "0xd5575982"},
                },
                "apriori": {"address": "0xb2f82D0f38dc453D596Ad40A37799446Cc89274A", "abi": []},
            },
            "nft_collections": [
                {"name": "Alpha", "address": NFT_A},
                {"name": "Beta", "address": NFT_B},
            ],
        }
    )


@pytest.fixture
def nft_addresses(registry) -> dict:
    return {collection.name: collection.address for collection in registry.nft_collections}
