import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional

from eth_account import Account as EthAccount
from loguru import logger
from web3 import Web3

from contracts import ContractRegistry
from endpoints import EndpointPool
from errors import Cancelled
from retry import RetryPolicy, execute, execute_with_failover


class WalletState(str, Enum):
    OK = "OK"
    LOW = "LOW"
    INSUFFICIENT = "INSUFFICIENT"
    ERROR = "ERROR"


@dataclass(frozen=True)
class BalanceThresholds:
    insufficient_floor: int  # wei
    low_threshold: int  # wei

    def __post_init__(self):
        if not 0 <= self.insufficient_floor < self.low_threshold:
            raise ValueError(
                f"Thresholds must satisfy 0 <= insufficient_floor < low_threshold, "
                f"got {self.insufficient_floor} and {self.low_threshold}"
            )


def derive_status(total_balance: int, thresholds: BalanceThresholds) -> WalletState:
    if total_balance < thresholds.insufficient_floor:
        return WalletState.INSUFFICIENT
    if total_balance < thresholds.low_threshold:
        return WalletState.LOW
    return WalletState.OK


@dataclass(frozen=True)
class WalletStatus:
    address: str
    native_balance: int = 0
    token_balance: int = 0
    nonce: int = 0
    unique_tx_count: int = 0
    nft_count: int = 0
    status: WalletState = WalletState.ERROR
    nft_holdings: Dict[str, int] = field(default_factory=dict, compare=False)
    endpoint: Optional[str] = None

    def __post_init__(self):
        for name in ("native_balance", "token_balance", "nonce", "unique_tx_count", "nft_count"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")

    @property
    def total_balance(self) -> int:
        return self.native_balance + self.token_balance

    @classmethod
    def error(cls, address: str, endpoint: Optional[str] = None) -> "WalletStatus":
        return cls(address=address, status=WalletState.ERROR, endpoint=endpoint)

    @classmethod
    def build(
        cls,
        address: str,
        native_balance: int,
        token_balance: int,
        nonce: int,
        unique_tx_count: int,
        nft_holdings: Dict[str, int],
        thresholds: BalanceThresholds,
        endpoint: Optional[str] = None,
    ) -> "WalletStatus":
        return cls(
            address=address,
            native_balance=native_balance,
            token_balance=token_balance,
            nonce=nonce,
            unique_tx_count=unique_tx_count,
            nft_count=sum(nft_holdings.values()),
            status=derive_status(native_balance + token_balance, thresholds),
            nft_holdings=dict(nft_holdings),
            endpoint=endpoint,
        )


@dataclass(frozen=True)
class BatchSummary:
    wallets: int
    by_state: Dict[WalletState, int]
    native_balance: int
    token_balance: int

    @property
    def total_balance(self) -> int:
        return self.native_balance + self.token_balance


def summarize(statuses: Iterable[WalletStatus]) -> BatchSummary:
    statuses = list(statuses)
    by_state = {state: 0 for state in WalletState}
    for status in statuses:
        by_state[status.status] += 1
    return BatchSummary(
        wallets=len(statuses),
        by_state=by_state,
        native_balance=sum(s.native_balance for s in statuses),
        token_balance=sum(s.token_balance for s in statuses),
    )


def _topic(address: str) -> str:
    return "0x" + address[2:].lower().rjust(64, "0")


class StatusChecker:
    """Collects balances, nonce, activity and NFT holdings for one wallet at a time.

    ``check_status`` never raises for network trouble: a wallet that cannot be
    reached comes back as a zeroed ERROR record so a batch keeps going. Only
    ``Cancelled`` escapes.
    """

    def __init__(
        self,
        registry: ContractRegistry,
        policy: RetryPolicy,
        thresholds: BalanceThresholds,
        log_scan_blocks: int = 100,
        token: str = "wmon",
        stop_event: Optional[threading.Event] = None,
    ):
        self.registry = registry
        self.policy = policy
        self.thresholds = thresholds
        self.log_scan_blocks = log_scan_blocks
        self.token = token
        self.stop_event = stop_event

    def check_status(self, private_key: str, pool: EndpointPool) -> WalletStatus:
        try:
            address = EthAccount.from_key(private_key).address
        except Exception as error:
            logger.error(f"Status check skipped, bad private key: {error}")
            return WalletStatus.error("Unknown")

        try:
            return self._collect(address, pool)
        except Cancelled:
            raise
        except Exception as error:
            logger.error(f"[{address}] Status check failed on {pool.current().label}: {error}")
            return WalletStatus.error(address, pool.current().label)

    def _collect(self, address: str, pool: EndpointPool) -> WalletStatus:
        pool.find_live()

        native_balance = execute_with_failover(
            lambda w3: w3.eth.get_balance(address), pool, self.policy, self.stop_event, f"[{address}] native balance"
        )
        token_balance = self._token_balance(address, pool)
        nonce = execute_with_failover(
            lambda w3: w3.eth.get_transaction_count(address), pool, self.policy, self.stop_event, f"[{address}] nonce"
        )
        unique_tx_count = self._unique_tx_count(address, nonce, pool)
        nft_holdings = self._nft_holdings(address, pool)

        status = WalletStatus.build(
            address=address,
            native_balance=native_balance,
            token_balance=token_balance,
            nonce=nonce,
            unique_tx_count=unique_tx_count,
            nft_holdings=nft_holdings,
            thresholds=self.thresholds,
            endpoint=pool.current().label,
        )
        logger.info(
            f"[{address}] {Web3.from_wei(status.total_balance, 'ether')} MON total | "
            f"nonce {nonce} | tx {unique_tx_count} | NFT {status.nft_count} | {status.status.value}"
        )
        return status

    def _token_balance(self, address: str, pool: EndpointPool) -> int:
        spec = self.registry.get(self.token)

        def balance_of(w3: Web3) -> int:
            return w3.eth.contract(address=spec.address, abi=spec.abi).functions.balanceOf(address).call()

        try:
            return execute(lambda: balance_of(pool.client()), self.policy, self.stop_event, f"[{address}] token balance")
        except Cancelled:
            raise
        except Exception as error:
            logger.warning(f"[{address}] Token balance via {pool.current().label} failed, trying without proxy: {error}")

        # single direct attempt, no retries
        try:
            return balance_of(pool.client_for(pool.current().direct()))
        except Exception as error:
            logger.warning(f"[{address}] Token balance unknown, counting 0: {error}")
            return 0

    def _unique_tx_count(self, address: str, nonce: int, pool: EndpointPool) -> int:
        topic = _topic(address)

        def scan(w3: Web3) -> int:
            latest = w3.eth.block_number
            start = max(0, latest - self.log_scan_blocks)
            hashes = set()
            # wallet as sender, then as recipient
            for topics in ([None, topic], [None, None, topic]):
                for log in w3.eth.get_logs({"fromBlock": start, "toBlock": latest, "topics": topics}):
                    hashes.add(log["transactionHash"])
            return len(hashes)

        try:
            seen = execute(lambda: scan(pool.client()), self.policy, self.stop_event, f"[{address}] log scan")
        except Cancelled:
            raise
        except Exception as error:
            logger.info(f"[{address}] Log scan failed, using nonce only: {error}")
            return nonce
        return max(seen, nonce)

    def _nft_holdings(self, address: str, pool: EndpointPool) -> Dict[str, int]:
        holdings: Dict[str, int] = {}
        if not self.registry.nft_collections:
            return holdings

        abi = self.registry.abi("erc721")
        for collection in self.registry.nft_collections:
            try:
                count = execute(
                    lambda: pool.client().eth.contract(address=collection.address, abi=abi).functions.balanceOf(address).call(),
                    self.policy,
                    self.stop_event,
                    f"[{address}] {collection.name} balance",
                )
            except Cancelled:
                raise
            except Exception as error:
                logger.warning(f"[{address}] {collection.name} NFT count unknown, counting 0: {error}")
                count = 0

            holdings[collection.name] = holdings.get(collection.name, 0) + int(count)
            if count:
                logger.info(f"[{address}] {collection.name}: {count}")
        return holdings
