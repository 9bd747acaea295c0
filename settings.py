RPC_URLS = [  # Monad testnet RPC nodes, first one is the primary
    "https://testnet-rpc.monad.xyz",
    "https://monad-testnet.drpc.org",
]
EXPLORER = "https://testnet.monadexplorer.com/tx/"
RPC_TIMEOUT = 30  # Seconds per RPC request

CONTRACTS_FILE = "contracts.json"  # Contract addresses, ABIs and NFT collections

RETRY = 3  # Attempts per RPC call
RETRY_DELAY = 5  # Seconds between attempts
RETRY_DEADLINE = None  # Total seconds per retried call, None to disable

MIN_BALANCE = 1.0  # MON, below this a wallet is LOW
INSUFFICIENT_BALANCE = 0.01  # MON, below this a wallet is INSUFFICIENT
LOG_SCAN_BLOCKS = 100  # Blocks scanned for the unique tx estimate

MIN_SLEEP = 60  # Sleep between operations, seconds
MAX_SLEEP = 600
SLEEP_BETWEEN_WALLETS = [60, 600]

MIN_AMOUNT = 0.01  # MON per operation
MAX_AMOUNT = 0.05

GAS_LIMIT = 500000
GAS_MULTIPLIER = 1.2
CHECK_GWEI = False  # Wait for gas before sending
MAX_GWEI = 100

REFILL_RESERVE = 0.1  # MON a donor keeps on top of MIN_BALANCE

THREADS = 1  # 1 processes wallets one by one
SHUFFLE_ACCOUNTS = False  # Shuffle wallets (keeps wallet/proxy pairs)
DRY_RUN = False  # Build and log transactions without sending them

ACCOUNTS_FILE = "accounts.txt"
PROXIES_FILE = "proxies.txt"  # user:pass@host:port per line, empty file for no proxy
LOG_FILE = None  # e.g. "logs/run.log"
