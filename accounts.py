import random
import re
from dataclasses import dataclass
from typing import List, Optional

from errors import ConfigError

PRIVATE_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class WalletEntry:
    index: int
    private_key: str
    proxy: Optional[str] = None


def read_lines(path: str) -> List[str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return [row.strip() for row in f if row.strip() and not row.strip().startswith("#")]
    except FileNotFoundError:
        return []


def parse_private_key(raw: str) -> str:
    key = raw.strip().removeprefix("0x").removeprefix("0X")
    if not PRIVATE_KEY_RE.match(key):
        raise ConfigError(f"Not a private key: {raw[:6]}...")
    return "0x" + key.lower()


def pair_wallets(keys: List[str], proxies: List[str], shuffle: bool = False, seed=None) -> List[WalletEntry]:
    """Pair key i with proxy i modulo the proxy count.

    Shuffling happens after pairing, so a wallet always keeps its proxy.
    """
    entries = [
        WalletEntry(
            index=index,
            private_key=parse_private_key(key),
            proxy=proxies[index % len(proxies)] if proxies else None,
        )
        for index, key in enumerate(keys)
    ]
    if shuffle:
        random.Random(seed).shuffle(entries)
    return entries
