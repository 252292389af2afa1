from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Optional

from base58 import b58decode
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from gateway.errors import WalletConnectionError

logger = logging.getLogger(__name__)


def load_keypair(path: str) -> Keypair:
    """
    Load a signing keypair from disk.

    Accepts the Solana CLI format (JSON array of 64 ints) as well as a file
    holding a base58 or hex encoded 64-byte secret key.
    """
    expanded = Path(path).expanduser()
    if not expanded.exists():
        raise WalletConnectionError(f"Keypair file not found: {expanded}")

    content = expanded.read_text(encoding="utf-8").strip()
    try:
        if content.startswith("["):
            secret = bytes(json.loads(content))
        else:
            try:
                secret = b58decode(content)
            except ValueError:
                secret = bytes.fromhex(content)
        if len(secret) != 64:
            raise ValueError(f"expected a 64-byte secret key, got {len(secret)} bytes")
        return Keypair.from_bytes(secret)
    except (json.JSONDecodeError, ValueError, TypeError) as e:
        raise WalletConnectionError(f"Invalid keypair file format: {e}") from e


class WalletSession:
    """The currently connected signing wallet, if any."""

    def __init__(self, keypair: Optional[Keypair] = None):
        self._keypair = keypair
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._keypair is not None

    @property
    def pubkey(self) -> Optional[Pubkey]:
        keypair = self._keypair
        return keypair.pubkey() if keypair else None

    def connect(self, keypair: Keypair) -> Pubkey:
        with self._lock:
            self._keypair = keypair
        logger.info(f"[Wallet] Connected {keypair.pubkey()}")
        return keypair.pubkey()

    def disconnect(self):
        with self._lock:
            previous = self._keypair
            self._keypair = None
        if previous is not None:
            logger.info(f"[Wallet] Disconnected {previous.pubkey()}")

    def require_signer(self) -> Keypair:
        keypair = self._keypair
        if keypair is None:
            raise WalletConnectionError()
        return keypair
