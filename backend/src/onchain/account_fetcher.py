"""
Raw account reads. A missing account is a normal result (``AccountNotFound``),
not an exception; RPC/transport failures propagate to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import base58
from solana.rpc.commitment import Commitment
from solders.pubkey import Pubkey
from solders.rpc.filter import Memcmp

logger = logging.getLogger(__name__)

# getMultipleAccounts hard limit
MAX_MULTIPLE_ACCOUNTS = 100


@dataclass(frozen=True)
class AccountFound:
    address: Pubkey
    data: bytes
    owner: Pubkey
    lamports: int


@dataclass(frozen=True)
class AccountNotFound:
    address: Pubkey


AccountLookup = Union[AccountFound, AccountNotFound]


class AccountFetcher:
    def __init__(self, rpc, commitment: Commitment = Commitment("confirmed")):
        self.rpc = rpc
        self.commitment = commitment

    async def fetch(self, address: Pubkey) -> AccountLookup:
        resp = await self.rpc.get_account_info(address, commitment=self.commitment, encoding="base64")
        info = resp.value
        if info is None:
            return AccountNotFound(address)
        return AccountFound(address=address, data=bytes(info.data), owner=info.owner, lamports=info.lamports)

    async def fetch_many(self, addresses: Sequence[Pubkey]) -> List[AccountLookup]:
        """
        Batch lookup preserving input order; chunks at the RPC's 100-account limit.
        """
        results: List[AccountLookup] = []
        for start in range(0, len(addresses), MAX_MULTIPLE_ACCOUNTS):
            chunk = list(addresses[start:start + MAX_MULTIPLE_ACCOUNTS])
            resp = await self.rpc.get_multiple_accounts(chunk, commitment=self.commitment, encoding="base64")
            for address, info in zip(chunk, resp.value):
                if info is None:
                    results.append(AccountNotFound(address))
                else:
                    results.append(
                        AccountFound(address=address, data=bytes(info.data), owner=info.owner, lamports=info.lamports)
                    )
        return results

    async def fetch_program_accounts(
        self,
        program_id: Pubkey,
        discriminator: Optional[bytes] = None,
    ) -> List[Tuple[Pubkey, bytes]]:
        filters: List[Memcmp] = []
        if discriminator is not None:
            filters.append(Memcmp(offset=0, bytes_=base58.b58encode(discriminator).decode()))
        resp = await self.rpc.get_program_accounts(
            program_id,
            commitment=self.commitment,
            encoding="base64",
            filters=filters or None,
        )
        accounts = [(keyed.pubkey, bytes(keyed.account.data)) for keyed in resp.value]
        logger.debug(f"[Fetcher] {len(accounts)} accounts under {program_id}")
        return accounts
