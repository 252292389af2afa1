from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple

from solana.rpc.commitment import Commitment
from solana.rpc.types import TokenAccountOpts
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID

from metadata_resolver import MetadataResolver
from view_models import OwnedNFT, build_metadata_view

logger = logging.getLogger(__name__)


def _nft_candidate(keyed: Any) -> Optional[Tuple[str, str]]:
    """(mint, token_account) when the parsed token account holds exactly one indivisible token."""
    try:
        info = keyed.account.data.parsed["info"]
        amount = info["tokenAmount"]
    except (AttributeError, KeyError, TypeError):
        return None
    if amount.get("amount") != "1" or amount.get("decimals") != 0:
        return None
    return info["mint"], str(keyed.pubkey)


class UserNFTFinder:
    """
    Discovers NFTs held by a wallet: token accounts with amount 1 and 0
    decimals whose mint has a Metaplex metadata account and a resolvable document.
    """

    def __init__(self, rpc, resolver: MetadataResolver, commitment: Commitment = Commitment("confirmed")):
        self.rpc = rpc
        self.resolver = resolver
        self.commitment = commitment

    async def find_owned(self, owner: Pubkey) -> List[OwnedNFT]:
        resp = await self.rpc.get_token_accounts_by_owner_json_parsed(
            owner,
            TokenAccountOpts(program_id=TOKEN_PROGRAM_ID),
            commitment=self.commitment,
        )
        candidates = [c for c in (_nft_candidate(keyed) for keyed in resp.value) if c is not None]
        logger.info(f"[NFTs] {owner}: {len(resp.value)} token accounts, {len(candidates)} NFT candidates")
        if not candidates:
            return []

        resolved = await self.resolver.resolve_mints([Pubkey.from_string(mint) for mint, _ in candidates])
        owned: List[OwnedNFT] = []
        for mint, token_account in candidates:
            entry = resolved.get(mint)
            if entry is None or entry.document is None:
                continue
            owned.append(OwnedNFT(nft_mint=mint, token_account=token_account, metadata=build_metadata_view(mint, entry)))
        return owned
