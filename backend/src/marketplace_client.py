"""
Marketplace program client: account reads plus signed instruction sends.

Reads go through ``AccountFetcher`` and the typed decoders; sends compile a
v0 message with a compute budget prefix, sign with the connected keypair and
wait for confirmation at the configured commitment.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.types import TxOpts
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from gateway.errors import (
    PROGRAM_ERROR_MESSAGES,
    AccountNotFoundError,
    InsufficientBalanceError,
    TransactionError,
)
from onchain.account_decoder import (
    AccountDecodeError,
    DecodeError,
    ListingRecord,
    MarketplaceConfig,
    OnChainMetadata,
    decode_listing,
    decode_marketplace,
    decode_metadata,
)
from onchain.account_fetcher import AccountFetcher, AccountNotFound
from onchain.addresses import (
    derive_marketplace_addresses,
    find_listing_address,
    find_metadata_address,
)
from onchain.ix_builder import (
    build_delist_nft_ix,
    build_initialize_marketplace_ix,
    build_list_nft_ix,
    build_purchase_nft_ix,
    build_update_fee_ix,
)
from onchain.layouts import LISTING_DISCRIMINATOR
from settings import MarketplaceSettings

logger = logging.getLogger(__name__)

_CUSTOM_CODE_RE = re.compile(r"Custom\((\d+)\)")


class MarketplaceClient:
    def __init__(self, rpc: AsyncClient, settings: MarketplaceSettings):
        self.rpc = rpc
        self.settings = settings
        self.program_id = settings.program_id
        self.commitment = Commitment(settings.commitment)
        self.fetcher = AccountFetcher(rpc, self.commitment)
        self.addresses = derive_marketplace_addresses(settings.marketplace_name, self.program_id)

    @property
    def marketplace_address(self) -> Pubkey:
        return self.addresses.marketplace

    # ---- reads ----

    async def fetch_marketplace(self) -> MarketplaceConfig:
        lookup = await self.fetcher.fetch(self.addresses.marketplace)
        if isinstance(lookup, AccountNotFound):
            raise AccountNotFoundError(self.addresses.marketplace, "marketplace")
        decoded = decode_marketplace(lookup.data)
        if isinstance(decoded, DecodeError):
            raise AccountDecodeError(f"marketplace {self.addresses.marketplace}: {decoded.reason}")
        return decoded.value

    async def fetch_listing(self, nft_mint: Pubkey) -> Optional[ListingRecord]:
        listing_address, _ = find_listing_address(self.addresses.marketplace, nft_mint, self.program_id)
        lookup = await self.fetcher.fetch(listing_address)
        if isinstance(lookup, AccountNotFound):
            return None
        decoded = decode_listing(lookup.data, address=listing_address)
        if isinstance(decoded, DecodeError):
            logger.warning(f"[Client] Listing {listing_address} undecodable: {decoded.reason}")
            return None
        return decoded.value

    async def fetch_all_listings(self) -> List[ListingRecord]:
        """
        All listing accounts of this marketplace. Accounts that fail to decode,
        or whose address is not the listing PDA for (marketplace, mint), are skipped.
        """
        accounts = await self.fetcher.fetch_program_accounts(self.program_id, discriminator=LISTING_DISCRIMINATOR)
        listings: List[ListingRecord] = []
        for address, data in accounts:
            decoded = decode_listing(data, address=address)
            if isinstance(decoded, DecodeError):
                logger.warning(f"[Client] Skipping listing {address}: {decoded.reason}")
                continue
            record = decoded.value
            expected, _ = find_listing_address(self.addresses.marketplace, record.nft_mint, self.program_id)
            if expected != address:
                continue
            listings.append(record)
        logger.info(f"[Client] {len(listings)} listings under {self.addresses.marketplace}")
        return listings

    async def fetch_metadata_many(self, nft_mints: Sequence[Pubkey]) -> List[Optional[OnChainMetadata]]:
        """
        Metaplex records for each mint in input order, read with getMultipleAccounts.
        A missing or undecodable metadata account comes back as None.
        """
        addresses = [find_metadata_address(mint)[0] for mint in nft_mints]
        records: List[Optional[OnChainMetadata]] = []
        for mint, lookup in zip(nft_mints, await self.fetcher.fetch_many(addresses)):
            if isinstance(lookup, AccountNotFound):
                records.append(None)
                continue
            decoded = decode_metadata(lookup.data)
            if isinstance(decoded, DecodeError):
                logger.warning(f"[Client] Metadata for {mint} undecodable: {decoded.reason}")
                records.append(None)
                continue
            records.append(decoded.value)
        return records

    async def get_balance(self, owner: Pubkey) -> int:
        resp = await self.rpc.get_balance(owner, commitment=self.commitment)
        return int(resp.value)

    # ---- sends ----

    def _compute_budget_ixs(self) -> List[Instruction]:
        ixs: List[Instruction] = []
        if self.settings.compute_unit_limit:
            ixs.append(set_compute_unit_limit(self.settings.compute_unit_limit))
        if self.settings.compute_unit_price:
            ixs.append(set_compute_unit_price(self.settings.compute_unit_price))
        return ixs

    async def _send(self, signer: Keypair, ixs: List[Instruction], label: str) -> str:
        latest = await self.rpc.get_latest_blockhash(commitment=self.commitment)
        msg = MessageV0.try_compile(
            payer=signer.pubkey(),
            instructions=self._compute_budget_ixs() + ixs,
            address_lookup_table_accounts=[],
            recent_blockhash=latest.value.blockhash,
        )
        tx = VersionedTransaction(msg, [signer])
        resp = await self.rpc.send_raw_transaction(
            bytes(tx),
            opts=TxOpts(
                skip_preflight=self.settings.skip_preflight,
                preflight_commitment=self.commitment,
                max_retries=self.settings.max_retries,
            ),
        )
        signature = resp.value
        logger.info(f"[Client] {label} sent: {signature}")

        confirmation = await self.rpc.confirm_transaction(
            signature,
            commitment=self.commitment,
            last_valid_block_height=latest.value.last_valid_block_height,
        )
        status = confirmation.value[0] if confirmation.value else None
        if status is not None and status.err is not None:
            raise self._transaction_failure(label, str(signature), status.err)
        logger.info(f"[Client] {label} confirmed: {signature}")
        return str(signature)

    @staticmethod
    def _transaction_failure(label: str, signature: str, err) -> TransactionError:
        text = str(err)
        match = _CUSTOM_CODE_RE.search(text)
        code = int(match.group(1)) if match else None
        if code is not None and code in PROGRAM_ERROR_MESSAGES:
            return TransactionError(PROGRAM_ERROR_MESSAGES[code], signature=signature, code=code)
        return TransactionError(f"{label} failed on-chain: {text}", signature=signature, code=code)

    async def initialize_marketplace(self, signer: Keypair, name: str, fee_bps: int) -> str:
        ix = build_initialize_marketplace_ix(self.program_id, signer.pubkey(), name, fee_bps)
        return await self._send(signer, [ix], "initialize_marketplace")

    async def list_nft(self, signer: Keypair, nft_mint: Pubkey, price_lamports: int) -> str:
        ix = build_list_nft_ix(
            self.program_id, self.settings.marketplace_name, signer.pubkey(), nft_mint, price_lamports
        )
        return await self._send(signer, [ix], "list_nft")

    async def purchase_nft(self, signer: Keypair, nft_mint: Pubkey, seller: Pubkey) -> str:
        listing = await self.fetch_listing(nft_mint)
        if listing is None:
            listing_address, _ = find_listing_address(self.addresses.marketplace, nft_mint, self.program_id)
            raise AccountNotFoundError(listing_address, "listing")
        if listing.maker != seller:
            raise TransactionError(f"Seller {seller} does not match the listing maker {listing.maker}")

        balance = await self.get_balance(signer.pubkey())
        if balance < listing.price_lamports:
            raise InsufficientBalanceError(required=listing.price_lamports, available=balance)

        ix = build_purchase_nft_ix(
            self.program_id, self.settings.marketplace_name, signer.pubkey(), seller, nft_mint
        )
        return await self._send(signer, [ix], "purchase_nft")

    async def delist_nft(self, signer: Keypair, nft_mint: Pubkey) -> str:
        ix = build_delist_nft_ix(self.program_id, self.settings.marketplace_name, signer.pubkey(), nft_mint)
        return await self._send(signer, [ix], "delist_nft")

    async def update_fee(self, signer: Keypair, fee_bps: int) -> str:
        ix = build_update_fee_ix(self.program_id, self.settings.marketplace_name, signer.pubkey(), fee_bps)
        return await self._send(signer, [ix], "update_fee")
