from __future__ import annotations

from typing import List

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from onchain.addresses import (
    METADATA_PROGRAM_ID,
    derive_listing_addresses,
    derive_marketplace_addresses,
)
from onchain.layouts import (
    INITIALIZE_MARKETPLACE_ARGS,
    LIST_NFT_ARGS,
    UPDATE_FEE_ARGS,
    instruction_discriminator,
)

INITIALIZE_MARKETPLACE_IX = instruction_discriminator("initialize_marketplace")
LIST_NFT_IX = instruction_discriminator("list_nft")
PURCHASE_NFT_IX = instruction_discriminator("purchase_nft")
DELIST_NFT_IX = instruction_discriminator("delist_nft")
UPDATE_FEE_IX = instruction_discriminator("update_fee")


def _meta(pubkey: Pubkey, is_signer: bool = False, is_writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=is_signer, is_writable=is_writable)


def build_initialize_marketplace_ix(
    program_id: Pubkey,
    admin: Pubkey,
    name: str,
    fee_bps: int,
) -> Instruction:
    addrs = derive_marketplace_addresses(name, program_id)
    data = INITIALIZE_MARKETPLACE_IX + INITIALIZE_MARKETPLACE_ARGS.build({"name": name, "fee": fee_bps})
    accounts = [
        _meta(admin, is_signer=True, is_writable=True),
        _meta(addrs.marketplace, is_writable=True),
        _meta(addrs.treasury, is_writable=True),
        _meta(SYSTEM_PROGRAM_ID),
    ]
    return Instruction(program_id=program_id, data=data, accounts=accounts)


def _escrow_accounts(
    program_id: Pubkey,
    marketplace_name: str,
    nft_mint: Pubkey,
) -> tuple:
    market = derive_marketplace_addresses(marketplace_name, program_id)
    listing = derive_listing_addresses(market.marketplace, nft_mint, program_id)
    return market, listing


def _token_program_tail() -> List[AccountMeta]:
    return [
        _meta(METADATA_PROGRAM_ID),
        _meta(ASSOCIATED_TOKEN_PROGRAM_ID),
        _meta(SYSTEM_PROGRAM_ID),
        _meta(TOKEN_PROGRAM_ID),
    ]


def build_list_nft_ix(
    program_id: Pubkey,
    marketplace_name: str,
    maker: Pubkey,
    nft_mint: Pubkey,
    price_lamports: int,
) -> Instruction:
    market, listing = _escrow_accounts(program_id, marketplace_name, nft_mint)
    data = LIST_NFT_IX + LIST_NFT_ARGS.build({"price": price_lamports})
    accounts = [
        _meta(maker, is_signer=True, is_writable=True),
        _meta(market.marketplace),
        _meta(nft_mint),
        _meta(get_associated_token_address(maker, nft_mint), is_writable=True),
        _meta(listing.vault, is_writable=True),
        _meta(listing.listing, is_writable=True),
        _meta(listing.metadata),
        _meta(listing.master_edition),
    ] + _token_program_tail()
    return Instruction(program_id=program_id, data=data, accounts=accounts)


def build_purchase_nft_ix(
    program_id: Pubkey,
    marketplace_name: str,
    taker: Pubkey,
    seller: Pubkey,
    nft_mint: Pubkey,
) -> Instruction:
    market, listing = _escrow_accounts(program_id, marketplace_name, nft_mint)
    accounts = [
        _meta(taker, is_signer=True, is_writable=True),
        _meta(seller, is_writable=True),
        _meta(market.marketplace),
        _meta(get_associated_token_address(taker, nft_mint), is_writable=True),
        _meta(listing.vault, is_writable=True),
        _meta(listing.listing, is_writable=True),
        _meta(market.treasury, is_writable=True),
        _meta(nft_mint),
        _meta(listing.metadata),
        _meta(listing.master_edition),
    ] + _token_program_tail()
    return Instruction(program_id=program_id, data=PURCHASE_NFT_IX, accounts=accounts)


def build_delist_nft_ix(
    program_id: Pubkey,
    marketplace_name: str,
    maker: Pubkey,
    nft_mint: Pubkey,
) -> Instruction:
    market, listing = _escrow_accounts(program_id, marketplace_name, nft_mint)
    accounts = [
        _meta(maker, is_signer=True, is_writable=True),
        _meta(market.marketplace),
        _meta(nft_mint),
        _meta(get_associated_token_address(maker, nft_mint), is_writable=True),
        _meta(listing.vault, is_writable=True),
        _meta(listing.listing, is_writable=True),
        _meta(listing.metadata),
        _meta(listing.master_edition),
    ] + _token_program_tail()
    return Instruction(program_id=program_id, data=DELIST_NFT_IX, accounts=accounts)


def build_update_fee_ix(
    program_id: Pubkey,
    marketplace_name: str,
    admin: Pubkey,
    new_fee_bps: int,
) -> Instruction:
    market = derive_marketplace_addresses(marketplace_name, program_id)
    data = UPDATE_FEE_IX + UPDATE_FEE_ARGS.build({"new_fee": new_fee_bps})
    accounts = [
        _meta(admin, is_signer=True, is_writable=True),
        _meta(market.marketplace, is_writable=True),
    ]
    return Instruction(program_id=program_id, data=data, accounts=accounts)
