"""Shared test fixtures and in-memory fakes for the RPC client and HTTP session."""

import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Sequence

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from gateway.errors import AccountNotFoundError
from metadata_resolver import MetadataResolver
from onchain.account_decoder import ListingRecord, MarketplaceConfig, OnChainMetadata
from onchain.addresses import derive_marketplace_addresses, find_listing_address, find_metadata_address
from onchain.layouts import (
    LISTING_DISCRIMINATOR,
    LISTING_LAYOUT,
    MARKETPLACE_DISCRIMINATOR,
    MARKETPLACE_LAYOUT,
    METADATA_LAYOUT,
)
from settings import MarketplaceSettings

PROGRAM_ID = Pubkey.from_string("6MAZYi6WaiB8ztJuJjoAVkbQDxZxfuQuJR3KfrfZncih")
MARKETPLACE_NAME = "NFT-Nexus"


def key(n: int) -> Pubkey:
    return Pubkey.from_bytes(bytes([n]) * 32)


def marketplace_bytes(authority: Pubkey, fee_bps: int = 250, name: str = MARKETPLACE_NAME) -> bytes:
    addrs = derive_marketplace_addresses(name, PROGRAM_ID)
    return MARKETPLACE_LAYOUT.build({
        "discriminator": MARKETPLACE_DISCRIMINATOR,
        "authority": bytes(authority),
        "fee_bps": fee_bps,
        "marketplace_bump": addrs.marketplace_bump,
        "treasury": bytes(addrs.treasury),
        "treasury_bump": addrs.treasury_bump,
        "name": name,
    })


def listing_bytes(maker: Pubkey, nft_mint: Pubkey, price: int, bump: int = 254) -> bytes:
    return LISTING_LAYOUT.build({
        "discriminator": LISTING_DISCRIMINATOR,
        "maker": bytes(maker),
        "nft_mint": bytes(nft_mint),
        "price": price,
        "metadata": bytes(find_metadata_address(nft_mint)[0]),
        "bump": bump,
    })


def metadata_bytes(mint: Pubkey, name: str, symbol: str, uri: str, pad: bool = True) -> bytes:
    def padded(value: str, width: int) -> str:
        return value + "\x00" * (width - len(value)) if pad else value

    return METADATA_LAYOUT.build({
        "update_authority": bytes(key(200)),
        "mint": bytes(mint),
        "name": padded(name, 32),
        "symbol": padded(symbol, 10),
        "uri": padded(uri, 200),
        "seller_fee_basis_points": 500,
        "has_creators": False,
        "creators": None,
        "primary_sale_happened": False,
        "is_mutable": True,
    })


def on_chain_metadata(mint: Pubkey, name: str = "", uri: str = "") -> OnChainMetadata:
    return OnChainMetadata(update_authority=key(200), mint=mint, name=name, symbol="TNFT", uri=uri)


def listing_record(maker: Pubkey, nft_mint: Pubkey, price_lamports: int) -> ListingRecord:
    addrs = derive_marketplace_addresses(MARKETPLACE_NAME, PROGRAM_ID)
    address, bump = find_listing_address(addrs.marketplace, nft_mint, PROGRAM_ID)
    return ListingRecord(
        maker=maker,
        nft_mint=nft_mint,
        price_lamports=price_lamports,
        metadata=find_metadata_address(nft_mint)[0],
        bump=bump,
        address=address,
    )


class FakeResponse:
    def __init__(self, status: int, body: Any):
        self.status = status
        self.body = body

    async def json(self, content_type=None):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession; unknown URLs answer 404."""

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes = routes or {}
        self.requested: List[str] = []

    def get(self, url: str, timeout=None):
        self.requested.append(url)
        status, body = self.routes.get(url, (404, None))
        return FakeResponse(status, body)


class FakeMarketplaceClient:
    """In-memory program client used by reconciler, gateway and API tests."""

    def __init__(self, authority: Optional[Pubkey] = None):
        self.addresses = derive_marketplace_addresses(MARKETPLACE_NAME, PROGRAM_ID)
        self.config: Optional[MarketplaceConfig] = MarketplaceConfig(
            authority=authority or key(1),
            fee_basis_points=250,
            treasury=self.addresses.treasury,
            name=MARKETPLACE_NAME,
            marketplace_bump=self.addresses.marketplace_bump,
            treasury_bump=self.addresses.treasury_bump,
        )
        self.listings: List[ListingRecord] = []
        self.metadata: Dict[str, OnChainMetadata] = {}
        self.metadata_reads: List[List[Pubkey]] = []
        self.calls: List[tuple] = []
        self.listings_gate: Optional[asyncio.Event] = None
        self.marketplace_failures: List[Exception] = []
        self.send_error: Optional[Exception] = None

    @property
    def marketplace_address(self) -> Pubkey:
        return self.addresses.marketplace

    async def fetch_marketplace(self) -> MarketplaceConfig:
        if self.marketplace_failures:
            raise self.marketplace_failures.pop(0)
        if self.config is None:
            raise AccountNotFoundError(self.addresses.marketplace)
        return self.config

    async def fetch_all_listings(self) -> List[ListingRecord]:
        if self.listings_gate is not None:
            await self.listings_gate.wait()
        return list(self.listings)

    async def fetch_metadata_many(self, nft_mints: Sequence[Pubkey]) -> List[Optional[OnChainMetadata]]:
        self.metadata_reads.append(list(nft_mints))
        return [self.metadata.get(str(mint)) for mint in nft_mints]

    async def _record(self, name: str, *args) -> str:
        self.calls.append((name,) + args)
        if self.send_error is not None:
            raise self.send_error
        return f"sig-{name}-{len(self.calls)}"

    async def initialize_marketplace(self, signer: Keypair, name: str, fee_bps: int) -> str:
        return await self._record("initialize_marketplace", name, fee_bps)

    async def list_nft(self, signer: Keypair, nft_mint: Pubkey, price_lamports: int) -> str:
        return await self._record("list_nft", nft_mint, price_lamports)

    async def purchase_nft(self, signer: Keypair, nft_mint: Pubkey, seller: Pubkey) -> str:
        return await self._record("purchase_nft", nft_mint, seller)

    async def delist_nft(self, signer: Keypair, nft_mint: Pubkey) -> str:
        return await self._record("delist_nft", nft_mint)

    async def update_fee(self, signer: Keypair, fee_bps: int) -> str:
        return await self._record("update_fee", fee_bps)


def document(name: str, image: str = "ipfs://bafyimg/1.png") -> Dict[str, Any]:
    return {"name": name, "description": f"{name} description", "image": image, "attributes": []}


@pytest.fixture
def fake_client() -> FakeMarketplaceClient:
    return FakeMarketplaceClient()


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def resolver(fake_client, fake_session) -> MetadataResolver:
    return MetadataResolver(fake_client, batch_delay_ms=0, session=fake_session)


@pytest.fixture
def settings(tmp_path) -> MarketplaceSettings:
    return MarketplaceSettings(rate_limit_db=str(tmp_path / "rate_limits.db"))


def rpc_account(data: bytes, owner: Pubkey = PROGRAM_ID, lamports: int = 2_000_000) -> SimpleNamespace:
    return SimpleNamespace(data=data, owner=owner, lamports=lamports)
