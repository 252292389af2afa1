from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from gateway.errors import ValidationError
from metadata_resolver import ResolvedMetadata
from onchain.account_decoder import ListingRecord, MarketplaceConfig
from onchain.units import lamports_to_sol

PLACEHOLDER_DESCRIPTION = "NFT metadata could not be loaded"

SORT_ORDERS = ("newest", "oldest", "price_asc", "price_desc", "name_asc", "name_desc")


@dataclass
class NFTMetadataView:
    name: str
    description: str
    image: str
    symbol: str = ""
    uri: str = ""
    attributes: List[Dict[str, Any]] = field(default_factory=list)
    creators: Optional[List[Dict[str, Any]]] = None
    seller_fee_basis_points: int = 0
    external_url: Optional[str] = None
    animation_url: Optional[str] = None
    resolved: bool = True


@dataclass
class NFTListing:
    id: str
    marketplace: str
    seller: str
    nft_mint: str
    price: float
    price_lamports: int
    metadata: NFTMetadataView
    created_at: int  # epoch ms the listing was first observed

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OwnedNFT:
    nft_mint: str
    token_account: str
    metadata: NFTMetadataView

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MarketplaceStats:
    total_listings: int = 0
    listed_value: float = 0.0  # sum of live listing prices, not traded volume
    average_price: float = 0.0
    unique_owners: int = 0
    floor_price: float = 0.0
    total_sales: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MarketplaceView:
    address: str
    authority: str
    name: str
    fee_basis_points: int
    fee_percent: float
    treasury: str
    total_listings: int = 0
    total_sales: int = 0
    listed_value: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UserPortfolio:
    owner: str
    owned_nfts: List[OwnedNFT] = field(default_factory=list)
    listed_nfts: List[NFTListing] = field(default_factory=list)
    total_value: float = 0.0
    total_listings: int = 0
    degraded: bool = False  # wallet NFT discovery failed; only listings shown

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def placeholder_metadata(mint: str, on_chain_name: str = "") -> NFTMetadataView:
    return NFTMetadataView(
        name=on_chain_name or f"NFT {mint[:8]}",
        description=PLACEHOLDER_DESCRIPTION,
        image="",
        resolved=False,
    )


def build_metadata_view(mint: str, resolved: ResolvedMetadata) -> NFTMetadataView:
    on_chain = resolved.on_chain
    creators = None
    if on_chain.creators is not None:
        creators = [
            {"address": str(c.address), "verified": c.verified, "share": c.share} for c in on_chain.creators
        ]
    document = resolved.document
    if document is None:
        view = placeholder_metadata(mint, on_chain.name)
        view.symbol = on_chain.symbol
        view.uri = on_chain.uri
        view.creators = creators
        view.seller_fee_basis_points = on_chain.seller_fee_basis_points
        return view
    return NFTMetadataView(
        name=document.name,
        description=document.description,
        image=document.image,
        symbol=on_chain.symbol,
        uri=on_chain.uri,
        attributes=document.attributes,
        creators=creators,
        seller_fee_basis_points=on_chain.seller_fee_basis_points,
        external_url=document.external_url,
        animation_url=document.animation_url,
    )


def build_listing_view(
    record: ListingRecord,
    marketplace: str,
    metadata: NFTMetadataView,
    created_at: int,
) -> NFTListing:
    return NFTListing(
        id=str(record.address) if record.address is not None else "",
        marketplace=marketplace,
        seller=str(record.maker),
        nft_mint=str(record.nft_mint),
        price=lamports_to_sol(record.price_lamports),
        price_lamports=record.price_lamports,
        metadata=metadata,
        created_at=created_at,
    )


def compute_stats(listings: Sequence[NFTListing]) -> MarketplaceStats:
    if not listings:
        return MarketplaceStats()
    prices = [listing.price for listing in listings]
    listed_value = sum(prices)
    return MarketplaceStats(
        total_listings=len(listings),
        listed_value=listed_value,
        average_price=listed_value / len(listings),
        unique_owners=len({listing.seller for listing in listings}),
        floor_price=min(prices),
        total_sales=0,
    )


def build_marketplace_view(address: str, config: MarketplaceConfig, stats: MarketplaceStats) -> MarketplaceView:
    return MarketplaceView(
        address=address,
        authority=str(config.authority),
        name=config.name,
        fee_basis_points=config.fee_basis_points,
        fee_percent=config.fee_basis_points / 100,
        treasury=str(config.treasury),
        total_listings=stats.total_listings,
        total_sales=stats.total_sales,
        listed_value=stats.listed_value,
    )


def build_portfolio(
    owner: str,
    listings: Sequence[NFTListing],
    owned: Optional[Sequence[OwnedNFT]] = None,
) -> UserPortfolio:
    listed = [listing for listing in listings if listing.seller == owner]
    return UserPortfolio(
        owner=owner,
        owned_nfts=list(owned or []),
        listed_nfts=listed,
        total_value=sum(listing.price for listing in listed),
        total_listings=len(listed),
        degraded=owned is None,
    )


def _attribute_value(metadata: NFTMetadataView, trait_type: str) -> Optional[str]:
    for attr in metadata.attributes:
        if attr.get("trait_type") == trait_type:
            return str(attr.get("value"))
    return None


def filter_listings(
    listings: Sequence[NFTListing],
    query: str = "",
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    attributes: Optional[Mapping[str, Sequence[str]]] = None,
    sort_by: str = "newest",
) -> List[NFTListing]:
    """
    Search over the visible listings.

    ``query`` is a case-insensitive substring match against name, description
    and seller. Price bounds are inclusive SOL amounts. ``attributes`` maps a
    trait type to the values it may take; a trait with no values is ignored.
    """
    if sort_by not in SORT_ORDERS:
        raise ValidationError(f"Sort order must be one of: {', '.join(SORT_ORDERS)}", "sort_by")

    needle = query.strip().lower()
    wanted = {trait: {str(v) for v in values} for trait, values in (attributes or {}).items() if values}
    selected: List[NFTListing] = []
    for listing in listings:
        if needle:
            haystack = " ".join((listing.metadata.name, listing.metadata.description, listing.seller)).lower()
            if needle not in haystack:
                continue
        if min_price is not None and listing.price < min_price:
            continue
        if max_price is not None and listing.price > max_price:
            continue
        if any(_attribute_value(listing.metadata, trait) not in values for trait, values in wanted.items()):
            continue
        selected.append(listing)

    if sort_by in ("price_asc", "price_desc"):
        selected.sort(key=lambda listing: listing.price_lamports, reverse=sort_by == "price_desc")
    elif sort_by in ("name_asc", "name_desc"):
        selected.sort(key=lambda listing: listing.metadata.name.casefold(), reverse=sort_by == "name_desc")
    else:
        selected.sort(key=lambda listing: listing.created_at, reverse=sort_by == "newest")
    return selected
