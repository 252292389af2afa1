"""Tests for view model builders, derived statistics and listing search."""

import pytest

from conftest import MARKETPLACE_NAME, key, listing_record, on_chain_metadata
from gateway.errors import ValidationError
from metadata_resolver import OffChainMetadata, ResolvedMetadata
from onchain.account_decoder import Creator, MarketplaceConfig
from view_models import (
    PLACEHOLDER_DESCRIPTION,
    NFTMetadataView,
    OwnedNFT,
    build_listing_view,
    build_marketplace_view,
    build_metadata_view,
    build_portfolio,
    compute_stats,
    filter_listings,
    placeholder_metadata,
)

LAMPORTS = 1_000_000_000


def listing_view(seller, mint, price_sol):
    record = listing_record(seller, mint, price_sol * LAMPORTS)
    return build_listing_view(record, "market", placeholder_metadata(str(mint)), created_at=1)


class TestMetadataView:
    def test_document_fields_win(self) -> None:
        on_chain = on_chain_metadata(key(4), "On-chain", "https://x.test/4.json")
        on_chain.creators = [Creator(address=key(9), verified=True, share=100)]
        doc = OffChainMetadata(name="Pretty", description="desc", image="https://img.test/4.png")
        view = build_metadata_view(str(key(4)), ResolvedMetadata(on_chain, doc))
        assert view.name == "Pretty"
        assert view.symbol == "TNFT"
        assert view.creators == [{"address": str(key(9)), "verified": True, "share": 100}]
        assert view.resolved

    def test_missing_document_gives_placeholder(self) -> None:
        on_chain = on_chain_metadata(key(4), "", "https://x.test/4.json")
        view = build_metadata_view(str(key(4)), ResolvedMetadata(on_chain))
        assert view.name == f"NFT {str(key(4))[:8]}"
        assert view.description == PLACEHOLDER_DESCRIPTION
        assert view.uri == "https://x.test/4.json"
        assert not view.resolved

    def test_placeholder_prefers_on_chain_name(self) -> None:
        assert placeholder_metadata(str(key(4)), "Named").name == "Named"


class TestListingView:
    def test_converts_lamports(self) -> None:
        record = listing_record(key(3), key(4), 1_500_000_000)
        view = build_listing_view(record, "market", placeholder_metadata(str(key(4))), created_at=42)
        assert view.price == 1.5
        assert view.price_lamports == 1_500_000_000
        assert view.id == str(record.address)
        assert view.seller == str(key(3))
        assert view.to_dict()["metadata"]["resolved"] is False


class TestStats:
    def test_stats_over_listings(self) -> None:
        listings = [listing_view(key(3), key(10), 1), listing_view(key(3), key(11), 2), listing_view(key(5), key(12), 3)]
        stats = compute_stats(listings)
        assert stats.total_listings == 3
        assert stats.floor_price == 1
        assert stats.listed_value == 6
        assert stats.average_price == 2
        assert stats.unique_owners == 2
        assert stats.total_sales == 0

    def test_empty_stats_are_zero(self) -> None:
        stats = compute_stats([])
        assert stats.total_listings == 0
        assert stats.floor_price == 0
        assert stats.average_price == 0

    def test_marketplace_view(self) -> None:
        config = MarketplaceConfig(
            authority=key(1),
            fee_basis_points=250,
            treasury=key(2),
            name=MARKETPLACE_NAME,
            marketplace_bump=255,
            treasury_bump=254,
        )
        stats = compute_stats([listing_view(key(3), key(10), 2)])
        view = build_marketplace_view("market", config, stats)
        assert view.fee_percent == 2.5
        assert view.total_listings == 1
        assert view.listed_value == 2


class TestPortfolio:
    def test_only_own_listings_counted(self) -> None:
        mine, theirs = listing_view(key(3), key(10), 2), listing_view(key(5), key(11), 4)
        owned = [OwnedNFT(nft_mint="m", token_account="t", metadata=placeholder_metadata("m"))]
        portfolio = build_portfolio(str(key(3)), [mine, theirs], owned)
        assert portfolio.listed_nfts == [mine]
        assert portfolio.total_value == 2
        assert portfolio.total_listings == 1
        assert len(portfolio.owned_nfts) == 1
        assert not portfolio.degraded

    def test_missing_owned_list_is_degraded(self) -> None:
        portfolio = build_portfolio(str(key(3)), [])
        assert portfolio.degraded
        assert portfolio.owned_nfts == []


def searchable(n, name, price_lamports, created_at, seller=None, description="", attributes=None):
    metadata = NFTMetadataView(name=name, description=description, image="", attributes=attributes or [])
    record = listing_record(seller or key(3), key(n), price_lamports)
    return build_listing_view(record, "market", metadata, created_at=created_at)


@pytest.fixture
def catalogue():
    return [
        searchable(10, "Red Dragon", 3 * LAMPORTS, 100, description="fire breathing",
                   attributes=[{"trait_type": "Rarity", "value": "Epic"}]),
        searchable(11, "blue whale", 1 * LAMPORTS, 300, seller=key(5),
                   attributes=[{"trait_type": "Rarity", "value": "Common"}]),
        searchable(12, "Green Dragon", 2 * LAMPORTS, 200,
                   attributes=[{"trait_type": "Rarity", "value": "Epic"}, {"trait_type": "Level", "value": 7}]),
    ]


def names(listings):
    return [listing.metadata.name for listing in listings]


class TestFilterListings:
    def test_defaults_keep_everything_newest_first(self, catalogue) -> None:
        assert names(filter_listings(catalogue)) == ["blue whale", "Green Dragon", "Red Dragon"]

    def test_query_matches_name_description_and_seller(self, catalogue) -> None:
        assert names(filter_listings(catalogue, query="DRAGON", sort_by="oldest")) == ["Red Dragon", "Green Dragon"]
        assert names(filter_listings(catalogue, query="breathing")) == ["Red Dragon"]
        assert names(filter_listings(catalogue, query=str(key(5))[:12])) == ["blue whale"]

    def test_price_bounds_are_inclusive(self, catalogue) -> None:
        assert names(filter_listings(catalogue, min_price=2, max_price=3, sort_by="price_asc")) == [
            "Green Dragon",
            "Red Dragon",
        ]

    def test_attribute_filters(self, catalogue) -> None:
        assert names(filter_listings(catalogue, attributes={"Rarity": ["Epic"]}, sort_by="name_asc")) == [
            "Green Dragon",
            "Red Dragon",
        ]
        assert names(filter_listings(catalogue, attributes={"Rarity": ["Epic"], "Level": ["7"]})) == ["Green Dragon"]
        assert len(filter_listings(catalogue, attributes={"Rarity": []})) == 3

    def test_sort_orders(self, catalogue) -> None:
        assert names(filter_listings(catalogue, sort_by="price_desc")) == ["Red Dragon", "Green Dragon", "blue whale"]
        assert names(filter_listings(catalogue, sort_by="name_desc")) == ["Red Dragon", "Green Dragon", "blue whale"]

    def test_unknown_sort_rejected(self, catalogue) -> None:
        with pytest.raises(ValidationError) as exc:
            filter_listings(catalogue, sort_by="rarity")
        assert exc.value.field == "sort_by"
