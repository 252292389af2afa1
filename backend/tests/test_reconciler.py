"""Tests for the refresh state machine."""

import asyncio

import pytest
from solders.keypair import Keypair

from conftest import FakeSession, document, key, listing_record, on_chain_metadata
from gateway.errors import ErrorKind
from metadata_resolver import MetadataResolver
from reconciler import Reconciler, RefreshPhase
from view_models import OwnedNFT, placeholder_metadata
from wallet import WalletSession


class FakeUserNFTs:
    def __init__(self, owned=None, error=None):
        self.owned = owned or []
        self.error = error
        self.calls = 0

    async def find_owned(self, owner):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.owned)


async def wait_for_phase(reconciler: Reconciler, phase: RefreshPhase):
    for _ in range(100):
        if reconciler.phase == phase:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"reconciler never reached {phase}")


@pytest.fixture
def populated_client(fake_client):
    seller = key(3)
    for n in (10, 11, 12):
        fake_client.listings.append(listing_record(seller, key(n), n * 100_000_000))
    fake_client.metadata[str(key(10))] = on_chain_metadata(key(10), "Ten", "https://x.test/10.json")
    fake_client.metadata[str(key(11))] = on_chain_metadata(key(11), "Eleven", "https://x.test/11.json")
    return fake_client


def make_reconciler(client, wallet=None, user_nfts=None, **kwargs) -> Reconciler:
    session = FakeSession({"https://x.test/10.json": (200, document("Ten"))})
    resolver = MetadataResolver(client, batch_delay_ms=0, session=session)
    kwargs.setdefault("retry_delay", 0)
    return Reconciler(client, resolver, wallet or WalletSession(), user_nfts=user_nfts, **kwargs)


class TestRefresh:
    async def test_happy_path_builds_view(self, populated_client) -> None:
        reconciler = make_reconciler(populated_client)
        snapshot = await reconciler.refresh()

        assert snapshot.phase == RefreshPhase.READY
        assert snapshot.error is None
        assert snapshot.portfolio is None
        by_mint = {listing.nft_mint: listing for listing in snapshot.listings}
        # key(12) has no metadata account and is hidden
        assert set(by_mint) == {str(key(10)), str(key(11))}
        assert by_mint[str(key(10))].metadata.name == "Ten"
        assert by_mint[str(key(11))].metadata.resolved is False
        assert by_mint[str(key(11))].metadata.name == "Eleven"
        assert snapshot.stats.total_listings == 2
        assert snapshot.marketplace.total_listings == 2
        assert snapshot.marketplace.fee_basis_points == 250

    async def test_created_at_stable_across_refreshes(self, populated_client) -> None:
        reconciler = make_reconciler(populated_client)
        first = await reconciler.refresh()
        await asyncio.sleep(0.01)
        second = await reconciler.refresh()
        assert [l.created_at for l in first.listings] == [l.created_at for l in second.listings]
        assert second.generation == first.generation + 1

    async def test_missing_marketplace_is_error_without_retry(self, fake_client) -> None:
        fake_client.config = None
        reconciler = make_reconciler(fake_client)
        snapshot = await reconciler.refresh()
        assert snapshot.phase == RefreshPhase.ERROR
        assert snapshot.error.kind == ErrorKind.TRANSACTION
        assert snapshot.error.message == "Marketplace not initialized"
        assert snapshot.marketplace is None
        assert snapshot.listings == []

    async def test_transient_step_failure_is_retried(self, populated_client) -> None:
        populated_client.marketplace_failures.append(ConnectionError("blip"))
        reconciler = make_reconciler(populated_client)
        snapshot = await reconciler.refresh()
        assert snapshot.phase == RefreshPhase.READY

    async def test_exhausted_retries_is_error(self, populated_client) -> None:
        populated_client.marketplace_failures.extend(ConnectionError("down") for _ in range(3))
        reconciler = make_reconciler(populated_client)
        snapshot = await reconciler.refresh()
        assert snapshot.phase == RefreshPhase.ERROR
        assert snapshot.error.kind == ErrorKind.NETWORK

    async def test_snapshot_serializes(self, populated_client) -> None:
        reconciler = make_reconciler(populated_client)
        data = (await reconciler.refresh()).to_dict()
        assert data["phase"] == "READY"
        assert len(data["listings"]) == 2


class TestWallet:
    async def test_connected_wallet_gets_portfolio(self, populated_client) -> None:
        owned = [OwnedNFT(nft_mint="m", token_account="t", metadata=placeholder_metadata("m"))]
        user_nfts = FakeUserNFTs(owned=owned)
        reconciler = make_reconciler(populated_client, user_nfts=user_nfts)
        keypair = Keypair()

        snapshot = await reconciler.connect_wallet(keypair)

        assert snapshot.phase == RefreshPhase.READY
        assert snapshot.portfolio.owner == str(keypair.pubkey())
        assert snapshot.portfolio.owned_nfts == owned
        assert not snapshot.portfolio.degraded

    async def test_user_nft_failure_degrades_portfolio(self, populated_client) -> None:
        user_nfts = FakeUserNFTs(error=ConnectionError("token accounts unavailable"))
        reconciler = make_reconciler(populated_client, WalletSession(Keypair()), user_nfts=user_nfts)
        snapshot = await reconciler.refresh()
        assert snapshot.phase == RefreshPhase.READY
        assert snapshot.portfolio.degraded
        assert len(snapshot.listings) == 2

    async def test_disconnect_during_refresh_discards_results(self, populated_client) -> None:
        populated_client.listings_gate = asyncio.Event()
        wallet = WalletSession(Keypair())
        reconciler = make_reconciler(populated_client, wallet, user_nfts=FakeUserNFTs())

        pending = asyncio.ensure_future(reconciler.refresh())
        await wait_for_phase(reconciler, RefreshPhase.FETCHING_LISTINGS)
        reconciler.disconnect_wallet()
        populated_client.listings_gate.set()
        await pending

        snapshot = reconciler.snapshot()
        assert snapshot.phase == RefreshPhase.IDLE
        assert snapshot.listings == []
        assert snapshot.portfolio is None
        assert not wallet.connected

    async def test_newer_refresh_supersedes_older(self, populated_client) -> None:
        populated_client.listings_gate = asyncio.Event()
        reconciler = make_reconciler(populated_client)

        first = asyncio.ensure_future(reconciler.refresh())
        await wait_for_phase(reconciler, RefreshPhase.FETCHING_LISTINGS)
        second = asyncio.ensure_future(reconciler.refresh())
        await asyncio.sleep(0)
        populated_client.listings_gate.set()
        await asyncio.gather(first, second)

        snapshot = reconciler.snapshot()
        assert snapshot.generation == 2
        assert snapshot.phase == RefreshPhase.READY


class TestPeriodic:
    async def test_stops_when_event_set(self, populated_client) -> None:
        reconciler = make_reconciler(populated_client)
        stop = asyncio.Event()
        runner = asyncio.ensure_future(reconciler.run_periodic(0.01, stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(runner, timeout=1)
        assert reconciler.generation >= 2
