"""
Reconciles on-chain marketplace state into the view model.

A refresh walks FETCHING_MARKETPLACE -> FETCHING_LISTINGS -> RESOLVING_METADATA
-> FETCHING_USER_NFTS (only with a connected wallet) -> READY, or ERROR.
Each refresh gets a generation number; state is only committed while that
generation is still current, so a superseded refresh or a wallet disconnect
can never be overwritten by late results.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from gateway.errors import AccountNotFoundError, MarketplaceError, classify, log_error
from metadata_resolver import MetadataResolver
from view_models import (
    MarketplaceStats,
    MarketplaceView,
    NFTListing,
    UserPortfolio,
    build_listing_view,
    build_marketplace_view,
    build_metadata_view,
    build_portfolio,
    compute_stats,
)
from wallet import WalletSession

logger = logging.getLogger(__name__)


class RefreshPhase(str, Enum):
    IDLE = "IDLE"
    FETCHING_MARKETPLACE = "FETCHING_MARKETPLACE"
    FETCHING_LISTINGS = "FETCHING_LISTINGS"
    RESOLVING_METADATA = "RESOLVING_METADATA"
    FETCHING_USER_NFTS = "FETCHING_USER_NFTS"
    READY = "READY"
    ERROR = "ERROR"


@dataclass
class MarketplaceSnapshot:
    phase: RefreshPhase
    generation: int
    marketplace: Optional[MarketplaceView] = None
    listings: List[NFTListing] = field(default_factory=list)
    stats: MarketplaceStats = field(default_factory=MarketplaceStats)
    portfolio: Optional[UserPortfolio] = None
    error: Optional[MarketplaceError] = None
    updated_at: Optional[int] = None

    def to_dict(self, debug: bool = False) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "generation": self.generation,
            "marketplace": self.marketplace.to_dict() if self.marketplace else None,
            "listings": [listing.to_dict() for listing in self.listings],
            "stats": self.stats.to_dict(),
            "portfolio": self.portfolio.to_dict() if self.portfolio else None,
            "error": self.error.to_payload(debug) if self.error else None,
            "updated_at": self.updated_at,
        }


def _now_ms() -> int:
    return int(time.time() * 1000)


class Reconciler:
    def __init__(
        self,
        client,
        resolver: MetadataResolver,
        wallet: WalletSession,
        user_nfts=None,
        step_retries: int = 2,
        retry_delay: float = 0.5,
        debug: bool = False,
    ):
        self.client = client
        self.resolver = resolver
        self.wallet = wallet
        self.user_nfts = user_nfts
        self.step_retries = step_retries
        self.retry_delay = retry_delay
        self.debug = debug

        self.phase = RefreshPhase.IDLE
        self.marketplace: Optional[MarketplaceView] = None
        self.listings: List[NFTListing] = []
        self.stats = MarketplaceStats()
        self.portfolio: Optional[UserPortfolio] = None
        self.error: Optional[MarketplaceError] = None
        self.updated_at: Optional[int] = None

        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._first_seen: Dict[str, int] = {}

    @property
    def generation(self) -> int:
        return self._generation

    def snapshot(self) -> MarketplaceSnapshot:
        return MarketplaceSnapshot(
            phase=self.phase,
            generation=self._generation,
            marketplace=self.marketplace,
            listings=list(self.listings),
            stats=self.stats,
            portfolio=self.portfolio,
            error=self.error,
            updated_at=self.updated_at,
        )

    def _current(self, generation: int) -> bool:
        return generation == self._generation

    def _set_phase(self, generation: int, phase: RefreshPhase):
        if self._current(generation):
            self.phase = phase

    def _cancel_in_flight(self):
        task = self._task
        if task is not None and not task.done():
            task.cancel()

    async def refresh(self) -> MarketplaceSnapshot:
        """Start a refresh, superseding any one still running, and wait for it."""
        self._cancel_in_flight()
        self._generation += 1
        task = asyncio.ensure_future(self._run(self._generation))
        self._task = task
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()
        return self.snapshot()

    async def connect_wallet(self, keypair) -> MarketplaceSnapshot:
        self.wallet.connect(keypair)
        return await self.refresh()

    def disconnect_wallet(self):
        """Clear wallet and all view state now; any in-flight refresh is discarded."""
        self.wallet.disconnect()
        self._generation += 1
        self._cancel_in_flight()
        self.phase = RefreshPhase.IDLE
        self.marketplace = None
        self.listings = []
        self.stats = MarketplaceStats()
        self.portfolio = None
        self.error = None
        self.updated_at = None
        logger.info("[Reconciler] Wallet disconnected, state cleared")

    async def run_periodic(self, interval_sec: float, stop: Optional[asyncio.Event] = None):
        stop = stop or asyncio.Event()
        while not stop.is_set():
            await self.refresh()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_sec)
            except asyncio.TimeoutError:
                pass

    async def _step(self, label: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        last_error: Optional[Exception] = None
        for attempt in range(self.step_retries + 1):
            try:
                return await fn()
            except AccountNotFoundError:
                raise
            except Exception as e:
                last_error = e
                if attempt < self.step_retries:
                    logger.warning(f"[Reconciler] {label} failed (attempt {attempt + 1}), retrying: {e}")
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
        raise last_error

    async def _run(self, generation: int):
        try:
            self._set_phase(generation, RefreshPhase.FETCHING_MARKETPLACE)
            config = await self._step("marketplace", self.client.fetch_marketplace)

            self._set_phase(generation, RefreshPhase.FETCHING_LISTINGS)
            records = await self._step("listings", self.client.fetch_all_listings)

            self._set_phase(generation, RefreshPhase.RESOLVING_METADATA)
            resolved = await self._step(
                "metadata", lambda: self.resolver.resolve_mints([record.nft_mint for record in records])
            )

            marketplace_address = str(self.client.marketplace_address)
            now = _now_ms()
            listings: List[NFTListing] = []
            for record in records:
                mint = str(record.nft_mint)
                entry = resolved.get(mint)
                if entry is None:
                    logger.info(f"[Reconciler] Hiding listing {record.address}: no readable metadata for {mint}")
                    continue
                key = str(record.address)
                created_at = self._first_seen.get(key, now)
                listings.append(build_listing_view(record, marketplace_address, build_metadata_view(mint, entry), created_at))
            stats = compute_stats(listings)

            portfolio = None
            owner = self.wallet.pubkey
            if owner is not None:
                self._set_phase(generation, RefreshPhase.FETCHING_USER_NFTS)
                owned = None
                if self.user_nfts is not None:
                    try:
                        owned = await self._step("user NFTs", lambda: self.user_nfts.find_owned(owner))
                    except Exception as e:
                        logger.warning(f"[Reconciler] Wallet NFT discovery failed, showing listings only: {e}")
                portfolio = build_portfolio(str(owner), listings, owned)

            if not self._current(generation):
                return
            self._first_seen = {listing.id: listing.created_at for listing in listings}
            self.marketplace = build_marketplace_view(marketplace_address, config, stats)
            self.listings = listings
            self.stats = stats
            self.portfolio = portfolio
            self.error = None
            self.updated_at = now
            self.phase = RefreshPhase.READY
            logger.info(f"[Reconciler] Refresh #{generation} ready: {len(listings)}/{len(records)} listings visible")
        except asyncio.CancelledError:
            logger.debug(f"[Reconciler] Refresh #{generation} cancelled")
            raise
        except Exception as e:
            err = classify(e)
            if not self._current(generation):
                return
            log_error(err, "refresh", self.debug)
            if isinstance(err, AccountNotFoundError):
                self.marketplace = None
                self.listings = []
                self.stats = MarketplaceStats()
            self.error = err
            self.phase = RefreshPhase.ERROR
