"""
NFT Marketplace Client - JSON API
Serves the reconciled marketplace view and accepts mutation requests.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import threading
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from werkzeug.exceptions import HTTPException

from gateway.errors import (
    ErrorKind,
    MarketplaceError,
    NetworkError,
    RateLimitError,
    ValidationError,
    classify,
    log_error,
)
from gateway.mutation_gateway import MutationGateway
from gateway.rate_limiter import RateLimiterRegistry, RateLimitStore
from gateway.validation import sanitize_string
from marketplace_client import MarketplaceClient
from metadata_resolver import MetadataResolver
from reconciler import Reconciler
from settings import MarketplaceSettings, load_settings
from user_nfts import UserNFTFinder
from view_models import filter_listings
from wallet import WalletSession, load_keypair

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.WALLET_CONNECTION: 401,
    ErrorKind.INSUFFICIENT_BALANCE: 402,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.NETWORK: 503,
    ErrorKind.TRANSACTION: 502,
    ErrorKind.UNKNOWN: 500,
}


def http_status(err: MarketplaceError) -> int:
    if isinstance(err, NetworkError) and err.timed_out:
        return 504
    return STATUS_BY_KIND[err.kind]


class MarketplaceRuntime:
    """
    Wires the services together and owns the event loop they run on.
    Flask request threads hand coroutines to the loop thread via ``run``.
    """

    def __init__(
        self,
        settings: MarketplaceSettings,
        client=None,
        resolver: Optional[MetadataResolver] = None,
        user_nfts=None,
        limiters: Optional[RateLimiterRegistry] = None,
    ):
        self.settings = settings
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._loop_thread.start()
        self._stop: Optional[asyncio.Event] = None
        self._periodic: Optional[Any] = None

        if client is None:
            rpc = AsyncClient(settings.rpc_url, commitment=Commitment(settings.commitment))
            client = MarketplaceClient(rpc, settings)
            self._owned_rpc = rpc
        else:
            self._owned_rpc = None
        self.client = client
        self.wallet = WalletSession()
        self.resolver = resolver or MetadataResolver.from_settings(client, settings)
        if user_nfts is None and self._owned_rpc is not None:
            user_nfts = UserNFTFinder(self._owned_rpc, self.resolver, Commitment(settings.commitment))
        self.reconciler = Reconciler(client, self.resolver, self.wallet, user_nfts, debug=settings.debug)
        self.limiters = limiters or RateLimiterRegistry(RateLimitStore(settings.rate_limit_db))
        self.gateway = MutationGateway(
            client,
            self.wallet,
            self.limiters.get("transactions"),
            transaction_timeout=settings.transaction_timeout_sec,
            on_success=self.reconciler.refresh,
            debug=settings.debug,
        )

    def run(self, coro):
        """Run a coroutine on the runtime loop and block for its result."""
        fut = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return fut.result()

    def start_periodic_refresh(self):
        async def _start():
            self._stop = asyncio.Event()
            return asyncio.ensure_future(self.reconciler.run_periodic(self.settings.refresh_interval_sec, self._stop))

        self._periodic = self.run(_start())
        logger.info(f"[Runtime] Periodic refresh every {self.settings.refresh_interval_sec:g}s")

    def connect_wallet(self, keypair_path: str):
        self.limiters.get("wallet_connections").check()
        keypair = load_keypair(keypair_path)
        return self.run(self.reconciler.connect_wallet(keypair))

    def disconnect_wallet(self):
        async def _disconnect():
            self.reconciler.disconnect_wallet()

        self.run(_disconnect())

    def refresh(self):
        self.limiters.get("queries").check()
        return self.run(self.reconciler.refresh())

    def shutdown(self):
        if self._stop is not None:
            self._loop.call_soon_threadsafe(self._stop.set)
        if self._owned_rpc is not None:
            self.run(self._owned_rpc.close())
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout=5)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def create_app(runtime: MarketplaceRuntime) -> Flask:
    app = Flask(__name__)
    CORS(app)
    debug = runtime.settings.debug

    @app.errorhandler(MarketplaceError)
    def handle_marketplace_error(err: MarketplaceError):
        resp = jsonify({"error": err.to_payload(debug)})
        if isinstance(err, RateLimitError):
            resp.headers["Retry-After"] = str(max(1, math.ceil(err.retry_after_ms / 1000)))
        return resp, http_status(err)

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        if isinstance(e, HTTPException):
            return e
        err = classify(e)
        log_error(err, request.path, debug)
        return handle_marketplace_error(err)

    def _find_listing(listing_id: str):
        for listing in runtime.reconciler.listings:
            if listing.id == listing_id:
                return listing
        return None

    def _mutation_response(signature: str):
        return jsonify({"signature": signature, "snapshot": runtime.reconciler.snapshot().to_dict(debug)})

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({
            "status": "healthy",
            "network": runtime.settings.network,
            "marketplace": str(runtime.client.marketplace_address),
            "wallet_connected": runtime.wallet.connected,
            "phase": runtime.reconciler.phase.value,
        })

    @app.route("/api/marketplace", methods=["GET"])
    def get_marketplace():
        snapshot = runtime.reconciler.snapshot()
        return jsonify({
            "marketplace": snapshot.marketplace.to_dict() if snapshot.marketplace else None,
            "phase": snapshot.phase.value,
            "error": snapshot.error.to_payload(debug) if snapshot.error else None,
        })

    def _price_arg(name: str) -> Optional[float]:
        raw = request.args.get(name, "").strip()
        if not raw:
            return None
        try:
            value = float(raw)
        except ValueError:
            raise ValidationError(f"{name} must be a number", name) from None
        if not math.isfinite(value) or value < 0:
            raise ValidationError(f"{name} must be a non-negative number", name)
        return value

    def _attribute_args() -> Dict[str, List[str]]:
        attributes: Dict[str, List[str]] = {}
        for raw in request.args.getlist("attribute"):
            trait, sep, value = raw.partition(":")
            if not sep or not trait.strip():
                raise ValidationError("Attribute filters take the form trait:value", "attribute")
            attributes.setdefault(trait.strip(), []).append(value.strip())
        return attributes

    @app.route("/api/listings", methods=["GET"])
    def get_listings():
        listings = filter_listings(
            runtime.reconciler.snapshot().listings,
            query=sanitize_string(request.args.get("q", "")),
            min_price=_price_arg("min_price"),
            max_price=_price_arg("max_price"),
            attributes=_attribute_args(),
            sort_by=request.args.get("sort", "newest"),
        )
        return jsonify({"listings": [listing.to_dict() for listing in listings], "count": len(listings)})

    @app.route("/api/stats", methods=["GET"])
    def get_stats():
        return jsonify(runtime.reconciler.snapshot().stats.to_dict())

    @app.route("/api/portfolio", methods=["GET"])
    def get_portfolio():
        if not runtime.wallet.connected:
            raise ValidationError("Connect a wallet to view the portfolio", "wallet")
        portfolio = runtime.reconciler.snapshot().portfolio
        return jsonify({"portfolio": portfolio.to_dict() if portfolio else None})

    @app.route("/api/refresh", methods=["POST"])
    def post_refresh():
        return jsonify(runtime.refresh().to_dict(debug))

    @app.route("/api/wallet/connect", methods=["POST"])
    def post_wallet_connect():
        path = _body().get("keypair_path")
        if not isinstance(path, str) or not path.strip():
            raise ValidationError("keypair_path is required", "keypair_path")
        snapshot = runtime.connect_wallet(path.strip())
        return jsonify({"wallet": str(runtime.wallet.pubkey), "snapshot": snapshot.to_dict(debug)})

    @app.route("/api/wallet/disconnect", methods=["POST"])
    def post_wallet_disconnect():
        runtime.disconnect_wallet()
        return jsonify({"wallet": None, "snapshot": runtime.reconciler.snapshot().to_dict(debug)})

    @app.route("/api/listings", methods=["POST"])
    def post_listing():
        body = _body()
        signature = runtime.run(runtime.gateway.list_nft(body.get("nft_mint"), body.get("price")))
        return _mutation_response(signature)

    @app.route("/api/listings/<listing_id>/purchase", methods=["POST"])
    def post_purchase(listing_id: str):
        listing = _find_listing(listing_id)
        if listing is None:
            return jsonify({"error": {"kind": "NOT_FOUND", "message": "NFT listing not found"}}), 404
        signature = runtime.run(runtime.gateway.purchase_nft(listing.nft_mint, listing.seller))
        return _mutation_response(signature)

    @app.route("/api/listings/<listing_id>/delist", methods=["POST"])
    def post_delist(listing_id: str):
        listing = _find_listing(listing_id)
        if listing is None:
            return jsonify({"error": {"kind": "NOT_FOUND", "message": "NFT listing not found"}}), 404
        signature = runtime.run(runtime.gateway.delist_nft(listing.nft_mint))
        return _mutation_response(signature)

    @app.route("/api/admin/initialize", methods=["POST"])
    def post_initialize():
        body = _body()
        signature = runtime.run(runtime.gateway.initialize_marketplace(body.get("name"), body.get("fee_bps")))
        return _mutation_response(signature)

    @app.route("/api/admin/fee", methods=["POST"])
    def post_update_fee():
        signature = runtime.run(runtime.gateway.update_fee(_body().get("fee_bps")))
        return _mutation_response(signature)

    return app


def main():
    settings = load_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    runtime = MarketplaceRuntime(settings)
    runtime.start_periodic_refresh()
    app = create_app(runtime)

    logger.info(f"[API] Network: {settings.network} ({settings.rpc_url})")
    logger.info(f"[API] Program: {settings.program_id}, marketplace: {settings.marketplace_name}")
    logger.info(f"[API] Marketplace account: {runtime.client.marketplace_address}")
    try:
        app.run(host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "5000")), debug=False)
    finally:
        runtime.shutdown()


if __name__ == "__main__":
    main()
