"""
Single entry point for every state-changing marketplace call.

``execute`` enforces, in order: a connected wallet, input validation, the
``transactions`` rate limit, and a timeout on the call itself. Any failure is
surfaced as a classified ``MarketplaceError``; success triggers a refresh.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

from gateway.errors import NetworkError, WalletConnectionError, classify, log_error
from gateway.rate_limiter import RateLimiter
from gateway.validation import (
    validate_fee,
    validate_marketplace_name,
    validate_price,
    validate_public_key,
)
from onchain.units import sol_to_lamports

if TYPE_CHECKING:
    from wallet import WalletSession

logger = logging.getLogger(__name__)

Action = Callable[[Dict[str, Any]], Awaitable[str]]


def _validate_initialize(inputs: Dict[str, Any]) -> Dict[str, Any]:
    return {"name": validate_marketplace_name(inputs.get("name")), "fee_bps": validate_fee(inputs.get("fee_bps"))}


def _validate_list(inputs: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "nft_mint": validate_public_key(inputs.get("nft_mint"), "nft_mint"),
        "price": validate_price(inputs.get("price")),
    }


def _validate_purchase(inputs: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "nft_mint": validate_public_key(inputs.get("nft_mint"), "nft_mint"),
        "seller": validate_public_key(inputs.get("seller"), "seller"),
    }


def _validate_delist(inputs: Dict[str, Any]) -> Dict[str, Any]:
    return {"nft_mint": validate_public_key(inputs.get("nft_mint"), "nft_mint")}


def _validate_update_fee(inputs: Dict[str, Any]) -> Dict[str, Any]:
    return {"fee_bps": validate_fee(inputs.get("fee_bps"))}


VALIDATORS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "initialize_marketplace": _validate_initialize,
    "list_nft": _validate_list,
    "purchase_nft": _validate_purchase,
    "delist_nft": _validate_delist,
    "update_fee": _validate_update_fee,
}


class MutationGateway:
    def __init__(
        self,
        client,
        wallet: WalletSession,
        limiter: RateLimiter,
        transaction_timeout: float = 60.0,
        on_success: Optional[Callable[[], Awaitable[Any]]] = None,
        debug: bool = False,
    ):
        self.client = client
        self.wallet = wallet
        self.limiter = limiter
        self.transaction_timeout = transaction_timeout
        self.on_success = on_success
        self.debug = debug

    async def execute(self, operation: str, inputs: Dict[str, Any], action: Action) -> str:
        if not self.wallet.connected:
            err = WalletConnectionError()
            log_error(err, operation, self.debug)
            raise err

        validator = VALIDATORS.get(operation)
        validated = validator(inputs) if validator else dict(inputs)

        try:
            self.limiter.check()
        except Exception as e:
            err = classify(e)
            log_error(err, operation, self.debug)
            if err is e:
                raise
            raise err from e

        task = asyncio.ensure_future(action(validated))
        try:
            signature = await asyncio.wait_for(asyncio.shield(task), timeout=self.transaction_timeout)
        except asyncio.TimeoutError as e:
            if task.done():
                err = classify(e)
            else:
                task.add_done_callback(lambda t: self._log_late_outcome(operation, t))
                err = NetworkError(
                    f"{operation} did not complete within {self.transaction_timeout:g}s. "
                    "Its outcome is unknown; check your wallet activity before retrying.",
                    timed_out=True,
                    outcome_unknown=True,
                    raw=e,
                )
            log_error(err, operation, self.debug)
            raise err from e
        except Exception as e:
            err = classify(e)
            log_error(err, operation, self.debug)
            raise err from e

        logger.info(f"[Gateway] {operation} succeeded: {signature}")
        if self.on_success is not None:
            try:
                await self.on_success()
            except Exception as e:
                logger.warning(f"[Gateway] Post-{operation} refresh failed: {e}")
        return signature

    @staticmethod
    def _log_late_outcome(operation: str, task: asyncio.Future):
        if task.cancelled():
            logger.warning(f"[Gateway] Timed-out {operation} was cancelled")
        elif task.exception() is not None:
            logger.error(f"[Gateway] Timed-out {operation} eventually failed: {task.exception()}")
        else:
            logger.warning(f"[Gateway] Timed-out {operation} eventually succeeded: {task.result()}")

    # ---- operations ----

    async def initialize_marketplace(self, name: str, fee_bps: int) -> str:
        async def action(v: Dict[str, Any]) -> str:
            return await self.client.initialize_marketplace(self.wallet.require_signer(), v["name"], v["fee_bps"])

        return await self.execute("initialize_marketplace", {"name": name, "fee_bps": fee_bps}, action)

    async def list_nft(self, nft_mint: Any, price_sol: Any) -> str:
        async def action(v: Dict[str, Any]) -> str:
            return await self.client.list_nft(
                self.wallet.require_signer(), v["nft_mint"], sol_to_lamports(v["price"])
            )

        return await self.execute("list_nft", {"nft_mint": nft_mint, "price": price_sol}, action)

    async def purchase_nft(self, nft_mint: Any, seller: Any) -> str:
        async def action(v: Dict[str, Any]) -> str:
            return await self.client.purchase_nft(self.wallet.require_signer(), v["nft_mint"], v["seller"])

        return await self.execute("purchase_nft", {"nft_mint": nft_mint, "seller": seller}, action)

    async def delist_nft(self, nft_mint: Any) -> str:
        async def action(v: Dict[str, Any]) -> str:
            return await self.client.delist_nft(self.wallet.require_signer(), v["nft_mint"])

        return await self.execute("delist_nft", {"nft_mint": nft_mint}, action)

    async def update_fee(self, fee_bps: Any) -> str:
        async def action(v: Dict[str, Any]) -> str:
            return await self.client.update_fee(self.wallet.require_signer(), v["fee_bps"])

        return await self.execute("update_fee", {"fee_bps": fee_bps}, action)
