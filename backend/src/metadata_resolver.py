"""
Off-chain NFT metadata resolution.

Given the ``uri`` of an on-chain Metaplex record, fetch and validate the JSON
document it points at. Lookups run in bounded batches with a short pause in
between; a failure for one NFT never aborts the rest of the batch.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from solders.pubkey import Pubkey

from onchain.account_decoder import OnChainMetadata
from onchain.cache import MetadataCache

logger = logging.getLogger(__name__)

DEFAULT_IPFS_GATEWAY = "https://ipfs.io/ipfs/"
ARWEAVE_GATEWAY = "https://arweave.net/"

# cache marker for mints that have no metadata account
_NO_METADATA = object()


class MetadataResolutionError(Exception):
    pass


@dataclass
class OffChainMetadata:
    name: str
    description: str = ""
    image: str = ""
    attributes: List[Dict[str, Any]] = field(default_factory=list)
    external_url: Optional[str] = None
    animation_url: Optional[str] = None
    properties: Optional[Dict[str, Any]] = None


@dataclass
class ResolvedMetadata:
    on_chain: OnChainMetadata
    document: Optional[OffChainMetadata] = None


def normalize_uri(uri: str, ipfs_gateway: str = DEFAULT_IPFS_GATEWAY) -> str:
    uri = uri.strip()
    if uri.startswith("ipfs://"):
        path = uri[len("ipfs://"):]
        if path.startswith("ipfs/"):
            path = path[len("ipfs/"):]
        return ipfs_gateway.rstrip("/") + "/" + path
    if uri.startswith("ar://"):
        return ARWEAVE_GATEWAY + uri[len("ar://"):]
    return uri


def _parse_document(body: Any, ipfs_gateway: str) -> OffChainMetadata:
    if not isinstance(body, dict):
        raise MetadataResolutionError("metadata document is not a JSON object")
    name = body.get("name")
    if not isinstance(name, str) or not name.strip():
        raise MetadataResolutionError("metadata document has no name")

    attributes = body.get("attributes")
    if not isinstance(attributes, list):
        attributes = []
    properties = body.get("properties")
    animation_url = body.get("animation_url")
    external_url = body.get("external_url")
    image = body.get("image")
    return OffChainMetadata(
        name=name.strip(),
        description=body.get("description") if isinstance(body.get("description"), str) else "",
        image=normalize_uri(image, ipfs_gateway) if isinstance(image, str) else "",
        attributes=[a for a in attributes if isinstance(a, dict)],
        external_url=external_url if isinstance(external_url, str) else None,
        animation_url=normalize_uri(animation_url, ipfs_gateway) if isinstance(animation_url, str) else None,
        properties=properties if isinstance(properties, dict) else None,
    )


class MetadataResolver:
    def __init__(
        self,
        client,
        ipfs_gateway: str = DEFAULT_IPFS_GATEWAY,
        batch_size: int = 10,
        batch_delay_ms: int = 100,
        timeout_sec: float = 10.0,
        cache: Optional[MetadataCache] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.client = client
        self.ipfs_gateway = ipfs_gateway
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay_ms / 1000
        self.timeout_sec = timeout_sec
        self.cache = cache if cache is not None else MetadataCache()
        self._session = session

    @classmethod
    def from_settings(cls, client, settings, session: Optional[aiohttp.ClientSession] = None) -> "MetadataResolver":
        return cls(
            client,
            ipfs_gateway=settings.ipfs_gateway,
            batch_size=settings.metadata_batch_size,
            batch_delay_ms=settings.metadata_batch_delay_ms,
            timeout_sec=settings.metadata_timeout_sec,
            cache=MetadataCache(ttl_ms=settings.metadata_cache_ttl_ms),
            session=session,
        )

    @asynccontextmanager
    async def _session_scope(self):
        if self._session is not None:
            yield self._session
            return
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_sec)) as session:
            yield session

    async def fetch_document(self, uri: str, session: Optional[aiohttp.ClientSession] = None) -> OffChainMetadata:
        if session is None:
            async with self._session_scope() as scoped:
                return await self.fetch_document(uri, scoped)

        url = normalize_uri(uri, self.ipfs_gateway)
        if not url.startswith(("http://", "https://")):
            raise MetadataResolutionError(f"unsupported metadata uri: {uri!r}")
        async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout_sec)) as resp:
            if resp.status < 200 or resp.status >= 300:
                raise MetadataResolutionError(f"HTTP {resp.status} for {url}")
            try:
                body = await resp.json(content_type=None)
            except ValueError as e:
                raise MetadataResolutionError(f"invalid JSON at {url}: {e}") from e
        return _parse_document(body, self.ipfs_gateway)

    async def _in_batches(self, items: List[Any], fn) -> List[Any]:
        outcomes: List[Any] = []
        for start in range(0, len(items), self.batch_size):
            if start and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            batch = items[start:start + self.batch_size]
            outcomes.extend(await asyncio.gather(*(fn(item) for item in batch), return_exceptions=True))
        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
        return outcomes

    async def resolve_documents(self, uris: Dict[str, str]) -> Dict[str, OffChainMetadata]:
        """
        Resolve ``{mint: uri}`` to ``{mint: document}``. Mints whose document
        could not be fetched or validated are left out of the result.
        """
        items = [(mint, uri) for mint, uri in uris.items() if uri]
        if not items:
            return {}
        async with self._session_scope() as session:
            outcomes = await self._in_batches(items, lambda item: self.fetch_document(item[1], session))

        documents: Dict[str, OffChainMetadata] = {}
        for (mint, uri), outcome in zip(items, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"[Metadata] {mint}: {uri} unresolved ({outcome})")
                continue
            documents[mint] = outcome
        logger.debug(f"[Metadata] Resolved {len(documents)}/{len(items)} documents")
        return documents

    async def resolve_mints(self, mints: Sequence[Pubkey]) -> Dict[str, ResolvedMetadata]:
        """
        On-chain record plus off-chain document for each mint. Mints without a
        readable metadata account are omitted; a failed document leaves
        ``document`` as None.
        """
        results: Dict[str, ResolvedMetadata] = {}
        pending: List[Pubkey] = []
        for mint in dict.fromkeys(mints):
            cached = self.cache.get(str(mint))
            if cached is _NO_METADATA:
                continue
            if cached is not None:
                results[str(mint)] = cached
            else:
                pending.append(mint)
        if not pending:
            return results

        try:
            on_chain = await self.client.fetch_metadata_many(pending)
        except Exception as e:
            logger.warning(f"[Metadata] Metadata account fetch failed for {len(pending)} mints ({e})")
            return results

        records: Dict[str, OnChainMetadata] = {}
        for mint, record in zip(pending, on_chain):
            key = str(mint)
            if record is None:
                self.cache.set(key, _NO_METADATA, hit=False)
            else:
                records[key] = record

        documents = await self.resolve_documents({key: record.uri for key, record in records.items()})
        for key, record in records.items():
            resolved = ResolvedMetadata(on_chain=record, document=documents.get(key))
            self.cache.set(key, resolved, hit=resolved.document is not None)
            results[key] = resolved
        return results

