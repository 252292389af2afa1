"""Tests for off-chain metadata resolution."""

import pytest

from conftest import FakeSession, document, key, on_chain_metadata
from metadata_resolver import MetadataResolutionError, MetadataResolver, normalize_uri


class TestNormalizeUri:
    def test_ipfs_scheme_uses_gateway(self) -> None:
        assert normalize_uri("ipfs://bafy123/file.json") == "https://ipfs.io/ipfs/bafy123/file.json"

    def test_ipfs_scheme_with_redundant_prefix(self) -> None:
        assert normalize_uri("ipfs://ipfs/bafy123/file.json") == "https://ipfs.io/ipfs/bafy123/file.json"

    def test_custom_gateway(self) -> None:
        assert normalize_uri("ipfs://bafy123", "https://gw.example/ipfs") == "https://gw.example/ipfs/bafy123"

    def test_arweave_scheme(self) -> None:
        assert normalize_uri("ar://abc") == "https://arweave.net/abc"

    def test_http_untouched(self) -> None:
        assert normalize_uri("https://x.test/1.json") == "https://x.test/1.json"


class TestFetchDocument:
    async def test_valid_document_normalizes_media(self, fake_client) -> None:
        session = FakeSession({"https://x.test/1.json": (200, document("One", image="ipfs://bafyimg/1.png"))})
        resolver = MetadataResolver(fake_client, session=session)
        doc = await resolver.fetch_document("https://x.test/1.json")
        assert doc.name == "One"
        assert doc.image == "https://ipfs.io/ipfs/bafyimg/1.png"

    async def test_missing_name_rejected(self, fake_client) -> None:
        session = FakeSession({"https://x.test/1.json": (200, {"description": "no name"})})
        resolver = MetadataResolver(fake_client, session=session)
        with pytest.raises(MetadataResolutionError):
            await resolver.fetch_document("https://x.test/1.json")

    async def test_non_object_rejected(self, fake_client) -> None:
        session = FakeSession({"https://x.test/1.json": (200, ["not", "an", "object"])})
        resolver = MetadataResolver(fake_client, session=session)
        with pytest.raises(MetadataResolutionError):
            await resolver.fetch_document("https://x.test/1.json")

    async def test_invalid_json_rejected(self, fake_client) -> None:
        session = FakeSession({"https://x.test/1.json": (200, ValueError("Expecting value"))})
        resolver = MetadataResolver(fake_client, session=session)
        with pytest.raises(MetadataResolutionError):
            await resolver.fetch_document("https://x.test/1.json")

    async def test_http_error_rejected(self, fake_client) -> None:
        resolver = MetadataResolver(fake_client, session=FakeSession())
        with pytest.raises(MetadataResolutionError, match="HTTP 404"):
            await resolver.fetch_document("https://x.test/missing.json")


class TestResolveDocuments:
    async def test_404_is_omitted_without_aborting_batch(self, fake_client) -> None:
        session = FakeSession({
            "https://x.test/a.json": (200, document("A")),
            "https://x.test/c.json": (200, document("C")),
        })
        resolver = MetadataResolver(fake_client, batch_size=2, batch_delay_ms=0, session=session)
        docs = await resolver.resolve_documents({
            "mintA": "https://x.test/a.json",
            "mintB": "https://x.test/b.json",
            "mintC": "https://x.test/c.json",
        })
        assert set(docs) == {"mintA", "mintC"}
        assert docs["mintC"].name == "C"
        assert len(session.requested) == 3

    async def test_empty_uris_skipped(self, resolver, fake_session) -> None:
        assert await resolver.resolve_documents({"mintA": ""}) == {}
        assert fake_session.requested == []


class TestResolveMints:
    async def test_combines_on_chain_and_document(self, fake_client) -> None:
        with_doc, doc_missing, no_account = key(10), key(11), key(12)
        fake_client.metadata[str(with_doc)] = on_chain_metadata(with_doc, "On-chain A", "https://x.test/a.json")
        fake_client.metadata[str(doc_missing)] = on_chain_metadata(doc_missing, "On-chain B", "https://x.test/b.json")
        session = FakeSession({"https://x.test/a.json": (200, document("A"))})
        resolver = MetadataResolver(fake_client, batch_delay_ms=0, session=session)

        resolved = await resolver.resolve_mints([with_doc, doc_missing, no_account])

        assert set(resolved) == {str(with_doc), str(doc_missing)}
        assert resolved[str(with_doc)].document.name == "A"
        assert resolved[str(doc_missing)].document is None
        assert resolved[str(doc_missing)].on_chain.name == "On-chain B"

    async def test_results_are_cached(self, fake_client) -> None:
        mint = key(10)
        fake_client.metadata[str(mint)] = on_chain_metadata(mint, "A", "https://x.test/a.json")
        session = FakeSession({"https://x.test/a.json": (200, document("A"))})
        resolver = MetadataResolver(fake_client, batch_delay_ms=0, session=session)

        await resolver.resolve_mints([mint])
        await resolver.resolve_mints([mint])

        assert session.requested == ["https://x.test/a.json"]

    async def test_accounts_read_in_one_batch(self, fake_client) -> None:
        mints = [key(n) for n in range(10, 15)]
        for mint in mints:
            fake_client.metadata[str(mint)] = on_chain_metadata(mint, "x", "")
        resolver = MetadataResolver(fake_client, batch_size=2, batch_delay_ms=0, session=FakeSession())

        resolved = await resolver.resolve_mints(mints + [mints[0]])

        assert fake_client.metadata_reads == [mints]
        assert set(resolved) == {str(mint) for mint in mints}

    async def test_account_fetch_failure_omitted(self, fake_client) -> None:
        good, bad = key(10), key(11)
        fake_client.metadata[str(good)] = on_chain_metadata(good, "A", "https://x.test/a.json")
        fake_client.metadata[str(bad)] = on_chain_metadata(bad, "B", "https://x.test/b.json")
        session = FakeSession({"https://x.test/a.json": (200, document("A"))})
        resolver = MetadataResolver(fake_client, batch_delay_ms=0, session=session)
        await resolver.resolve_mints([good])

        original = fake_client.fetch_metadata_many

        async def down(mints):
            raise ConnectionError("rpc down")

        fake_client.fetch_metadata_many = down
        resolved = await resolver.resolve_mints([good, bad])
        assert set(resolved) == {str(good)}

        fake_client.fetch_metadata_many = original
        resolved = await resolver.resolve_mints([bad])
        assert resolved[str(bad)].on_chain.name == "B"
