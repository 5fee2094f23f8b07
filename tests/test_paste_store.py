# tests/test_paste_store.py
# Paste object store over both backends

import pytest

import paste_store
from constants import LONG_TERM_MAX_BYTES, PASTE_ID_ATTEMPTS, PASTE_ID_LENGTH
from errors import BackendError, InvalidInput, NotFound, PayloadTooLarge
from paste_store import ID_ALPHABET, PasteStore, generate_paste_id, is_paste_id


class TestGeneratePasteId:
    def test_url_safe_and_fixed_length(self):
        for _ in range(50):
            paste_id = generate_paste_id()
            assert len(paste_id) == PASTE_ID_LENGTH
            assert set(paste_id) <= set(ID_ALPHABET)

    def test_ids_do_not_repeat(self):
        assert len({generate_paste_id() for _ in range(500)}) == 500


class TestPasteStore:
    @pytest.mark.asyncio
    async def test_store_and_retrieve(self, backend):
        store = PasteStore(backend)
        paste_id = await store.store("U2FsdGVkX1+ciphertext==", 3600)
        assert len(paste_id) == PASTE_ID_LENGTH
        assert await store.retrieve(paste_id) == "U2FsdGVkX1+ciphertext=="

    @pytest.mark.asyncio
    async def test_permanent_paste(self, backend):
        store = PasteStore(backend)
        paste_id = await store.store("cipher", None)
        assert await store.retrieve(paste_id) == "cipher"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ciphertext", ["", None, 123, {"nested": "object"}])
    async def test_rejects_bad_ciphertext(self, backend, ciphertext):
        store = PasteStore(backend)
        with pytest.raises(InvalidInput):
            await store.store(ciphertext, 3600)

    @pytest.mark.asyncio
    async def test_too_large_is_rejected_before_any_write(self, backend):
        store = PasteStore(backend)
        with pytest.raises(PayloadTooLarge):
            await store.store("x" * (LONG_TERM_MAX_BYTES + 1), None)
        assert await backend.keys_by_pattern("*") == []

    @pytest.mark.asyncio
    async def test_missing_paste_is_not_found(self, backend):
        store = PasteStore(backend)
        with pytest.raises(NotFound) as exc_info:
            await store.retrieve("doesnotexi")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_empty_id_is_invalid(self, backend):
        with pytest.raises(InvalidInput):
            await PasteStore(backend).retrieve("")

    @pytest.mark.asyncio
    async def test_deleted_paste_is_gone(self, backend):
        store = PasteStore(backend)
        paste_id = await store.store("cipher", 3600)
        await store.delete(paste_id)
        with pytest.raises(NotFound):
            await store.retrieve(paste_id)
        # deleting twice is harmless
        await store.delete(paste_id)

    @pytest.mark.asyncio
    async def test_expired_paste_is_not_resurrected(self, backend):
        store = PasteStore(backend)
        paste_id = await store.store("cipher", 60)
        # simulate backend expiry
        await backend.delete(paste_id)
        with pytest.raises(NotFound):
            await store.retrieve(paste_id)

    @pytest.mark.asyncio
    async def test_id_collision_regenerates(self, backend, monkeypatch):
        store = PasteStore(backend)
        await backend.set_with_ttl("AAAAAAAAAA", "existing", 60)
        ids = iter(["AAAAAAAAAA", "BBBBBBBBBB"])
        monkeypatch.setattr(paste_store, "generate_paste_id", lambda: next(ids))

        paste_id = await store.store("new", 60)

        assert paste_id == "BBBBBBBBBB"
        assert await store.retrieve("AAAAAAAAAA") == "existing"

    @pytest.mark.asyncio
    async def test_persistent_collisions_fail(self, backend, monkeypatch):
        store = PasteStore(backend)
        await backend.set_with_ttl("AAAAAAAAAA", "existing", 60)
        calls = []

        def same_id():
            calls.append(1)
            return "AAAAAAAAAA"

        monkeypatch.setattr(paste_store, "generate_paste_id", same_id)
        with pytest.raises(BackendError):
            await store.store("new", 60)
        assert len(calls) == PASTE_ID_ATTEMPTS

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["lan:room:ABC123", "lan:messages:ABC123", "short", "abcdefghij/k"])
    async def test_only_paste_shaped_ids_reach_the_backend(self, backend, key):
        await backend.set_with_ttl(key, "not a paste", 60)
        store = PasteStore(backend)

        with pytest.raises(NotFound):
            await store.retrieve(key)
        await store.delete(key)
        assert await backend.get(key) == "not a paste"

    def test_is_paste_id(self):
        assert is_paste_id(generate_paste_id())
        assert not is_paste_id("lan:room:X")
        assert not is_paste_id("")


class TestPasteStoreBackendFailures:
    @pytest.mark.asyncio
    async def test_write_failure_is_backend_error(self, remote_backend, fake_upstash):
        fake_upstash.status_override = 503
        with pytest.raises(BackendError):
            await PasteStore(remote_backend).store("cipher", 60)

    @pytest.mark.asyncio
    async def test_read_failure_is_not_reported_as_not_found(self, remote_backend, fake_upstash):
        fake_upstash.status_override = 500
        with pytest.raises(BackendError):
            await PasteStore(remote_backend).retrieve("abcdefghij")

    @pytest.mark.asyncio
    async def test_delete_failure_is_swallowed(self, remote_backend, fake_upstash):
        fake_upstash.status_override = 500
        await PasteStore(remote_backend).delete("abcdefghij")

    @pytest.mark.asyncio
    async def test_delete_of_missing_key_is_swallowed(self, remote_backend, fake_upstash):
        fake_upstash.command_status["DEL"] = 404
        await PasteStore(remote_backend).delete("abcdefghij")
