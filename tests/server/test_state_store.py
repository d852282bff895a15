"""Tests for the SSO relay state store."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from fakehub.services.state_store import MemoryStateStore, StateStore


class TestMemoryStateStore:
    def test_satisfies_protocol(self):
        assert isinstance(MemoryStateStore(), StateStore)

    @pytest.mark.asyncio
    async def test_put_and_consume(self):
        store = MemoryStateStore()
        await store.put_state("abc123", {"provider": "acme-saml", "kind": "saml"})
        assert await store.consume_state("abc123") == {"provider": "acme-saml", "kind": "saml"}

    @pytest.mark.asyncio
    async def test_consume_is_single_use(self):
        store = MemoryStateStore()
        await store.put_state("abc123")
        assert await store.consume_state("abc123") is True
        assert await store.consume_state("abc123") is None

    @pytest.mark.asyncio
    async def test_unknown_state(self):
        store = MemoryStateStore()
        assert await store.consume_state("nonexistent") is None

    @pytest.mark.asyncio
    async def test_expired_state(self):
        store = MemoryStateStore()
        with patch("fakehub.services.state_store.time.time", return_value=1000.0):
            await store.put_state("abc123", {"kind": "oidc"}, ttl_seconds=60)
        with patch("fakehub.services.state_store.time.time", return_value=1060.0):
            assert await store.consume_state("abc123") is None

    @pytest.mark.asyncio
    async def test_put_prunes_expired(self):
        store = MemoryStateStore()
        with patch("fakehub.services.state_store.time.time", return_value=1000.0):
            await store.put_state("old", ttl_seconds=10)
        with patch("fakehub.services.state_store.time.time", return_value=2000.0):
            await store.put_state("new")
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_multiple_states(self):
        store = MemoryStateStore()
        await store.put_state("state1", "one")
        await store.put_state("state2", "two")
        assert await store.consume_state("state2") == "two"
        assert await store.consume_state("state1") == "one"
        assert len(store) == 0
