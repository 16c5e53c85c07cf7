"""Tests for the verification gate."""

import pytest

from messaging.verification import CONFIRMED_TEXT, KVVerificationGate, NullGate


@pytest.mark.asyncio
async def test_null_gate_verifies_everyone():
    gate = NullGate()
    assert await gate.is_verified(1) is True
    await gate.request_verification(1)


class TestKVVerificationGate:
    @pytest.mark.asyncio
    async def test_request_stores_token_and_sends_link(self, store, gateway):
        gate = KVVerificationGate(store, gateway, public_base="https://relay.example.com/")

        await gate.request_verification(42)

        keys = await store.list_keys("verify:")
        assert len(keys) == 1
        assert await store.get(keys[0]) == {"uid": 42}
        message = gateway.calls_to("send_single")[0]
        assert message["destination"] == 42
        token = keys[0][len("verify:"):]
        assert f"https://relay.example.com/verify?token={token}" in message["media_or_text"]

    @pytest.mark.asyncio
    async def test_token_expires(self, store, gateway, clock):
        gate = KVVerificationGate(store, gateway, public_base="https://relay.example.com", token_ttl=900)
        await gate.request_verification(42)
        token = (await store.list_keys("verify:"))[0][len("verify:"):]

        clock.advance(901)

        assert await gate.confirm(token) is None
        assert await gate.is_verified(42) is False

    @pytest.mark.asyncio
    async def test_no_link_without_public_base(self, store, gateway):
        gate = KVVerificationGate(store, gateway)

        await gate.request_verification(42)

        assert gateway.calls == []
        assert len(await store.list_keys("verify:")) == 1

    @pytest.mark.asyncio
    async def test_confirm_marks_user_verified(self, store, gateway):
        gate = KVVerificationGate(store, gateway, public_base="https://relay.example.com")
        await gate.request_verification(42)
        token = (await store.list_keys("verify:"))[0][len("verify:"):]

        assert await gate.confirm(token) == 42

        assert await gate.is_verified(42) is True
        assert await store.list_keys("verify:") == []
        assert gateway.calls_to("send_single")[-1]["media_or_text"] == CONFIRMED_TEXT

    @pytest.mark.asyncio
    async def test_unknown_token(self, store, gateway):
        gate = KVVerificationGate(store, gateway)
        assert await gate.confirm("missing") is None
