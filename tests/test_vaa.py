"""Tests for signed VAA lookup."""

import base64

import httpx
import pytest

from propeller.chains import CHAINS
from propeller.errors import ConfigurationError, VaaNotFoundError
from propeller.vaa import evm_emitter_address, fetch_signed_vaa

WORMHOLE_RPC = "https://wormhole.test"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_evm_emitter_address():
    emitter = evm_emitter_address("0x9dcF9D205C9De35334D646BeE44b2D2859712A09")

    assert len(emitter) == 64
    assert emitter.startswith("0" * 24)
    assert emitter.endswith("9dcf9d205c9de35334d646bee44b2d2859712a09")


class TestFetchSignedVaa:
    """Tests for the guardian REST polling loop."""

    @pytest.fixture
    def bsc(self, evm_chains):
        return evm_chains["bsc"]

    @pytest.mark.asyncio
    async def test_retries_until_signed(self, bsc):
        """404s are retried until guardians publish the VAA."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if len(requests) < 3:
                return httpx.Response(404, json={"code": 5, "message": "requested VAA not found"})
            return httpx.Response(200, json={"vaaBytes": base64.b64encode(b"vaa").decode()})

        async with _client(handler) as client:
            vaa = await fetch_signed_vaa(
                WORMHOLE_RPC, bsc, 1234, retry_delay=0, attempts=5, client=client
            )

        assert vaa == b"vaa"
        assert len(requests) == 3
        assert requests[0].url.path == (
            f"/v1/signed_vaa/4/{evm_emitter_address(bsc.wormhole_portal)}/1234"
        )

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self, bsc):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404)

        async with _client(handler) as client:
            with pytest.raises(VaaNotFoundError, match="HTTP 404"):
                await fetch_signed_vaa(
                    WORMHOLE_RPC, bsc, 7, retry_delay=0, attempts=3, client=client
                )

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self, bsc):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"vaaBytes": base64.b64encode(b"ok").decode()})

        async with _client(handler) as client:
            vaa = await fetch_signed_vaa(
                WORMHOLE_RPC, bsc, 7, retry_delay=0, attempts=2, client=client
            )

        assert vaa == b"ok"

    @pytest.mark.asyncio
    async def test_explicit_emitter(self, solana_chain):
        """Non-EVM chains need the emitter passed in."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"vaaBytes": base64.b64encode(b"sol").decode()})

        async with _client(handler) as client:
            await fetch_signed_vaa(
                WORMHOLE_RPC, solana_chain, 9, emitter="ab" * 32, retry_delay=0, client=client
            )

        assert seen == [f"/v1/signed_vaa/1/{'ab' * 32}/9"]

    @pytest.mark.asyncio
    async def test_missing_emitter_for_solana(self):
        with pytest.raises(ConfigurationError):
            await fetch_signed_vaa(WORMHOLE_RPC, CHAINS["solana"], 9)
