"""Signed VAA lookup from the Wormhole guardian REST API.

Useful to debug a transfer that never arrives: if a VAA exists for the
source sequence, the message was attested and delivery is up to the relayer.
"""

import asyncio
import base64
import logging
from typing import Optional

import httpx

from propeller.chains import ChainConfig
from propeller.errors import ConfigurationError, VaaNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 1.0
DEFAULT_RETRY_ATTEMPTS = 10


def evm_emitter_address(portal_address: str) -> str:
    """Portal contract address left-padded to 32 bytes, hex without 0x."""
    raw = portal_address[2:] if portal_address.startswith("0x") else portal_address
    return raw.lower().rjust(64, "0")


async def fetch_signed_vaa(
    wormhole_rpc: str,
    chain: ChainConfig,
    sequence: int,
    emitter: Optional[str] = None,
    retry_delay: float = DEFAULT_RETRY_DELAY,
    attempts: int = DEFAULT_RETRY_ATTEMPTS,
    client: Optional[httpx.AsyncClient] = None,
) -> bytes:
    """Fetch the signed VAA for a transfer, retrying while guardians sign.

    Args:
        wormhole_rpc: Guardian REST base URL
        chain: Source chain of the transfer
        sequence: Bridge sequence from the source transaction
        emitter: Emitter address in hex, derived from the portal for EVM chains
        retry_delay: Seconds between attempts
        attempts: Maximum number of attempts
        client: Optional shared httpx client

    Returns:
        Raw VAA bytes

    Raises:
        VaaNotFoundError: If the VAA is not available after all attempts
    """
    if emitter is None:
        if not chain.is_evm:
            raise ConfigurationError("Emitter address is required for non-EVM chains")
        if not chain.wormhole_portal:
            raise ConfigurationError(f"Missing Wormhole portal for {chain.display_name}")
        emitter = evm_emitter_address(chain.wormhole_portal)

    url = (
        f"{wormhole_rpc.rstrip('/')}/v1/signed_vaa/"
        f"{chain.wormhole_chain_id}/{emitter}/{sequence}"
    )
    logger.info(
        f"Getting VAA: rpc={wormhole_rpc} chain={chain.wormhole_chain_id} "
        f"emitter={emitter} sequence={sequence}"
    )

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=30.0)
    last_error = ""
    try:
        for attempt in range(1, attempts + 1):
            try:
                response = await client.get(url)
                if response.status_code == 200:
                    vaa_bytes = response.json().get("vaaBytes")
                    if vaa_bytes:
                        return base64.b64decode(vaa_bytes)
                    last_error = "empty vaaBytes"
                else:
                    last_error = f"HTTP {response.status_code}"
            except httpx.HTTPError as e:
                last_error = str(e)

            logger.debug(f"VAA not ready (attempt {attempt}/{attempts}): {last_error}")
            if attempt < attempts:
                await asyncio.sleep(retry_delay)
    finally:
        if owns_client:
            await client.aclose()

    raise VaaNotFoundError(
        f"VAA for {chain.display_name} sequence {sequence} not found after "
        f"{attempts} attempts: {last_error}"
    )
