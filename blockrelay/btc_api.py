# -----------------------------------------------------------------------------
# Project: BlockRelay v0.1
# File:    btc_api.py
# (c)      2025-2026 Wolfgang Lohmann
# License: MIT
# -----------------------------------------------------------------------------

# btc_api.py
'''
All functions related to the source chain inquiry.
Talks JSON-RPC to one or more Bitcoin Core compatible nodes.
'''

from typing import Dict, Any, Optional, List
import logging
import asyncio

import aiohttp

from blockrelay.block_manager import RawBlockCache
from blockrelay.core_defs import BitcoinRpcError, BlockCandidate, BlockIntegrityError
from blockrelay.utils import record_api_call_and_get_rate, verify_raw_block_hash

logger = logging.getLogger(__name__)

RAW_BLOCK_RETRIES = 10


async def _log_aiohttp_error(response: aiohttp.ClientResponse, context: str):
    """Logs detailed error information from an aiohttp response."""
    try:
        error_data = await response.json(content_type=None)
        error_message = (error_data or {}).get('error') or str(error_data)
    except Exception:
        error_message = await response.text()
    logger.error(f"Request failed for {context}: Status {response.status}, Error: {error_message}")


def _rpc_result(method: str, url: str, data: Any) -> Any:
    """Returns the `result` of a decoded JSON-RPC response body."""
    if not isinstance(data, dict):
        raise BitcoinRpcError(f"{method} at {url} returned a malformed body: {str(data)[:200]}")
    if data.get("error"):
        raise BitcoinRpcError(f"{method} returned error: {data['error']}")
    return data.get("result")


class BitcoinRpcClient:
    """
    Reads best hash, headers and raw blocks from Bitcoin RPC nodes.
    Every call walks the configured URLs in order and retries each one.
    """

    def __init__(
        self,
        rpc_urls: List[str],
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 8.0,
        retries: int = 3,
        retry_delay: float = 1.0,
        cache: Optional[RawBlockCache] = None,
    ):
        if not rpc_urls:
            raise ValueError("At least one Bitcoin RPC URL is required.")
        self.rpc_urls = rpc_urls
        self.auth = aiohttp.BasicAuth(username, password) if username and password else None
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.cache = cache

    async def _post(self, url: str, payload: Dict[str, Any]) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, json=payload, auth=self.auth) as response:
                if response.status != 200:
                    await _log_aiohttp_error(response, f"{payload['method']} at {url}")
                    raise BitcoinRpcError(f"HTTP {response.status} from {url}")
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise BitcoinRpcError(f"{payload['method']} at {url} returned invalid JSON: {e}") from e
                return _rpc_result(payload["method"], url, data)

    async def request_rpc(self, method: str, params: List[Any], retries: Optional[int] = None) -> Any:
        """
        Central function for a JSON-RPC call.
        Raises BitcoinRpcError once every URL failed `retries` times.
        """
        attempts = retries or self.retries
        payload = {"id": 1, "jsonrpc": "2.0", "method": method, "params": params}

        for rpc_url in self.rpc_urls:
            for attempt in range(attempts):
                record_api_call_and_get_rate()
                try:
                    return await self._post(rpc_url, payload)
                except asyncio.TimeoutError:
                    logger.error(f"Timeout Error: {method} to {rpc_url} timed out after {self.timeout} seconds (attempt {attempt + 1}).")
                except (aiohttp.ClientError, BitcoinRpcError) as e:
                    logger.error(f"Attempt {attempt + 1} failed for URL {rpc_url}: {e}")

                if attempt < attempts - 1:
                    await asyncio.sleep(self.retry_delay)

        raise BitcoinRpcError(f"All RPC URLs failed after {attempts} attempts each ({method}).")

    async def get_best_block_hash(self) -> str:
        return await self.request_rpc("getbestblockhash", [])

    async def get_block_hash(self, height: int) -> str:
        return await self.request_rpc("getblockhash", [height])

    async def get_block_header(self, block_hash: str) -> BlockCandidate:
        """Get block header information by block hash."""
        header = await self.request_rpc("getblockheader", [block_hash])
        return BlockCandidate.from_rpc_header(header)

    async def get_block_header_by_height(self, height: int) -> BlockCandidate:
        """Get block header information by block height."""
        block_hash = await self.get_block_hash(height)
        return await self.get_block_header(block_hash)

    async def get_raw_block(self, block_hash: str, height: Optional[int] = None) -> bytes:
        """
        Fetches the serialized block. The local cache is consulted first when
        the height is known. The header hash is checked before returning.
        """
        if self.cache is not None and height is not None:
            cached = self.cache.load(height, block_hash)
            if cached is not None:
                logger.info(f"Using cached raw block for height {height}.")
                return cached

        raw_hex = await self.request_rpc("getblock", [block_hash, 0], retries=RAW_BLOCK_RETRIES)
        raw_block = bytes.fromhex(raw_hex)

        if not verify_raw_block_hash(raw_block, block_hash):
            raise BlockIntegrityError(f"Raw block returned for {block_hash} does not hash to it.")

        if self.cache is not None and height is not None:
            self.cache.save(height, block_hash, raw_block)
        return raw_block
