# -----------------------------------------------------------------------------
# Project: BlockRelay v0.1
# File:    ledger_api.py
# (c)      2025-2026 Wolfgang Lohmann
# License: MIT
# -----------------------------------------------------------------------------

# ledger_api.py
'''
All functions related to the destination chain (exSat) inquiry.
- table reads through /v1/chain/get_table_rows, drained page by page
- actions packed locally, signed by the keosd wallet daemon and pushed
  through /v1/chain/push_transaction
'''

from dataclasses import dataclass
from typing import Dict, Any, Optional, List, Tuple, Callable, Awaitable, TypeVar
import logging
import asyncio

import aiohttp

from blockrelay.antelope import (
    AbiSerializer,
    PackedAction,
    expiration_from_head,
    pack_transaction,
    ref_block_from_id,
    signing_digest,
)
from blockrelay.core_defs import ActionResult, LedgerActionError, LedgerRequestError
from blockrelay.utils import record_api_call_and_get_rate, retry_async

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000

T = TypeVar("T")


@dataclass
class TableQuery:
    code: str
    table: str
    scope: Optional[str] = None
    index_position: Optional[str] = None
    key_type: Optional[str] = None
    lower_bound: Optional[Any] = None
    upper_bound: Optional[Any] = None
    reverse: bool = False
    limit: Optional[int] = None

    def to_params(self, lower_bound: Optional[Any], upper_bound: Optional[Any]) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "json": True,
            "code": self.code,
            "scope": self.scope or self.code,
            "table": self.table,
            "reverse": self.reverse,
            "limit": self.limit or DEFAULT_PAGE_SIZE,
        }
        if self.index_position:
            params["index_position"] = self.index_position
        if self.key_type:
            params["key_type"] = self.key_type
        if lower_bound is not None:
            params["lower_bound"] = lower_bound
        if upper_bound is not None:
            params["upper_bound"] = upper_bound
        return params


def _error_message(data: Any) -> str:
    """Extracts the most specific message from a nodeos error response."""
    if not isinstance(data, dict):
        return str(data)
    error = data.get("error") or {}
    details = error.get("details") or []
    if details and details[0].get("message"):
        return details[0]["message"]
    return error.get("what") or data.get("message") or str(data)


class LedgerGateway:
    """
    Reads tables from and submits actions to the destination chain as
    `account@permission`.
    """

    def __init__(
        self,
        rpc_urls: List[str],
        account: str,
        public_key: str,
        permission: str = "active",
        wallet_url: str = "http://127.0.0.1:8900",
        timeout: float = 10.0,
        retries: int = 3,
        retry_delay: float = 0.1,
        tx_expiration: int = 60,
    ):
        self.rpc_urls = rpc_urls
        self.account = account
        self.public_key = public_key
        self.permission = permission
        self.wallet_url = wallet_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.tx_expiration = tx_expiration

        self.rpc_url: Optional[str] = None
        self.chain_id: Optional[str] = None
        self._abis: Dict[str, AbiSerializer] = {}

    async def _post(self, url: str, payload: Any) -> Tuple[int, Any]:
        """
        Central function for an API call. Returns (HTTP status, decoded body).
        Network failures and timeouts raise LedgerRequestError.
        """
        record_api_call_and_get_rate()
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=payload) as response:
                    try:
                        data = await response.json(content_type=None)
                    except ValueError:
                        data = {"message": await response.text()}
                    return response.status, data
        except asyncio.TimeoutError as e:
            raise LedgerRequestError(f"Timeout Error: Request to {url} timed out after {self.timeout} seconds.") from e
        except aiohttp.ClientError as e:
            raise LedgerRequestError(f"Connection Error: Failed to reach {url}: {e}") from e

    async def get_info(self, url: Optional[str] = None) -> Dict[str, Any]:
        base = url or self.rpc_url
        status, data = await self._post(f"{base}/v1/chain/get_info", {})
        if status != 200 or not isinstance(data, dict):
            raise LedgerRequestError(f"get_info at {base} failed: Status {status}, Error: {_error_message(data)}")
        return data

    async def connect(self):
        """Picks the first configured RPC URL that answers get_info."""
        for url in self.rpc_urls:
            try:
                info = await self.get_info(url)
            except LedgerRequestError as e:
                logger.warning(f"EXSAT RPC {url} unavailable: {e}")
                continue
            if info.get("chain_id"):
                self.rpc_url = url.rstrip("/")
                self.chain_id = info["chain_id"]
                logger.info(f"Using EXSAT RPC {self.rpc_url} (chain id {self.chain_id[:12]}...)")
                return
        raise LedgerRequestError(f"No valid EXSAT RPC URL found in {self.rpc_urls}")

    async def _ensure_connected(self):
        if self.rpc_url is None:
            await self.connect()

    async def get_table_rows(self, query: TableQuery) -> List[Dict[str, Any]]:
        """
        Returns all rows matching the query. Pages are followed until the node
        reports no more rows, unless the query sets a row limit.
        """
        await self._ensure_connected()

        async def fetch_all() -> List[Dict[str, Any]]:
            rows: List[Dict[str, Any]] = []
            lower, upper = query.lower_bound, query.upper_bound
            while True:
                status, data = await self._post(
                    f"{self.rpc_url}/v1/chain/get_table_rows", query.to_params(lower, upper)
                )
                if status != 200:
                    raise LedgerRequestError(f"get_table_rows {query.table} failed: Status {status}, Error: {_error_message(data)}")
                rows.extend(data.get("rows", []))
                if query.limit or not data.get("more"):
                    return rows
                next_key = data.get("next_key")
                if query.reverse:
                    upper = next_key
                else:
                    lower = next_key

        return await retry_async(
            fetch_all,
            retries=self.retries,
            delay=self.retry_delay,
            context=f"get exsat row {query.table}",
            retry_on=(LedgerRequestError,),
        )

    async def _get_abi(self, contract: str) -> AbiSerializer:
        if contract not in self._abis:
            status, data = await self._post(f"{self.rpc_url}/v1/chain/get_abi", {"account_name": contract})
            if status != 200 or not isinstance(data, dict) or not data.get("abi"):
                raise LedgerRequestError(f"get_abi for {contract} failed: Status {status}, Error: {_error_message(data)}")
            self._abis[contract] = AbiSerializer(data["abi"])
        return self._abis[contract]

    async def _sign(self, action: str, digest: bytes) -> str:
        status, data = await self._post(f"{self.wallet_url}/v1/wallet/sign_digest", [digest.hex(), self.public_key])
        if status != 200 or not isinstance(data, str):
            raise LedgerActionError(action, f"keosd refused to sign: {_error_message(data)}")
        return data

    async def _retry_transport(self, fn: Callable[[], Awaitable[T]], context: str) -> T:
        return await retry_async(
            fn,
            retries=self.retries,
            delay=self.retry_delay,
            context=context,
            retry_on=(LedgerRequestError,),
        )

    async def submit_action(self, contract: str, action: str, data: Dict[str, Any]) -> ActionResult:
        """
        Packs, signs and pushes a single action authorized by the configured account.
        Transport failures of each step are retried; a signed transaction is
        re-pushed unchanged, the chain drops duplicates by transaction id.
        Raises LedgerActionError when the chain rejects the transaction.
        """
        await self._ensure_connected()
        assert self.chain_id is not None

        serializer = await self._retry_transport(lambda: self._get_abi(contract), f"get_abi {contract}")
        packed_action = PackedAction(
            account=contract,
            name=action,
            authorization=[(self.account, self.permission)],
            data=serializer.serialize_action_data(action, data),
        )

        info = await self._retry_transport(self.get_info, "get_info")
        ref_block_num, ref_block_prefix = ref_block_from_id(info["last_irreversible_block_id"])
        expiration = expiration_from_head(info["head_block_time"], self.tx_expiration)
        packed_trx = pack_transaction(expiration, ref_block_num, ref_block_prefix, [packed_action])

        digest = signing_digest(self.chain_id, packed_trx)
        signature = await self._retry_transport(lambda: self._sign(action, digest), f"sign {action}")

        body = {
            "signatures": [signature],
            "compression": 0,
            "packed_context_free_data": "",
            "packed_trx": packed_trx.hex(),
        }
        status, result = await self._retry_transport(
            lambda: self._post(f"{self.rpc_url}/v1/chain/push_transaction", body),
            f"push {contract}::{action}",
        )
        if status != 200:
            message = _error_message(result)
            logger.debug(f"Action {contract}::{action} rejected: {message}")
            raise LedgerActionError(action, message, result if isinstance(result, dict) else None)

        if not isinstance(result, dict):
            raise LedgerRequestError(f"push {contract}::{action} returned a malformed body: {result}")
        traces = (result.get("processed") or {}).get("action_traces") or []
        return_value = traces[0].get("return_value_data") if traces else None
        return ActionResult(transaction_id=result.get("transaction_id"), return_value=return_value)
