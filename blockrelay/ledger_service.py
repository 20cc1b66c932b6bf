# -----------------------------------------------------------------------------
# Project: BlockRelay v0.1
# File:    ledger_service.py
# (c)      2025-2026 Wolfgang Lohmann
# License: MIT
# -----------------------------------------------------------------------------

# ledger_service.py
# Read accessors over the destination chain tables (buckets, registry,
# consensus blocks, chain state).

import asyncio
import logging
from typing import Any, Dict, List, Optional

from blockrelay.config import Config
from blockrelay.core_defs import (
    TABLE_BLOCK_BUCKETS,
    TABLE_CHAIN_STATE,
    TABLE_CONSENSUS_BLOCKS,
    TABLE_SYNCHRONIZERS,
    BlockBucket,
    BucketStatus,
    ChainState,
    Synchronizer,
    compute_block_id,
)
from blockrelay.ledger_api import LedgerGateway, TableQuery

logger = logging.getLogger(__name__)


class LedgerService:

    def __init__(self, gateway: LedgerGateway, config: Config):
        self.gateway = gateway
        self.config = config

    # --- Registry ---

    async def get_synchronizers(self) -> List[Synchronizer]:
        rows = await self.gateway.get_table_rows(
            TableQuery(code=self.config.contract_poolreg, table=TABLE_SYNCHRONIZERS)
        )
        return [Synchronizer.from_row(row) for row in rows]

    async def get_synchronizer_by_account(self, account: str) -> Optional[Synchronizer]:
        for synchronizer in await self.get_synchronizers():
            if synchronizer.account == account:
                return synchronizer
        return None

    # --- Buckets ---

    async def get_block_buckets(self, account: str, status: Optional[BucketStatus] = None) -> List[BlockBucket]:
        """
        Buckets uploaded by one synchronizer, optionally filtered by status
        (secondary index).
        """
        query = TableQuery(code=self.config.contract_blksync, scope=account, table=TABLE_BLOCK_BUCKETS)
        if status is not None:
            query.index_position = "secondary"
            query.key_type = "i64"
            query.lower_bound = int(status)
            query.upper_bound = int(status)
        rows = await self.gateway.get_table_rows(query)
        return [BlockBucket.from_row(row, account) for row in rows]

    async def get_all_block_buckets(self, status: Optional[BucketStatus] = None) -> List[BlockBucket]:
        """Buckets of every registered synchronizer, fetched concurrently."""
        synchronizers = await self.get_synchronizers()
        results = await asyncio.gather(
            *(self.get_block_buckets(s.account, status) for s in synchronizers)
        )
        return [bucket for buckets in results for bucket in buckets]

    async def get_block_bucket(self, account: str, height: int, block_hash: str) -> Optional[BlockBucket]:
        block_id = compute_block_id(height, block_hash)
        rows = await self.gateway.get_table_rows(TableQuery(
            code=self.config.contract_blksync,
            scope=account,
            table=TABLE_BLOCK_BUCKETS,
            index_position="tertiary",
            key_type="sha256",
            lower_bound=block_id,
            upper_bound=block_id,
        ))
        return BlockBucket.from_row(rows[0], account) if rows else None

    async def get_highest_bucket(self, status: BucketStatus) -> Optional[BlockBucket]:
        buckets = await self.get_all_block_buckets(status)
        return max(buckets, key=lambda b: b.height, default=None)

    async def get_block_uploaders(self, block_hash: str) -> List[str]:
        """Distinct synchronizers holding a bucket (any status) for this hash."""
        buckets = await self.get_all_block_buckets()
        return list(dict.fromkeys(b.synchronizer for b in buckets if b.hash == block_hash))

    # --- Consensus and chain state ---

    async def get_last_consensus_block(self) -> Optional[Dict[str, Any]]:
        rows = await self.gateway.get_table_rows(TableQuery(
            code=self.config.contract_utxomng, table=TABLE_CONSENSUS_BLOCKS, reverse=True, limit=1
        ))
        return rows[0] if rows else None

    async def get_consensus_block_by_id(self, block_id: str) -> Optional[Dict[str, Any]]:
        rows = await self.gateway.get_table_rows(TableQuery(
            code=self.config.contract_utxomng,
            table=TABLE_CONSENSUS_BLOCKS,
            index_position="tertiary",
            key_type="sha256",
            lower_bound=block_id,
            upper_bound=block_id,
            limit=1,
        ))
        return rows[0] if rows else None

    async def get_chain_state(self) -> Optional[ChainState]:
        rows = await self.gateway.get_table_rows(TableQuery(
            code=self.config.contract_utxomng, table=TABLE_CHAIN_STATE, limit=1
        ))
        return ChainState.from_row(rows[0]) if rows else None

    async def get_last_height_on_chain(self) -> int:
        """
        Highest height the destination already knows about: fully uploaded
        buckets awaiting miners, verified buckets, consensus blocks and the
        chain state head.
        """
        last_uploaded, last_passed, last_consensus, chain_state = await asyncio.gather(
            self.get_highest_bucket(BucketStatus.WAITING_MINER_VERIFICATION),
            self.get_highest_bucket(BucketStatus.VERIFY_PASS),
            self.get_last_consensus_block(),
            self.get_chain_state(),
        )
        heights = [chain_state.head_height if chain_state else 0]
        heights += [b.height for b in (last_uploaded, last_passed) if b]
        if last_consensus:
            heights.append(int(last_consensus["height"]))
        return max(heights)

    async def is_block_accepted(self, block_hash: str, height: int) -> bool:
        """
        True if the block is below the start height or already known to the
        destination (uploaded, verified or in consensus).
        """
        if height < self.config.btc_start_height:
            return True

        uploaded, passed, consensus = await asyncio.gather(
            self.get_all_block_buckets(BucketStatus.WAITING_MINER_VERIFICATION),
            self.get_all_block_buckets(BucketStatus.VERIFY_PASS),
            self.get_consensus_block_by_id(compute_block_id(height, block_hash)),
        )
        if any(b.hash == block_hash for b in uploaded):
            return True
        if any(b.hash == block_hash for b in passed):
            return True
        return consensus is not None
