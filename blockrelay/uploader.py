# -----------------------------------------------------------------------------
# Project: BlockRelay v0.1
# File:    uploader.py
# (c)      2025-2026 Wolfgang Lohmann
# License: MIT
# -----------------------------------------------------------------------------

# uploader.py
'''
Splits a raw block into chunks and pushes them to the block bucket.
Each round pushes every outstanding chunk concurrently; failed chunks are
carried into the next round until the round budget is spent.
'''

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from blockrelay.bucket_manager import BucketManager
from blockrelay.config import Config
from blockrelay.core_defs import ChunkTask, ChunkUploadError
from blockrelay.ledger_api import LedgerGateway

logger = logging.getLogger(__name__)


def slice_data(data: bytes, chunk_size: int) -> List[ChunkTask]:
    """Splits data into ordered, zero-indexed chunks; the last one may be shorter."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [
        ChunkTask(sequence_id=index, payload=data[offset:offset + chunk_size])
        for index, offset in enumerate(range(0, len(data), chunk_size))
    ]


class ChunkUploader:

    def __init__(
        self,
        gateway: LedgerGateway,
        buckets: BucketManager,
        config: Config,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.buckets = buckets
        self.config = config
        self._sleep = sleep

    async def push_chunk(self, account: str, height: int, block_hash: str, chunk: ChunkTask) -> Optional[str]:
        """
        Pushes one chunk. Returns the transaction id, or None if the push failed
        for any reason; the caller decides whether to try again.
        """
        try:
            result = await self.gateway.submit_action(self.config.contract_blksync, "pushchunk", {
                "synchronizer": account,
                "height": height,
                "hash": block_hash,
                "chunk_id": chunk.sequence_id,
                "data": chunk.payload.hex(),
            })
        except Exception as e:
            logger.warning(f"Chunk {chunk.sequence_id} of {height} failed: {e}")
            return None
        return result.transaction_id or None

    async def upload_chunks(self, account: str, height: int, block_hash: str, chunks: List[ChunkTask]):
        """
        Delivers every chunk to the bucket (height, hash).
        Raises ChunkUploadError after deleting the bucket if chunks are still
        missing once max_chunk_rounds rounds are used up.
        """
        remaining = list(chunks)
        max_rounds = self.config.max_chunk_rounds

        for attempt in range(1, max_rounds + 1):
            if not remaining:
                break
            logger.info(f"Uploading {len(remaining)} chunks of {height}... Attempt {attempt}")
            tx_ids = await asyncio.gather(
                *(self.push_chunk(account, height, block_hash, chunk) for chunk in remaining)
            )
            remaining = [chunk for chunk, tx_id in zip(remaining, tx_ids) if not tx_id]
            if remaining:
                logger.warning(f"{len(remaining)} chunks failed to upload, retrying...")

        if remaining:
            logger.error(f"Failed to upload {len(remaining)} chunks after {max_rounds} attempts.")
            await self.buckets.delete_bucket(account, height, block_hash)
            raise ChunkUploadError(
                f"{len(remaining)} of {len(chunks)} chunks of {height} {block_hash} not accepted after {max_rounds} rounds"
            )

        logger.info(f"All {len(chunks)} chunks of {height} uploaded successfully.")
        await self._sleep(self.config.settle_delay)
