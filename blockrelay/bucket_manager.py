# -----------------------------------------------------------------------------
# Project: BlockRelay v0.1
# File:    bucket_manager.py
# (c)      2025-2026 Wolfgang Lohmann
# License: MIT
# -----------------------------------------------------------------------------

# bucket_manager.py
'''
Owns the lifecycle of the block buckets this synchronizer creates on the
destination chain:

    absent -> uploading -> upload_complete -> in_verification
           -> verify_pass | verify_fail -> deleted

Creation is gated by the account's slot quota. Deletion is best effort.
'''

import asyncio
import logging
from typing import TYPE_CHECKING, List, Optional

from blockrelay.config import Config
from blockrelay.core_defs import (
    PENDING_VERIFICATION,
    AccountNotRegisteredError,
    ActionResult,
    BlockBucket,
    BlockRelayError,
    BucketExistsError,
    BucketStatus,
    NoFreeSlotError,
    Synchronizer,
)
from blockrelay.ledger_api import LedgerGateway
from blockrelay.ledger_service import LedgerService

if TYPE_CHECKING:
    from blockrelay.verifier import VerificationDriver

logger = logging.getLogger(__name__)


class BucketManager:

    def __init__(self, gateway: LedgerGateway, ledger: LedgerService, config: Config):
        self.gateway = gateway
        self.ledger = ledger
        self.config = config

    async def count_uploading(self, account: str) -> int:
        return len(await self.ledger.get_block_buckets(account, BucketStatus.UPLOADING))

    async def ensure_capacity(self, account: str) -> Synchronizer:
        """
        Returns the registry entry of the account if it may start another
        upload. Raises AccountNotRegisteredError or NoFreeSlotError otherwise.
        """
        synchronizer = await self.ledger.get_synchronizer_by_account(account)
        if synchronizer is None:
            raise AccountNotRegisteredError(f"The account {account} is not on the whitelist")

        uploading = await self.count_uploading(account)
        logger.info(f"uploading: {uploading}/{synchronizer.num_slots}")
        if uploading >= synchronizer.num_slots:
            raise NoFreeSlotError(f"No slots to upload ({uploading}/{synchronizer.num_slots} in use)")
        return synchronizer

    async def get_bucket(self, account: str, height: int, block_hash: str) -> Optional[BlockBucket]:
        return await self.ledger.get_block_bucket(account, height, block_hash)

    async def init_bucket(self, account: str, height: int, block_hash: str, block_size: int, num_chunks: int) -> ActionResult:
        await self.ensure_capacity(account)

        existing = await self.get_bucket(account, height, block_hash)
        if existing is not None:
            raise BucketExistsError(f"Bucket for {height} {block_hash} already exists (status {existing.status})")

        logger.info(f"Init bucket {height} {block_hash}: {block_size} bytes in {num_chunks} chunks")
        return await self.gateway.submit_action(self.config.contract_blksync, "initbucket", {
            "synchronizer": account,
            "height": height,
            "hash": block_hash,
            "block_size": block_size,
            "num_chunks": num_chunks,
        })

    async def delete_bucket(self, account: str, height: int, block_hash: str) -> bool:
        """
        Removes a bucket. Never raises: cleanup must not block the next upload.
        Returns False if the chain rejected the deletion or could not be reached.
        """
        try:
            await self.gateway.submit_action(self.config.contract_blksync, "delbucket", {
                "synchronizer": account,
                "height": height,
                "hash": block_hash,
            })
            logger.info(f"Deleted bucket {height} {block_hash}")
            return True
        except Exception as e:
            logger.warning(f"Error deleting bucket {height} {block_hash} from account {account}: {e}")
            return False

    async def delete_buckets(self, account: str, buckets: List[BlockBucket]):
        await asyncio.gather(*(self.delete_bucket(account, b.height, b.hash) for b in buckets))

    async def reconcile(self, account: str, verifier: "VerificationDriver"):
        """
        Cleans up after earlier runs before anything new is uploaded.
        1. incomplete uploads are dropped (chunk progress is not kept locally)
        2. buckets at or below the last consensus height are dropped
        3. fully uploaded buckets are verified again, lowest height first
        """
        logger.info("Delete all incomplete buckets that I uploaded")
        await self.delete_buckets(account, await self.ledger.get_block_buckets(account, BucketStatus.UPLOADING))

        last_consensus = await self.ledger.get_last_consensus_block()
        if last_consensus:
            consensus_height = int(last_consensus["height"])
            logger.info(f"Delete uploaded buckets at or below consensus height {consensus_height}")
            superseded = [b for b in await self.ledger.get_block_buckets(account) if b.height <= consensus_height]
            await self.delete_buckets(account, superseded)

        logger.info("Verify all uploaded buckets")
        results = await asyncio.gather(
            *(self.ledger.get_block_buckets(account, status) for status in PENDING_VERIFICATION)
        )
        pending = sorted((b for buckets in results for b in buckets), key=lambda b: b.height)
        for bucket in pending:
            try:
                await verifier.verify_block(account, bucket.height, bucket.hash)
            except BlockRelayError as e:
                logger.warning(f"Verification of pending bucket {bucket.height} {bucket.hash} stopped: {e}")
                break
