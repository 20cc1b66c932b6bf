# verifier.py
'''
Drives a fully chunked bucket through the destination chain's verification
phases (merkle root, parent hash, miner attestation) until the verify action
reports a terminal status.
'''

import asyncio
import logging
from typing import Awaitable, Callable

from blockrelay.bucket_manager import BucketManager
from blockrelay.config import Config
from blockrelay.core_defs import (
    TRANSIENT_VERIFY_STATUSES,
    VERIFY_STATUS_FAIL,
    VERIFY_STATUS_WAITING_MINER,
    ActionResult,
    VerificationError,
)
from blockrelay.ledger_api import LedgerGateway

logger = logging.getLogger(__name__)


class VerificationDriver:

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

    async def verify_block(self, account: str, height: int, block_hash: str) -> ActionResult:
        """
        Calls verify until the status leaves the transient set.

        There is no cap on the number of calls; the miner phase is paced by
        miner_verification_delay. A verify_fail result deletes the bucket and
        raises VerificationError. Every other terminal status is returned.
        """
        data = {"synchronizer": account, "height": height, "hash": block_hash}
        while True:
            result = await self.gateway.submit_action(self.config.contract_blksync, "verify", data)
            status = result.status
            logger.info(f"verify {height} {block_hash}: {status}")
            if status not in TRANSIENT_VERIFY_STATUSES:
                break
            if status == VERIFY_STATUS_WAITING_MINER:
                await self._sleep(self.config.miner_verification_delay)

        if status == VERIFY_STATUS_FAIL:
            await self.buckets.delete_bucket(account, height, block_hash)
            raise VerificationError(f"verifyBlock failed for {height} {block_hash}")
        return result
