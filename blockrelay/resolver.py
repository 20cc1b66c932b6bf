# resolver.py
'''
Finds the next block to upload.

Starts right above the destination's best known height and walks back along
the source chain until it reaches a block whose parent the destination has
already accepted. Walking back is needed when the source chain reorganized
after the destination last advanced.
'''

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from blockrelay.btc_api import BitcoinRpcClient
from blockrelay.core_defs import BlockCandidate
from blockrelay.ledger_service import LedgerService

logger = logging.getLogger(__name__)


class ResolveStatus(enum.Enum):
    FOUND = "found"
    UP_TO_DATE = "up_to_date"
    UNRESOLVABLE = "unresolvable"


@dataclass(frozen=True)
class Resolution:
    status: ResolveStatus
    candidate: Optional[BlockCandidate] = None

    @property
    def found(self) -> bool:
        return self.status is ResolveStatus.FOUND


class PositionResolver:

    def __init__(self, btc: BitcoinRpcClient, ledger: LedgerService, max_uploaders: int = 4):
        self.btc = btc
        self.ledger = ledger
        self.max_uploaders = max_uploaders

    async def _parent_accepted(self, block: BlockCandidate) -> bool:
        if block.previous_hash is None:
            return False
        return await self.ledger.is_block_accepted(block.previous_hash, block.height - 1)

    async def resolve(self) -> Resolution:
        best = await self.btc.get_block_header(await self.btc.get_best_block_hash())
        last_height = await self.ledger.get_last_height_on_chain()
        if last_height >= best.height:
            logger.info(f"No need to upload: destination at {last_height}, source at {best.height}.")
            return Resolution(ResolveStatus.UP_TO_DATE)

        block = await self.btc.get_block_header_by_height(last_height + 1)
        if await self._parent_accepted(block):
            return Resolution(ResolveStatus.FOUND, block)

        while block.previous_hash is not None:
            logger.info(f"Parent of {block.height} ({block.previous_hash}) not accepted downstream. Walking back.")
            block = await self.btc.get_block_header(block.previous_hash)
            if block.previous_hash is None:
                logger.warning(f"Reached genesis at height {block.height} without an accepted ancestor.")
                return Resolution(ResolveStatus.UNRESOLVABLE)

            if await self._parent_accepted(block):
                return Resolution(ResolveStatus.FOUND, block)

            uploaders = await self.ledger.get_block_uploaders(block.previous_hash)
            if len(uploaders) >= self.max_uploaders:
                logger.warning(
                    f"{len(uploaders)} synchronizers already upload {block.previous_hash} "
                    f"at height {block.height - 1}. Giving up on this fork."
                )
                return Resolution(ResolveStatus.UNRESOLVABLE)

        return Resolution(ResolveStatus.UNRESOLVABLE)
