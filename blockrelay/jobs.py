# -----------------------------------------------------------------------------
# Project: BlockRelay v0.1
# File:    jobs.py
# (c)      2025-2026 Wolfgang Lohmann
# License: MIT
# -----------------------------------------------------------------------------

# jobs.py
'''
Scheduled work of the synchronizer.

A job is anything with a `name` and an async `execute()`. Overlapping runs
are prevented by wrapping the job in SingleFlight, not by the scheduler.
'''

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Protocol, Set

from blockrelay.btc_api import BitcoinRpcClient
from blockrelay.bucket_manager import BucketManager
from blockrelay.config import Config
from blockrelay.core_defs import (
    PARSE_STATUS_PARSING,
    ZERO_HASH,
    BlockCandidate,
    BlockRelayError,
    BucketStatus,
    CapacityError,
    ChunkUploadError,
)
from blockrelay.ledger_api import LedgerGateway
from blockrelay.ledger_service import LedgerService
from blockrelay.resolver import PositionResolver
from blockrelay.uploader import ChunkUploader, slice_data
from blockrelay.utils import check_process_controls
from blockrelay.verifier import VerificationDriver

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class Job(Protocol):
    name: str

    async def execute(self) -> None:
        ...


class SingleFlight:
    """
    Runs a job unless a previous run of it is still in flight.
    Errors of the job are logged and do not reach the scheduler.
    """

    def __init__(self, job: Job):
        self.job = job
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> bool:
        """Returns False if the call was skipped because a run is in progress."""
        # check and set happen without an await in between
        if self._running:
            logger.debug(f"Job {self.job.name} still running, skipping this tick.")
            return False
        self._running = True
        try:
            await self.job.execute()
        except CapacityError as e:
            logger.warning(f"Job {self.job.name} stopped: {e}")
        except Exception:
            logger.exception(f"Job {self.job.name} failed")
        finally:
            self._running = False
        return True


class BlockUploadJob:
    """Uploads and verifies the next blocks the destination chain is missing."""

    name = "block_upload"

    def __init__(
        self,
        config: Config,
        btc: BitcoinRpcClient,
        buckets: BucketManager,
        resolver: PositionResolver,
        uploader: ChunkUploader,
        verifier: VerificationDriver,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self.btc = btc
        self.buckets = buckets
        self.resolver = resolver
        self.uploader = uploader
        self.verifier = verifier
        self._sleep = sleep

    async def upload_block(self, account: str, candidate: BlockCandidate):
        raw_block = await self.btc.get_raw_block(candidate.hash, candidate.height)
        chunks = slice_data(raw_block, self.config.chunk_size)

        logger.info("begin to upload block")
        await self.buckets.init_bucket(account, candidate.height, candidate.hash, len(raw_block), len(chunks))
        await self.uploader.upload_chunks(account, candidate.height, candidate.hash, chunks)

        bucket = await self.buckets.get_bucket(account, candidate.height, candidate.hash)
        if bucket is None or bucket.status != BucketStatus.UPLOAD_COMPLETE:
            status = bucket.status if bucket else "missing"
            raise ChunkUploadError(f"Bucket {candidate.height} not complete after upload (status {status})")

        logger.info("Verify block")
        await self.verifier.verify_block(account, candidate.height, candidate.hash)

    async def execute(self):
        account = self.config.account
        logger.info("block upload job started")
        await self.buckets.reconcile(account, self.verifier)

        logger.info("Detect if there are enough slots to upload")
        await self.buckets.ensure_capacity(account)

        failures = 0
        while failures < self.config.max_candidate_failures:
            resolution = await self.resolver.resolve()
            if not resolution.found:
                logger.info(f"Nothing to upload ({resolution.status.value}).")
                return
            candidate = resolution.candidate
            assert candidate is not None

            logger.info(f"will upload block: {candidate.height} {candidate.hash}")
            try:
                await self.upload_block(account, candidate)
            except CapacityError:
                raise
            except Exception as e:
                failures += 1
                logger.error(f"height: {candidate.height} hash: {candidate.hash} failed ({failures}/{self.config.max_candidate_failures}): {e}", exc_info=True)
                await self.buckets.delete_bucket(account, candidate.height, candidate.hash)
            await self._sleep(self.config.candidate_delay)

        logger.warning(f"Giving up after {failures} failed blocks in this run.")


class BlockParseJob:
    """
    Drives the UTXO parsing of the block at the destination's parsing height
    when this synchronizer holds the parse lease or the lease has expired.
    """

    name = "block_parse"

    ROW_STEP = 500

    def __init__(
        self,
        config: Config,
        gateway: LedgerGateway,
        ledger: LedgerService,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.config = config
        self.gateway = gateway
        self.ledger = ledger
        self._sleep = sleep
        self._clock = clock

    async def execute(self):
        chain_state = await self.ledger.get_chain_state()
        if chain_state is None or chain_state.parsing_hash == ZERO_HASH:
            logger.info("There are no blocks to parse")
            return

        expires = chain_state.parsed_expiration_time
        lease_expired = expires is not None and expires < self._clock()
        if lease_expired or self.config.account == chain_state.current_parser:
            logger.info(f"parsing height: {chain_state.parsing_height} synchronizer: {chain_state.synchronizer} parser: {chain_state.parser}")
            await self.process_block()

    async def process_block(self, max_retries: int = 5, process_rows: int = 3000):
        """
        Calls processblock until the block is no longer `parsing`. On errors the
        batch size shrinks by ROW_STEP rows before the next attempt.
        """
        rows = process_rows
        for attempt in range(1, max_retries + 1):
            try:
                while True:
                    result = await self.gateway.submit_action(self.config.contract_utxomng, "processblock", {
                        "synchronizer": self.config.account,
                        "process_rows": rows,
                    })
                    if result.status != PARSE_STATUS_PARSING:
                        break
                logger.info(f"processblock success, process {rows} rows (retry {attempt}/{max_retries})")
                return
            except BlockRelayError as e:
                if attempt >= max_retries:
                    raise
                rows = max(0, rows - self.ROW_STEP)
                logger.warning(f"processblock failed ({e}), retrying with {rows} rows (retry {attempt + 1}/{max_retries})")
                await self._sleep(0.2)


@dataclass
class _ScheduledJob:
    runner: SingleFlight
    interval: float
    next_due: float = 0.0


class Scheduler:
    """
    Fires every registered job on its interval. A tick that finds the job
    still running is absorbed by the job's SingleFlight guard.
    """

    def __init__(self, process_name: str = "blockrelay", tick: float = 1.0):
        self.process_name = process_name
        self.tick = tick
        self.entries: List[_ScheduledJob] = []
        self._inflight: Set["asyncio.Task[bool]"] = set()

    def add(self, job: Job, interval: float) -> SingleFlight:
        return self.add_runner(SingleFlight(job), interval)

    def add_runner(self, runner: SingleFlight, interval: float) -> SingleFlight:
        """Registers an existing guard, so manual runs and ticks share one flag."""
        self.entries.append(_ScheduledJob(runner, interval))
        logger.info(f"every {interval}s job {runner.job.name} to run!")
        return runner

    async def run_once(self):
        await asyncio.gather(*(entry.runner.run() for entry in self.entries))

    def _spawn(self, runner: SingleFlight):
        task = asyncio.create_task(runner.run())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def run(self, max_ticks: Optional[int] = None):
        """
        Runs until a `<process_name>.stop.flag` file appears (or max_ticks
        ticks passed). A pause flag holds back new runs.
        """
        loop = asyncio.get_running_loop()
        ticks = 0
        try:
            while max_ticks is None or ticks < max_ticks:
                if await check_process_controls(self.process_name):
                    break
                now = loop.time()
                for entry in self.entries:
                    if now >= entry.next_due:
                        self._spawn(entry.runner)
                        entry.next_due = now + entry.interval
                ticks += 1
                await asyncio.sleep(self.tick)
        finally:
            for task in list(self._inflight):
                task.cancel()
            await asyncio.gather(*self._inflight, return_exceptions=True)
