# -----------------------------------------------------------------------------
# Project: BlockRelay v0.1
# File:    engine.py
# (c)      2025-2026 Wolfgang Lohmann
# License: MIT
# -----------------------------------------------------------------------------

# engine.py
'''
Wires the clients, services and jobs of one synchronizer account together.
'''

import logging
from typing import Optional

from blockrelay.block_manager import RawBlockCache
from blockrelay.btc_api import BitcoinRpcClient
from blockrelay.bucket_manager import BucketManager
from blockrelay.config import Config
from blockrelay.jobs import BlockParseJob, BlockUploadJob, Scheduler, SingleFlight
from blockrelay.ledger_api import LedgerGateway
from blockrelay.ledger_service import LedgerService
from blockrelay.resolver import PositionResolver
from blockrelay.uploader import ChunkUploader
from blockrelay.verifier import VerificationDriver

logger = logging.getLogger(__name__)


class SyncEngine:

    def __init__(
        self,
        config: Config,
        btc: Optional[BitcoinRpcClient] = None,
        gateway: Optional[LedgerGateway] = None,
    ):
        self.config = config

        if btc is None:
            cache = RawBlockCache(config.btc_data_dir) if config.btc_data_dir else None
            btc = BitcoinRpcClient(
                config.btc_rpc_urls,
                username=config.btc_rpc_username,
                password=config.btc_rpc_password,
                timeout=config.btc_rpc_timeout,
                retries=config.btc_rpc_retries,
                retry_delay=config.btc_rpc_retry_delay,
                cache=cache,
            )
        if gateway is None:
            gateway = LedgerGateway(
                config.exsat_rpc_urls,
                config.account,
                config.public_key,
                permission=config.permission,
                wallet_url=config.keosd_url,
                timeout=config.timeout_connect,
                retries=config.table_retries,
                retry_delay=config.table_retry_delay,
                tx_expiration=config.tx_expiration,
            )
        self.btc = btc
        self.gateway = gateway

        self.ledger = LedgerService(gateway, config)
        self.buckets = BucketManager(gateway, self.ledger, config)
        self.resolver = PositionResolver(btc, self.ledger, max_uploaders=config.max_uploaders)
        self.uploader = ChunkUploader(gateway, self.buckets, config)
        self.verifier = VerificationDriver(gateway, self.buckets, config)

        self.upload_job = BlockUploadJob(config, btc, self.buckets, self.resolver, self.uploader, self.verifier)
        self.parse_job = BlockParseJob(config, gateway, self.ledger)
        self.upload_runner = SingleFlight(self.upload_job)
        self.parse_runner = SingleFlight(self.parse_job)

    async def run_synchronization(self) -> bool:
        """One upload run. Returns False if the previous run is still active."""
        return await self.upload_runner.run()

    async def run_parse(self) -> bool:
        return await self.parse_runner.run()

    def build_scheduler(self, process_name: str = "br_sync", with_parse: bool = True) -> Scheduler:
        scheduler = Scheduler(process_name)
        scheduler.add_runner(self.upload_runner, self.config.upload_interval)
        if with_parse:
            scheduler.add_runner(self.parse_runner, self.config.parse_interval)
        return scheduler
