"""Tests for driving a bucket through verification."""

import pytest

from blockrelay.bucket_manager import BucketManager
from blockrelay.core_defs import ActionResult, LedgerActionError, VerificationError
from blockrelay.ledger_service import LedgerService
from blockrelay.verifier import VerificationDriver
from tests.helpers import ACCOUNT, block_hash

HEIGHT = 840006
HASH = block_hash(HEIGHT)


def status(value):
    return ActionResult(transaction_id="tx", return_value={"status": value})


@pytest.fixture
def verifier(gateway, config, sleep):
    buckets = BucketManager(gateway, LedgerService(gateway, config), config)
    return VerificationDriver(gateway, buckets, config, sleep=sleep)


class TestVerifyBlock:

    async def test_merkle_then_miner_then_pass(self, verifier, gateway, config, sleep):
        gateway.script("verify", status("verify_merkle"), status("waiting_miner_verification"), status("verify_pass"))

        result = await verifier.verify_block(ACCOUNT, HEIGHT, HASH)

        assert result.status == "verify_pass"
        assert len(gateway.calls("verify")) == 3
        assert sleep.calls == [config.miner_verification_delay]
        assert gateway.calls("verify")[0] == {"synchronizer": ACCOUNT, "height": HEIGHT, "hash": HASH}

    async def test_parent_hash_phase_does_not_wait(self, verifier, gateway, sleep):
        gateway.script("verify", status("verify_parent_hash"), status("verify_pass"))

        await verifier.verify_block(ACCOUNT, HEIGHT, HASH)

        assert sleep.calls == []

    async def test_fail_deletes_bucket(self, verifier, gateway):
        gateway.script("verify", status("verify_merkle"), status("verify_fail"))

        with pytest.raises(VerificationError):
            await verifier.verify_block(ACCOUNT, HEIGHT, HASH)

        assert gateway.calls("delbucket") == [{"synchronizer": ACCOUNT, "height": HEIGHT, "hash": HASH}]

    async def test_other_terminal_status_is_returned(self, verifier, gateway):
        gateway.script("verify", status("upload_complete"))
        result = await verifier.verify_block(ACCOUNT, HEIGHT, HASH)
        assert result.status == "upload_complete"
        assert gateway.calls("delbucket") == []

    async def test_rejected_action_propagates(self, verifier, gateway):
        gateway.script("verify", LedgerActionError("verify", "bucket does not exist"))
        with pytest.raises(LedgerActionError):
            await verifier.verify_block(ACCOUNT, HEIGHT, HASH)
