"""Tests for slicing a block and pushing its chunks."""

from collections import Counter

import pytest

from blockrelay.bucket_manager import BucketManager
from blockrelay.core_defs import ActionResult, ChunkUploadError, LedgerActionError, LedgerRequestError
from blockrelay.ledger_service import LedgerService
from blockrelay.uploader import ChunkUploader, slice_data
from tests.helpers import ACCOUNT, block_hash

HEIGHT = 840006
HASH = block_hash(HEIGHT)


class TestSliceData:

    def test_last_chunk_is_shorter(self):
        chunks = slice_data(bytes(range(250)), 100)
        assert [c.sequence_id for c in chunks] == [0, 1, 2]
        assert [len(c.payload) for c in chunks] == [100, 100, 50]
        assert b"".join(c.payload for c in chunks) == bytes(range(250))

    def test_exact_multiple(self):
        assert len(slice_data(bytes(300), 100)) == 3

    def test_empty_data(self):
        assert slice_data(b"", 100) == []

    @pytest.mark.parametrize("size", [0, -1])
    def test_invalid_chunk_size(self, size):
        with pytest.raises(ValueError):
            slice_data(b"abc", size)


@pytest.fixture
def uploader(gateway, config, sleep):
    buckets = BucketManager(gateway, LedgerService(gateway, config), config)
    return ChunkUploader(gateway, buckets, config, sleep=sleep)


def pushed_ids(gateway):
    return Counter(call["chunk_id"] for call in gateway.calls("pushchunk"))


class TestUploadChunks:

    async def test_all_chunks_accepted_first_round(self, uploader, gateway, config, sleep):
        chunks = slice_data(bytes(350), config.chunk_size)

        await uploader.upload_chunks(ACCOUNT, HEIGHT, HASH, chunks)

        assert pushed_ids(gateway) == Counter({0: 1, 1: 1, 2: 1, 3: 1})
        assert gateway.calls("delbucket") == []
        assert sleep.calls == [config.settle_delay]

    async def test_chunk_payload_is_hex(self, uploader, gateway):
        await uploader.upload_chunks(ACCOUNT, HEIGHT, HASH, slice_data(b"\xab\xcd", 100))
        assert gateway.calls("pushchunk") == [
            {"synchronizer": ACCOUNT, "height": HEIGHT, "hash": HASH, "chunk_id": 0, "data": "abcd"},
        ]

    async def test_chunk_size_counts_raw_bytes(self, uploader, gateway, config):
        await uploader.upload_chunks(ACCOUNT, HEIGHT, HASH, slice_data(bytes(250), config.chunk_size))

        calls = sorted(gateway.calls("pushchunk"), key=lambda call: call["chunk_id"])
        hex_lengths = [len(call["data"]) for call in calls]
        assert hex_lengths == [2 * config.chunk_size, 2 * config.chunk_size, 100]

    async def test_transient_fault_is_retried_once(self, uploader, gateway, config):
        failed = set()

        def push(data):
            if data["chunk_id"] == 2 and 2 not in failed:
                failed.add(2)
                raise LedgerRequestError("timeout")
            return ActionResult(transaction_id=f"tx-{data['chunk_id']}")

        gateway.handlers["pushchunk"] = push

        await uploader.upload_chunks(ACCOUNT, HEIGHT, HASH, slice_data(bytes(350), config.chunk_size))

        assert pushed_ids(gateway) == Counter({0: 1, 1: 1, 2: 2, 3: 1})
        assert gateway.calls("delbucket") == []

    async def test_missing_transaction_id_counts_as_failure(self, uploader, gateway, config):
        gateway.script("pushchunk", ActionResult(transaction_id=None), ActionResult(transaction_id="tx"))

        await uploader.upload_chunks(ACCOUNT, HEIGHT, HASH, slice_data(bytes(50), config.chunk_size))

        assert pushed_ids(gateway) == Counter({0: 2})

    async def test_permanent_fault_deletes_bucket(self, uploader, gateway, config, sleep):
        def push(data):
            if data["chunk_id"] == 1:
                raise LedgerActionError("pushchunk", "assertion failure")
            return ActionResult(transaction_id="tx")

        gateway.handlers["pushchunk"] = push

        with pytest.raises(ChunkUploadError):
            await uploader.upload_chunks(ACCOUNT, HEIGHT, HASH, slice_data(bytes(350), config.chunk_size))

        assert pushed_ids(gateway) == Counter({0: 1, 1: config.max_chunk_rounds, 2: 1, 3: 1})
        assert gateway.calls("delbucket") == [{"synchronizer": ACCOUNT, "height": HEIGHT, "hash": HASH}]
        assert sleep.calls == []
