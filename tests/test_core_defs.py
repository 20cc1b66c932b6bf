"""Tests for shared records and the block id."""

import hashlib
from datetime import datetime, timezone

import pytest

from blockrelay.core_defs import (
    ZERO_HASH,
    ActionResult,
    BlockBucket,
    BlockCandidate,
    BucketStatus,
    ChainState,
    compute_block_id,
    parse_chain_time,
)

GENESIS_HASH = "000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f"


class TestBlockId:

    def test_matches_sha256_of_height_and_hash(self):
        height = 840000
        expected = hashlib.sha256(height.to_bytes(8, "little") + bytes.fromhex(GENESIS_HASH)).hexdigest()
        assert compute_block_id(height, GENESIS_HASH) == expected

    def test_height_is_little_endian(self):
        a = compute_block_id(1, GENESIS_HASH)
        b = compute_block_id(1 << 56, GENESIS_HASH)
        assert a != b
        assert a == hashlib.sha256(b"\x01" + bytes(7) + bytes.fromhex(GENESIS_HASH)).hexdigest()

    def test_rejects_short_hash(self):
        with pytest.raises(ValueError):
            compute_block_id(1, "abcd")


class TestRecords:

    def test_candidate_from_rpc_header(self):
        header = {"height": 1, "hash": "11" * 32, "previousblockhash": GENESIS_HASH, "time": 1231469665}
        candidate = BlockCandidate.from_rpc_header(header)
        assert candidate == BlockCandidate(1, "11" * 32, GENESIS_HASH)

    def test_genesis_header_has_no_parent(self):
        candidate = BlockCandidate.from_rpc_header({"height": 0, "hash": GENESIS_HASH})
        assert candidate.previous_hash is None

    def test_bucket_from_row(self):
        row = {"bucket_id": 7, "height": 840001, "hash": "22" * 32, "status": 5, "size": 1500, "num_chunks": 2, "chunk_num": 2}
        bucket = BlockBucket.from_row(row, "sync1.xsat")
        assert bucket.synchronizer == "sync1.xsat"
        assert bucket.status == BucketStatus.WAITING_MINER_VERIFICATION
        assert bucket.block_size == 1500
        assert bucket.bucket_id == 7

    def test_chain_state_parser_falls_back_to_synchronizer(self):
        row = {"head_height": 840010, "parsing_height": 840008, "parsing_hash": "33" * 32,
               "parser": "", "synchronizer": "sync2.xsat", "parsed_expiration_time": "2024-05-01T12:00:00.000"}
        state = ChainState.from_row(row)
        assert state.current_parser == "sync2.xsat"
        assert state.parsed_expiration_time == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_chain_state_without_parsing_hash(self):
        assert ChainState.from_row({}).parsing_hash == ZERO_HASH

    def test_action_result_status(self):
        assert ActionResult("tx", {"status": "verify_pass"}).status == "verify_pass"
        assert ActionResult("tx").status is None


def test_parse_chain_time_accepts_trailing_z():
    assert parse_chain_time("2024-05-01T12:00:00Z") == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    assert parse_chain_time(None) is None
