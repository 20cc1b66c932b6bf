# -----------------------------------------------------------------------------
# Project: BlockRelay v0.1
# File:    core_defs.py
# (c)      2025-2026 Wolfgang Lohmann
# License: MIT
# -----------------------------------------------------------------------------

# core_defs.py
'''
Common definitions shared by the resolver, the bucket manager, the uploader
and the verifier: status codes, data records, the error taxonomy and the
block id used as secondary key on the destination chain.
'''

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bsv.hash import sha256

logger = logging.getLogger(__name__)

ZERO_HASH = "0" * 64

# --- Table names on the destination chain ---
TABLE_BLOCK_BUCKETS = "blockbuckets"
TABLE_CONSENSUS_BLOCKS = "consensusblk"
TABLE_CHAIN_STATE = "chainstate"
TABLE_SYNCHRONIZERS = "synchronizer"


class BucketStatus(enum.IntEnum):
    """Status codes of a row in the blockbuckets table."""
    UPLOADING = 1
    UPLOAD_COMPLETE = 2
    VERIFY_MERKLE = 3
    VERIFY_PARENT_HASH = 4
    WAITING_MINER_VERIFICATION = 5
    VERIFY_FAIL = 6
    VERIFY_PASS = 7


# Statuses the verify action can still advance
IN_VERIFICATION = (
    BucketStatus.VERIFY_MERKLE,
    BucketStatus.VERIFY_PARENT_HASH,
    BucketStatus.WAITING_MINER_VERIFICATION,
)
PENDING_VERIFICATION = (BucketStatus.UPLOAD_COMPLETE,) + IN_VERIFICATION

# Status strings returned by the verify action
VERIFY_STATUS_MERKLE = "verify_merkle"
VERIFY_STATUS_PARENT_HASH = "verify_parent_hash"
VERIFY_STATUS_WAITING_MINER = "waiting_miner_verification"
VERIFY_STATUS_FAIL = "verify_fail"
VERIFY_STATUS_PASS = "verify_pass"
TRANSIENT_VERIFY_STATUSES = (
    VERIFY_STATUS_MERKLE,
    VERIFY_STATUS_PARENT_HASH,
    VERIFY_STATUS_WAITING_MINER,
)

PARSE_STATUS_PARSING = "parsing"


# region --- Errors ---
class BlockRelayError(Exception):
    """Base class of all errors raised by the synchronizer."""


class CapacityError(BlockRelayError):
    """The account cannot upload in this run."""


class AccountNotRegisteredError(CapacityError):
    pass


class NoFreeSlotError(CapacityError):
    pass


class TransportError(BlockRelayError):
    """A remote node could not be reached after all retries."""


class BitcoinRpcError(TransportError):
    pass


class LedgerRequestError(TransportError):
    pass


class LedgerActionError(BlockRelayError):
    """The destination chain rejected a transaction."""

    def __init__(self, action: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{action}: {message}")
        self.action = action
        self.details = details or {}


class BlockIntegrityError(BlockRelayError):
    """Raw block data does not match the requested hash."""


class BucketExistsError(BlockRelayError):
    pass


class ChunkUploadError(BlockRelayError):
    pass


class VerificationError(BlockRelayError):
    pass
# endregion


# region --- Records ---
@dataclass(frozen=True)
class BlockCandidate:
    height: int
    hash: str
    previous_hash: Optional[str] = None

    @classmethod
    def from_rpc_header(cls, header: Dict[str, Any]) -> "BlockCandidate":
        """Builds a candidate from a getblockheader response."""
        return cls(
            height=int(header["height"]),
            hash=header["hash"],
            previous_hash=header.get("previousblockhash") or None,
        )


@dataclass(frozen=True)
class ChunkTask:
    sequence_id: int
    payload: bytes


@dataclass
class BlockBucket:
    synchronizer: str
    height: int
    hash: str
    status: int
    block_size: int = 0
    num_chunks: int = 0
    chunks_received: int = 0
    bucket_id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], synchronizer: str) -> "BlockBucket":
        return cls(
            synchronizer=row.get("synchronizer", synchronizer),
            height=int(row["height"]),
            hash=row["hash"],
            status=int(row["status"]),
            block_size=int(row.get("size", row.get("block_size", 0))),
            num_chunks=int(row.get("num_chunks", 0)),
            chunks_received=int(row.get("chunk_num", row.get("received_num", 0))),
            bucket_id=int(row["bucket_id"]) if "bucket_id" in row else None,
        )


@dataclass
class Synchronizer:
    account: str
    num_slots: int

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Synchronizer":
        return cls(account=row["synchronizer"], num_slots=int(row.get("num_slots", 0)))


@dataclass
class ChainState:
    head_height: int
    parsing_height: int
    parsing_hash: str
    parser: Optional[str]
    synchronizer: Optional[str]
    parsed_expiration_time: Optional[datetime]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ChainState":
        return cls(
            head_height=int(row.get("head_height", 0)),
            parsing_height=int(row.get("parsing_height", 0)),
            parsing_hash=row.get("parsing_hash") or ZERO_HASH,
            parser=row.get("parser") or None,
            synchronizer=row.get("synchronizer") or None,
            parsed_expiration_time=parse_chain_time(row.get("parsed_expiration_time")),
        )

    @property
    def current_parser(self) -> Optional[str]:
        return self.parser or self.synchronizer


@dataclass
class ActionResult:
    transaction_id: Optional[str]
    return_value: Optional[Dict[str, Any]] = None

    @property
    def status(self) -> Optional[str]:
        if not self.return_value:
            return None
        return self.return_value.get("status")
# endregion


def parse_chain_time(value: Optional[str]) -> Optional[datetime]:
    """
    Parses an Antelope time_point string ("2024-05-01T12:00:00.000", implicitly UTC).
    """
    if not value:
        return None
    text = value[:-1] if value.endswith("Z") else value
    parsed = datetime.fromisoformat(text)
    return parsed.replace(tzinfo=timezone.utc)


def compute_block_id(height: int, block_hash: str) -> str:
    """
    Computes the block id used as checksum256 key on the destination chain.

    Args:
        height (int): Block height, serialized as 8 bytes little-endian.
        block_hash (str): Block hash as 64 hex chars, appended byte for byte.

    Returns:
        str: sha256 of the 40 byte buffer as lowercase hex.
    """
    hash_bytes = bytes.fromhex(block_hash)
    if len(hash_bytes) != 32:
        raise ValueError(f"Block hash must be 32 bytes, got {len(hash_bytes)}")
    return sha256(height.to_bytes(8, byteorder="little") + hash_bytes).hex()
