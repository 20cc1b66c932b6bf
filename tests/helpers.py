"""Fakes for the source chain and the destination gateway."""

from typing import Any, Callable, Dict, List, Optional, Tuple

from blockrelay.core_defs import (
    TABLE_BLOCK_BUCKETS,
    ActionResult,
    BlockCandidate,
    compute_block_id,
)
from blockrelay.ledger_api import TableQuery

ACCOUNT = "sync1.xsat"


def block_hash(height: int, branch: str = "0") -> str:
    """64 hex chars, unique per (height, branch); branch must be one hex digit."""
    return branch + format(height, "063x")


def make_chain(start: int, end: int, branch: str = "0", parent_branch: Optional[str] = None) -> List[BlockCandidate]:
    """
    Headers for heights start..end. The first block points to the block at
    start - 1 on parent_branch (default: the same branch); height 0 has no parent.
    """
    chain = []
    for height in range(start, end + 1):
        if height == 0:
            previous = None
        elif height == start:
            previous = block_hash(height - 1, parent_branch or branch)
        else:
            previous = block_hash(height - 1, branch)
        chain.append(BlockCandidate(height=height, hash=block_hash(height, branch), previous_hash=previous))
    return chain


class FakeBtc:
    """In-memory source chain; the main chain is what height lookups return."""

    def __init__(self, main_chain: List[BlockCandidate], extra: Optional[List[BlockCandidate]] = None):
        self.headers: Dict[str, BlockCandidate] = {b.hash: b for b in main_chain + (extra or [])}
        self.by_height: Dict[int, BlockCandidate] = {b.height: b for b in main_chain}
        self.best = main_chain[-1]
        self.raw_blocks: Dict[str, bytes] = {}
        self.header_requests: List[str] = []

    async def get_best_block_hash(self) -> str:
        return self.best.hash

    async def get_block_header(self, hash_: str) -> BlockCandidate:
        self.header_requests.append(hash_)
        return self.headers[hash_]

    async def get_block_header_by_height(self, height: int) -> BlockCandidate:
        return self.by_height[height]

    async def get_raw_block(self, hash_: str, height: Optional[int] = None) -> bytes:
        return self.raw_blocks.get(hash_, b"\x01" * 300)


class FakeGateway:
    """
    Table-backed stand-in for LedgerGateway.

    Rows live per (code, table, scope). Secondary lookups on blockbuckets
    filter on status, tertiary lookups filter on the block id of the row.
    Actions are recorded; their outcomes come from a handler, a script or
    default to a plain transaction id.
    """

    def __init__(self):
        self.tables: Dict[Tuple[str, str, str], List[Dict[str, Any]]] = {}
        self.actions: List[Tuple[str, str, Dict[str, Any]]] = []
        self.handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {}
        self.scripts: Dict[str, List[Any]] = {}
        self.queries: List[TableQuery] = []

    def set_rows(self, code: str, table: str, rows: List[Dict[str, Any]], scope: Optional[str] = None):
        self.tables[(code, table, scope or code)] = rows

    def script(self, action: str, *outcomes: Any):
        self.scripts[action] = list(outcomes)

    def calls(self, action: str) -> List[Dict[str, Any]]:
        return [data for _, name, data in self.actions if name == action]

    async def get_table_rows(self, query: TableQuery) -> List[Dict[str, Any]]:
        self.queries.append(query)
        rows = list(self.tables.get((query.code, query.table, query.scope or query.code), []))
        if query.index_position == "secondary" and query.table == TABLE_BLOCK_BUCKETS:
            rows = [r for r in rows if query.lower_bound <= r["status"] <= query.upper_bound]
        elif query.index_position == "tertiary":
            rows = [r for r in rows if compute_block_id(int(r["height"]), r["hash"]) == query.lower_bound]
        if query.reverse:
            rows.reverse()
        if query.limit:
            rows = rows[:query.limit]
        return rows

    async def submit_action(self, contract: str, action: str, data: Dict[str, Any]) -> ActionResult:
        self.actions.append((contract, action, dict(data)))
        if action in self.handlers:
            outcome = self.handlers[action](data)
        elif self.scripts.get(action):
            outcome = self.scripts[action].pop(0)
        else:
            outcome = ActionResult(transaction_id=f"tx{len(self.actions)}")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


def bucket_row(height: int, status: int, branch: str = "0", synchronizer: str = ACCOUNT, **extra) -> Dict[str, Any]:
    row = {"synchronizer": synchronizer, "height": height, "hash": block_hash(height, branch), "status": status}
    row.update(extra)
    return row


