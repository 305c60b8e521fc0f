"""
Explorer query services
Address history, aggregates, dashboard feeds and point lookups over the
ledger store, each returning a QueryResult the HTTP layer renders
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from cache import MemoryCache
from config import config
from ledger_store import LedgerStore, StoreError
from views import (
    extract_transaction_from_block,
    filter_transactions_for_address,
    normalize_amount,
    project_block,
    project_block_list,
    project_transaction,
)

logger = logging.getLogger(__name__)

WRONG_BLOCK_REASON = "Wrong block data, try another one"
MISSING_TX_REASON = "Cannot find transaction"
MISSING_ADDRESS_REASON = "Cannot find address"

# Grid columns that may be sorted: block number and date
BLOCK_NUMBER_COLUMN = 1
DATE_COLUMN = 6
SORTABLE_COLUMNS = {BLOCK_NUMBER_COLUMN, DATE_COLUMN}

# Hash identifiers are longer than any block number we accept
HASH_MIN_LENGTH = 61


# ==================== RESULT TYPE ====================

class ErrorKind(Enum):
    """Why a query did not produce its full answer"""
    NOT_FOUND = "not_found"
    CLIENT_INPUT = "client_input"
    STORE_FAULT = "store_fault"


@dataclass
class QueryError:
    kind: ErrorKind
    reason: str


@dataclass
class QueryResult:
    """
    Outcome of a service call.

    data holds the best answer available even when error is set, so a
    partial result can still be rendered. failed lists the independent
    sub-queries that could not run.
    """
    data: Any = None
    error: Optional[QueryError] = None
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed

    @property
    def partial(self) -> bool:
        return self.error is None and bool(self.failed)

    @classmethod
    def success(cls, data: Any, failed: Optional[List[str]] = None) -> "QueryResult":
        return cls(data=data, failed=list(failed or []))

    @classmethod
    def not_found(cls, reason: str, data: Any = None) -> "QueryResult":
        return cls(data=data, error=QueryError(ErrorKind.NOT_FOUND, reason))

    @classmethod
    def client_error(cls, reason: str, data: Any = None) -> "QueryResult":
        return cls(data=data, error=QueryError(ErrorKind.CLIENT_INPUT, reason))

    @classmethod
    def store_fault(cls, reason: str, data: Any = None) -> "QueryResult":
        return cls(data=data, error=QueryError(ErrorKind.STORE_FAULT, reason))


def parse_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Integer from a request value, default when it is not one"""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


# ==================== ADDRESS QUERIES ====================

class AddressQueryService:
    """Transaction history and activity counters for one address"""

    def __init__(self, store: LedgerStore, page_size: int = config.ADDR_PAGE_SIZE):
        self.store = store
        self.page_size = page_size

    @staticmethod
    def is_ascending(sort_column: Optional[int], sort_direction: Optional[str]) -> bool:
        # Only block number / date ascending is honoured; everything else is newest first
        return sort_column in SORTABLE_COLUMNS and (sort_direction or "").lower() == "asc"

    def list_transactions(
        self,
        address: str,
        start: Optional[int] = 0,
        limit: Optional[int] = None,
        sort_column: Optional[int] = None,
        sort_direction: Optional[str] = None,
        draw: Optional[int] = None,
        count: Optional[int] = None,
    ) -> QueryResult:
        """One DataTables page of transactions sent from or to address"""
        address = address.lower()
        start = start if start is not None and start >= 0 else 0
        limit = limit if limit is not None and limit > 0 else self.page_size

        page = {
            "draw": draw,
            "recordsTotal": count,
            "recordsFiltered": count,
            "mined": 0,
            "data": [],
        }

        try:
            docs = self.store.find_address_transactions(
                address,
                ascending=self.is_ascending(sort_column, sort_direction),
                skip=start,
                limit=limit,
            )
        except StoreError as e:
            logger.warning(f"Address transactions unavailable for {address}: {e}")
            return QueryResult.store_fault(str(e), data=page)

        page["data"] = filter_transactions_for_address(docs or [], address)
        return QueryResult.success(page)

    def count_activity(self, address: str, count: Optional[int] = None) -> QueryResult:
        """
        Transaction count and mined-block count for address.

        Both counters run independently; a counter whose query fails keeps
        the caller-supplied default and is listed in the result's failed
        sub-queries.
        """
        address = address.lower()
        counters = {"recordsFiltered": count, "recordsTotal": count, "mined": 0}
        failed = []

        try:
            tx_count = self.store.count_address_transactions(address)
            counters["recordsTotal"] = tx_count
            counters["recordsFiltered"] = tx_count
        except StoreError as e:
            logger.warning(f"Transaction count failed for {address}: {e}")
            failed.append("transactions")

        try:
            counters["mined"] = self.store.count_mined_blocks(address)
        except StoreError as e:
            logger.warning(f"Mined block count failed for {address}: {e}")
            failed.append("mined")

        return QueryResult.success(counters, failed=failed)


# ==================== AGGREGATES ====================

class AggregateQueryService:
    """Cross-document aggregates: total supply and per-block transaction counts"""

    def __init__(self, store: LedgerStore, cache: MemoryCache, ttl: int = config.CACHE_TTL_SHORT):
        self.store = store
        self.cache = cache
        self.ttl = ttl

    def total_supply(self) -> QueryResult:
        """Sum of all account balances, as a string"""
        try:
            supply = self.cache.get_or_set(
                "total_supply", self.ttl, lambda: str(normalize_amount(self.store.sum_balances()))
            )
        except StoreError as e:
            logger.error(f"Error getting total supply: {e}")
            return QueryResult.store_fault(str(e))
        return QueryResult.success(supply)

    def latest_blocks_with_tx_counts(self, limit: int) -> QueryResult:
        """
        The newest `limit` blocks, each carrying its transaction count as txn.

        Counts are aggregated only for block numbers at or above the oldest
        block of the page. If that aggregation fails the blocks are still
        returned, with txn left as None.
        """
        try:
            docs = self.store.latest_blocks(limit)
        except StoreError as e:
            logger.error(f"Block page error: {e}")
            return QueryResult.store_fault(str(e))

        if not docs:
            return QueryResult.success([])

        oldest = min(int(doc["number"]) for doc in docs)
        failed = []
        try:
            counts: Optional[Dict[int, int]] = self.store.count_transactions_by_block(oldest)
        except StoreError as e:
            logger.warning(f"Transaction counters unavailable from block {oldest}: {e}")
            counts = None
            failed.append("tx_counts")

        blocks = []
        for doc, view in zip(docs, project_block_list(docs)):
            view["txn"] = counts.get(int(doc["number"]), 0) if counts is not None else None
            blocks.append(view)
        return QueryResult.success(blocks, failed=failed)


# ==================== DASHBOARD FEEDS ====================

class FeedAction(Enum):
    """Named dashboard feeds"""
    LATEST_BLOCKS = "latest_blocks"
    LATEST_TXS = "latest_txs"

    @classmethod
    def parse(cls, name: Any) -> Optional["FeedAction"]:
        if not isinstance(name, str):
            return None
        try:
            return cls(name.strip().lower())
        except ValueError:
            return None


class DashboardFeedService:
    """'Latest N' feeds for the dashboard widgets"""

    def __init__(
        self,
        store: LedgerStore,
        aggregates: AggregateQueryService,
        default_limit: int = config.DATA_MAX_ENTRIES,
        max_limit: int = config.DATA_MAX_ENTRIES_CAP,
    ):
        self.store = store
        self.aggregates = aggregates
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.handlers: Dict[FeedAction, Callable[[int], QueryResult]] = {
            FeedAction.LATEST_BLOCKS: self.latest_blocks,
            FeedAction.LATEST_TXS: self.latest_transactions,
        }

    def resolve_limit(self, raw_limit: Any) -> int:
        limit = parse_int(raw_limit)
        if limit is None or limit < 1:
            return self.default_limit
        return min(limit, self.max_limit)

    def feed(self, action_name: Any, raw_limit: Any = None) -> QueryResult:
        action = FeedAction.parse(action_name)
        if action is None:
            logger.error(f"Invalid Request: {action_name}")
            return QueryResult.client_error(f"Unknown action: {action_name}")
        return self.handlers[action](self.resolve_limit(raw_limit))

    def latest_blocks(self, limit: int) -> QueryResult:
        result = self.aggregates.latest_blocks_with_tx_counts(limit)
        if result.error:
            return result
        return QueryResult.success({"blocks": result.data}, failed=result.failed)

    def latest_transactions(self, limit: int) -> QueryResult:
        try:
            txs = self.store.latest_transactions(limit)
        except StoreError as e:
            logger.error(f"Latest transactions error: {e}")
            return QueryResult.store_fault(str(e))
        return QueryResult.success({"txs": [project_transaction(tx) for tx in txs]})


# ==================== POINT LOOKUPS ====================

class PointLookupService:
    """Single block, transaction and account lookups"""

    def __init__(self, store: LedgerStore):
        self.store = store

    def block(self, identifier: str) -> QueryResult:
        """Block by hash (long identifiers) or by number (digits only)"""
        identifier = (identifier or "").strip()
        try:
            if len(identifier) >= HASH_MIN_LENGTH:
                doc = self.store.find_block_by_hash(identifier.lower())
            elif identifier.isascii() and identifier.isdigit():
                doc = self.store.find_block_by_number(int(identifier))
            else:
                return QueryResult.client_error(WRONG_BLOCK_REASON)
        except StoreError as e:
            return QueryResult.store_fault(str(e))

        if not doc:
            return QueryResult.not_found(WRONG_BLOCK_REASON)
        return QueryResult.success(project_block(doc))

    def block_by_number(self, raw_number: Any) -> QueryResult:
        number = parse_int(raw_number)
        if number is None:
            return QueryResult.client_error(f"Invalid block number: {raw_number}")
        try:
            doc = self.store.find_block_by_number(number)
        except StoreError as e:
            logger.error(f"BlockFind error: {e}")
            return QueryResult.store_fault(str(e))
        if not doc:
            logger.info(f"Block {number} not found")
            return QueryResult.not_found(f"Block {number} not found")
        return QueryResult.success(project_block(doc))

    def transaction_in_block(self, tx_hash: str) -> QueryResult:
        """Transaction found through its block's embedded transaction list"""
        tx_hash = tx_hash.lower()
        try:
            block = self.store.find_block_containing_transaction(tx_hash)
        except StoreError as e:
            logger.error(f"Error during find tx: {tx_hash}: {e}")
            return QueryResult.store_fault(str(e), data={})

        if not block:
            logger.info(f"missing: {tx_hash}")
            return QueryResult.not_found(MISSING_TX_REASON, data={})

        tx = extract_transaction_from_block(block, "hash", tx_hash)
        if not tx:
            return QueryResult.not_found(MISSING_TX_REASON, data={})
        return QueryResult.success(tx)

    def transaction_by_hash(self, tx_hash: str) -> QueryResult:
        """Transaction found in the flat transaction collection"""
        tx_hash = tx_hash.lower()
        try:
            doc = self.store.find_transaction(tx_hash)
        except StoreError as e:
            logger.error(f"Transaction lookup error for {tx_hash}: {e}")
            return QueryResult.store_fault(MISSING_TX_REASON)
        if not doc:
            return QueryResult.not_found(MISSING_TX_REASON)
        return QueryResult.success(project_transaction(doc))

    def account(self, address: str) -> QueryResult:
        try:
            doc = self.store.find_account(address.lower())
        except StoreError as e:
            return QueryResult.store_fault(str(e))
        if not doc:
            return QueryResult.not_found(MISSING_ADDRESS_REASON)
        return QueryResult.success({"address": address, "balance": normalize_amount(doc["balance"])})


# ==================== RICH LIST ====================

class RichListService:
    """Accounts ranked by balance"""

    def __init__(self, store: LedgerStore, cache: MemoryCache, ttl: int = config.CACHE_TTL_LONG):
        self.store = store
        self.cache = cache
        self.ttl = ttl

    def page(self, start: Optional[int] = 0, limit: Optional[int] = None, draw: Optional[int] = None) -> QueryResult:
        start = start if start is not None and start >= 0 else 0
        limit = limit if limit is not None and limit > 0 else config.ADDR_PAGE_SIZE
        key = f"rich_list:{start}:{limit}"

        try:
            listing = self.cache.get_or_set(key, self.ttl, lambda: self._calculate(start, limit))
        except StoreError as e:
            logger.error(f"Rich list error: {e}")
            return QueryResult.store_fault(
                str(e), data={"draw": draw, "recordsTotal": 0, "recordsFiltered": 0, "data": []}
            )
        return QueryResult.success(dict(listing, draw=draw))

    def _calculate(self, start: int, limit: int) -> Dict[str, Any]:
        total_accounts = self.store.count_accounts()
        supply = self.store.sum_balances()
        rows = []
        for rank, account in enumerate(self.store.richest_accounts(start, limit), start + 1):
            share = float(Decimal(account["balance"]) / supply * 100) if supply else 0.0
            rows.append([rank, account["address"], normalize_amount(account["balance"]), share])
        return {"recordsTotal": total_accounts, "recordsFiltered": total_accounts, "data": rows}
