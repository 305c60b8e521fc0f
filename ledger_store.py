"""
Ledger document store
SQLite-backed storage for blocks, transactions and accounts with the
indexes the explorer queries rely on
"""

import json
import logging
import sqlite3
import threading
from decimal import Context, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# Balance sums must not round; 256-bit amounts need 78 digits
SUM_CONTEXT = Context(prec=100)


class StoreError(Exception):
    """Raised when the underlying store cannot answer a query"""


def _lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if isinstance(value, str) else value


class LedgerStore:
    """
    Read-mostly document store for ledger data.

    Each collection keeps the full document as JSON next to the indexed
    columns. Blocks keep their embedded transaction list; the hashes of
    those embedded entries are indexed separately from the flat
    transaction collection, so the two lookup paths stay independent.
    """

    def __init__(self, db_path: str = ":memory:"):
        """Initialize store"""
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self.lock = threading.RLock()
        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema"""
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            cursor = self.conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS blocks (
                    number INTEGER PRIMARY KEY,
                    hash TEXT NOT NULL,
                    miner TEXT,
                    doc TEXT NOT NULL
                )
            """)
            cursor.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_block_hash ON blocks(hash)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_block_miner ON blocks(miner)")

            # Hashes of the transactions embedded in each block document
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS block_transactions (
                    hash TEXT NOT NULL,
                    block_number INTEGER NOT NULL
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_block_tx_hash ON block_transactions(hash)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS transactions (
                    hash TEXT PRIMARY KEY,
                    from_addr TEXT,
                    to_addr TEXT,
                    block_number INTEGER NOT NULL,
                    doc TEXT NOT NULL
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_tx_from ON transactions(from_addr)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_tx_to ON transactions(to_addr)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_tx_block ON transactions(block_number)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    address TEXT PRIMARY KEY,
                    balance TEXT NOT NULL
                )
            """)

            self.conn.commit()
            logger.info(f"Ledger store initialized ({self.db_path})")
        except Exception as e:
            logger.error(f"Database initialization error: {e}")
            raise

    # ------- Low level -------

    def _fetch(self, sql: str, params: Sequence[Any] = ()) -> List[Tuple]:
        try:
            with self.lock:
                cursor = self.conn.cursor()
                cursor.execute(sql, params)
                return cursor.fetchall()
        except sqlite3.Error as e:
            logger.error(f"Store query failed: {e}")
            raise StoreError(str(e)) from e

    def _fetch_docs(self, sql: str, params: Sequence[Any] = (), drop: Iterable[str] = ()) -> List[Dict[str, Any]]:
        docs = []
        for row in self._fetch(sql, params):
            doc = json.loads(row[0])
            for key in drop:
                doc.pop(key, None)
            docs.append(doc)
        return docs

    def _fetch_one_doc(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        docs = self._fetch_docs(sql, params)
        return docs[0] if docs else None

    def _count(self, sql: str, params: Sequence[Any] = ()) -> int:
        return int(self._fetch(sql, params)[0][0])

    def _write(self, statements: List[Tuple[str, Sequence[Any]]]) -> None:
        try:
            with self.lock:
                cursor = self.conn.cursor()
                for sql, params in statements:
                    cursor.execute(sql, params)
                self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            logger.error(f"Store write failed: {e}")
            raise StoreError(str(e)) from e

    # ------- Bulk load (used by the ingester and fixtures) -------

    def insert_blocks(self, blocks: Iterable[Dict[str, Any]]) -> None:
        """Insert or replace block documents, including embedded transactions"""
        statements: List[Tuple[str, Sequence[Any]]] = []
        for block in blocks:
            number = int(block["number"])
            # Embedded hashes are stored lower-cased so the doc agrees with its index
            transactions = [dict(tx, hash=_lower(tx.get("hash"))) for tx in block.get("transactions") or []]
            doc = dict(block, transactions=transactions) if "transactions" in block else block
            statements.append((
                "INSERT OR REPLACE INTO blocks (number, hash, miner, doc) VALUES (?, ?, ?, ?)",
                (number, _lower(block["hash"]), _lower(block.get("miner")), json.dumps(doc)),
            ))
            statements.append(("DELETE FROM block_transactions WHERE block_number = ?", (number,)))
            for tx in transactions:
                statements.append((
                    "INSERT INTO block_transactions (hash, block_number) VALUES (?, ?)",
                    (_lower(tx.get("hash")), number),
                ))
        self._write(statements)

    def insert_transactions(self, transactions: Iterable[Dict[str, Any]]) -> None:
        """Insert or replace flat transaction documents"""
        self._write([
            (
                "INSERT OR REPLACE INTO transactions (hash, from_addr, to_addr, block_number, doc) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    _lower(tx["hash"]),
                    _lower(tx.get("from")),
                    _lower(tx.get("to")),
                    int(tx["blockNumber"]),
                    json.dumps(tx),
                ),
            )
            for tx in transactions
        ])

    def upsert_accounts(self, accounts: Iterable[Dict[str, Any]]) -> None:
        """Insert or replace account balances"""
        self._write([
            (
                "INSERT OR REPLACE INTO accounts (address, balance) VALUES (?, ?)",
                (_lower(account["address"]), str(account["balance"])),
            )
            for account in accounts
        ])

    # ------- Blocks -------

    def find_block_by_number(self, number: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one_doc("SELECT doc FROM blocks WHERE number = ?", (number,))

    def find_block_by_hash(self, block_hash: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one_doc("SELECT doc FROM blocks WHERE hash = ?", (block_hash,))

    def find_block_containing_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Block whose embedded transaction list holds tx_hash"""
        return self._fetch_one_doc(
            """
            SELECT b.doc FROM blocks b
            JOIN block_transactions bt ON bt.block_number = b.number
            WHERE bt.hash = ?
            LIMIT 1
            """,
            (tx_hash,),
        )

    def latest_blocks(self, limit: int) -> List[Dict[str, Any]]:
        """Newest blocks first, without their embedded transactions"""
        return self._fetch_docs(
            "SELECT doc FROM blocks ORDER BY number DESC LIMIT ?",
            (limit,),
            drop=("transactions",),
        )

    def latest_block_number(self) -> Optional[int]:
        rows = self._fetch("SELECT MAX(number) FROM blocks")
        return rows[0][0]

    def count_mined_blocks(self, miner: str) -> int:
        return self._count("SELECT COUNT(*) FROM blocks WHERE miner = ?", (miner,))

    # ------- Transactions (flat collection) -------

    def find_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one_doc("SELECT doc FROM transactions WHERE hash = ?", (tx_hash,))

    def find_address_transactions(
        self,
        address: str,
        ascending: bool = False,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Transactions sent from or to address, ordered by block number"""
        direction = "ASC" if ascending else "DESC"
        return self._fetch_docs(
            f"""
            SELECT doc FROM transactions
            WHERE from_addr = ? OR to_addr = ?
            ORDER BY block_number {direction}, rowid {direction}
            LIMIT ? OFFSET ?
            """,
            (address, address, -1 if limit is None else limit, skip),
        )

    def count_address_transactions(self, address: str) -> int:
        return self._count(
            "SELECT COUNT(*) FROM transactions WHERE from_addr = ? OR to_addr = ?",
            (address, address),
        )

    def latest_transactions(self, limit: int) -> List[Dict[str, Any]]:
        return self._fetch_docs(
            "SELECT doc FROM transactions ORDER BY block_number DESC, rowid DESC LIMIT ?",
            (limit,),
        )

    def count_transactions_by_block(self, min_block_number: int) -> Dict[int, int]:
        """Transaction counts grouped by block number, for blocks >= min_block_number"""
        rows = self._fetch(
            """
            SELECT block_number, COUNT(*) FROM transactions
            WHERE block_number >= ?
            GROUP BY block_number
            """,
            (min_block_number,),
        )
        return {int(number): int(count) for number, count in rows}

    # ------- Accounts -------

    def find_account(self, address: str) -> Optional[Dict[str, Any]]:
        rows = self._fetch("SELECT address, balance FROM accounts WHERE address = ?", (address,))
        if not rows:
            return None
        return {"address": rows[0][0], "balance": rows[0][1]}

    def sum_balances(self) -> Decimal:
        """Sum of every account balance; zero for an empty collection"""
        total = Decimal(0)
        for (balance,) in self._fetch("SELECT balance FROM accounts"):
            try:
                total = SUM_CONTEXT.add(total, Decimal(balance))
            except InvalidOperation as e:
                logger.error(f"Unparseable balance in store: {balance!r}")
                raise StoreError(f"invalid balance {balance!r}") from e
        return total

    def count_accounts(self) -> int:
        return self._count("SELECT COUNT(*) FROM accounts")

    def richest_accounts(self, skip: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        """Accounts by exact balance, largest first; ties break on address"""
        ranked = []
        for address, balance in self._fetch("SELECT address, balance FROM accounts"):
            try:
                ranked.append((-Decimal(balance), address, balance))
            except InvalidOperation as e:
                logger.error(f"Unparseable balance in store: {balance!r}")
                raise StoreError(f"invalid balance {balance!r}") from e
        ranked.sort()
        return [
            {"address": address, "balance": balance}
            for _, address, balance in ranked[skip:skip + limit]
        ]
