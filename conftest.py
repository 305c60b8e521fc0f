"""
Shared fixtures: a small ledger with three blocks, four transactions and
three accounts
"""

import os

os.environ.setdefault("EXPLORER_ENV", "test")

import pytest

from cache import MemoryCache
from ledger_store import LedgerStore

ADDR = "0x" + "a" * 40
OTHER = "0x" + "b" * 40
MINER = "0x" + "c" * 40


def block_hash(number: int) -> str:
    return "0x" + f"{number:064x}"


def tx_hash(n: int) -> str:
    return "0x" + f"{n:x}".rjust(64, "e")


def make_tx(n, block_number, sender, recipient, value="1000000000000000000", timestamp=None):
    return {
        "hash": tx_hash(n),
        "from": sender,
        "to": recipient,
        "value": value,
        "gas": 21000,
        "gasPrice": "20000000000",
        "gasUsed": 21000,
        "nonce": n,
        "input": "0x",
        "blockNumber": block_number,
        "timestamp": timestamp if timestamp is not None else 1_600_000_000 + block_number,
    }


def make_block(number, miner, transactions, extra_data="0xd883010817"):
    block = {
        "_id": f"internal-{number}",
        "number": number,
        "hash": block_hash(number),
        "parentHash": block_hash(number - 1),
        "timestamp": 1_600_000_000 + number,
        "miner": miner,
        "difficulty": "2000000",
        "totalDifficulty": str(2000000 * number),
        "gasUsed": 21000 * len(transactions),
        "gasLimit": 8000000,
        "size": 540,
        "nonce": "0x0000000000000042",
        "transactions": transactions,
    }
    if extra_data is not None:
        block["extraData"] = extra_data
    return block


@pytest.fixture
def ledger():
    """Blocks 98-100 with 1, 0 and 3 transactions"""
    tx_98 = make_tx(1, 98, ADDR, OTHER)
    tx_100_in = make_tx(2, 100, OTHER, ADDR, value="2500000000000000000")
    tx_100_self = make_tx(3, 100, ADDR, ADDR, value="0")
    tx_100_unrelated = make_tx(4, 100, OTHER, MINER)
    transactions = [tx_98, tx_100_in, tx_100_self, tx_100_unrelated]

    blocks = [
        make_block(98, MINER, [tx_98]),
        make_block(99, ADDR, [], extra_data=None),
        make_block(100, MINER, [tx_100_in, tx_100_self, tx_100_unrelated]),
    ]
    accounts = [
        {"address": ADDR, "balance": "1000"},
        {"address": OTHER, "balance": "2500"},
        {"address": MINER, "balance": "0"},
    ]
    return {"blocks": blocks, "transactions": transactions, "accounts": accounts}


@pytest.fixture
def store():
    """Empty in-memory ledger store"""
    return LedgerStore(":memory:")


@pytest.fixture
def seeded_store(store, ledger):
    store.insert_blocks(ledger["blocks"])
    store.insert_transactions(ledger["transactions"])
    store.upsert_accounts(ledger["accounts"])
    return store


@pytest.fixture
def memory_cache():
    return MemoryCache(max_size=100)
