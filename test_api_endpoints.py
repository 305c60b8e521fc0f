import json
from unittest.mock import patch, Mock

import pytest

from conftest import ADDR, MINER, OTHER, block_hash, tx_hash
from explorer_backend import app, cache, limiter, relay, store
from ledger_store import StoreError


@pytest.fixture(autouse=True)
def seed_store(ledger):
    """Reload the app's in-memory store and drop cached aggregates"""
    for table in ("blocks", "block_transactions", "transactions", "accounts"):
        store.conn.execute(f"DELETE FROM {table}")
    store.conn.commit()
    store.insert_blocks(ledger["blocks"])
    store.insert_transactions(ledger["transactions"])
    store.upsert_accounts(ledger["accounts"])
    cache.clear()
    limiter.reset_client()


@pytest.fixture
def client():
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


def body_of(resp):
    return json.loads(resp.data.decode())


def test_addr_page(client):
    resp = client.post("/addr", json={"addr": ADDR, "count": 3, "start": 0, "length": 10, "draw": 7})
    assert resp.status_code == 200
    data = body_of(resp)
    assert data["draw"] == 7
    assert data["recordsTotal"] == 3
    assert data["recordsFiltered"] == 3
    assert data["mined"] == 0
    assert [row[1] for row in data["data"]] == [100, 100, 98]


def test_addr_ascending_json_order(client):
    resp = client.post("/addr", json={"addr": ADDR, "order": [{"column": 1, "dir": "asc"}]})
    numbers = [row[1] for row in body_of(resp)["data"]]
    assert numbers == sorted(numbers)


def test_addr_ascending_form_order(client):
    resp = client.post("/addr", data={
        "addr": ADDR, "start": "0", "length": "10", "draw": "1",
        "order[0][column]": "6", "order[0][dir]": "asc",
    })
    numbers = [row[1] for row in body_of(resp)["data"]]
    assert numbers == [98, 100, 100]


def test_addr_ignores_other_order(client):
    resp = client.post("/addr", json={"addr": ADDR, "order": [{"column": 3, "dir": "asc"}]})
    numbers = [row[1] for row in body_of(resp)["data"]]
    assert numbers == sorted(numbers, reverse=True)


def test_addr_missing_address(client):
    resp = client.post("/addr", json={"count": 1})
    assert resp.status_code == 400


def test_addr_store_fault_gives_empty_data(client):
    with patch.object(store, "find_address_transactions", side_effect=StoreError("down")):
        resp = client.post("/addr", json={"addr": ADDR, "draw": 2})
    assert resp.status_code == 200
    assert body_of(resp)["data"] == []


def test_addr_count(client):
    resp = client.post("/addr_count", json={"addr": MINER.upper().replace("0X", "0x"), "count": 0})
    assert body_of(resp) == {"recordsTotal": 1, "recordsFiltered": 1, "mined": 2}


def test_addr_count_keeps_default_on_failure(client):
    with patch.object(store, "count_address_transactions", side_effect=StoreError("down")):
        resp = client.post("/addr_count", json={"addr": MINER, "count": 12})
    assert body_of(resp) == {"recordsTotal": 12, "recordsFiltered": 12, "mined": 2}


def test_block(client):
    data = body_of(client.post("/block", json={"block": "99"}))
    assert data["number"] == 99
    assert data["extraData"] is None
    assert "transactions" not in data


def test_block_not_found(client):
    assert body_of(client.post("/block", json={"block": "4242"})) == {"error": True}
    assert body_of(client.post("/block", json={"block": "abc"})) == {"error": True}


def test_tx_from_block(client):
    data = body_of(client.post("/tx", json={"tx": tx_hash(1)}))
    assert data["hash"] == tx_hash(1)
    assert data["timestamp"] == 1_600_000_098


def test_tx_missing_is_empty_object(client):
    resp = client.post("/tx", json={"tx": tx_hash(99)})
    assert resp.status_code == 200
    assert body_of(resp) == {}


def test_data_latest_blocks(client):
    data = body_of(client.post("/data", json={"action": "latest_blocks", "limit": 3}))
    assert [b["txn"] for b in data["blocks"]] == [3, 0, 1]


def test_data_latest_txs_default_limit(client):
    data = body_of(client.post("/data", data={"action": "LATEST_TXS", "limit": "many"}))
    assert len(data["txs"]) == 4


def test_data_unknown_action(client):
    resp = client.post("/data", json={"action": "wipe"})
    assert resp.status_code == 400
    assert resp.data == b""


def test_data_missing_action(client):
    assert client.post("/data", json={}).status_code == 400


def test_data_store_fault(client):
    with patch.object(store, "latest_blocks", side_effect=StoreError("down")):
        resp = client.post("/data", json={"action": "latest_blocks"})
    assert body_of(resp) == {"error": True}


def test_total(client):
    resp = client.get("/total")
    assert resp.status_code == 200
    assert resp.data.decode() == "3500"


def test_total_empty(client):
    store.conn.execute("DELETE FROM accounts")
    store.conn.commit()
    assert client.get("/total").data.decode() == "0"


def test_total_store_fault_keeps_legacy_text(client):
    with patch.object(store, "sum_balances", side_effect=StoreError("down")):
        resp = client.get("/total")
    assert resp.data.decode() == "Error getting total supply"


def test_v1_block_by_number_and_hash(client):
    by_number = body_of(client.get("/v1/block=100"))
    by_hash = body_of(client.get(f"/v1/block={block_hash(100)}"))

    assert by_number["success"] is True
    assert by_number["data"] == by_hash["data"]
    assert by_number["data"]["hash"] == block_hash(100)


def test_v1_block_wrong_data(client):
    data = body_of(client.get("/v1/block=latest"))
    assert data == {"success": False, "reason": "Wrong block data, try another one"}


def test_v1_tx(client):
    data = body_of(client.get(f"/v1/tx={tx_hash(2).upper().replace('0X', '0x')}"))
    assert data["success"] is True
    assert data["data"]["from"] == OTHER
    assert data["data"]["to"] == ADDR


def test_v1_tx_missing(client):
    data = body_of(client.get(f"/v1/tx={tx_hash(99)}"))
    assert data == {"success": False, "reason": "Cannot find transaction"}


def test_v1_address(client):
    data = body_of(client.get(f"/v1/address={OTHER}"))
    assert data == {"success": True, "address": OTHER, "balance": 2500}


def test_v1_address_missing(client):
    data = body_of(client.get("/v1/address=0xdeadbeef"))
    assert data == {"success": False, "reason": "Cannot find address"}


def test_v1_rate_limited(client):
    limiter.enabled = True
    limiter.add_rule("default", requests=2, window=60)
    try:
        codes = [client.get("/v1/block=100").status_code for _ in range(3)]
    finally:
        limiter.enabled = False
        limiter.add_rule("default", requests=60, window=60)
    assert codes == [200, 200, 429]


def test_richlist(client):
    data = body_of(client.post("/richlist", json={"start": 0, "length": 10, "draw": 1}))
    assert data["recordsTotal"] == 3
    assert [row[1] for row in data["data"]] == [OTHER, ADDR, MINER]


@patch.object(relay, "_call")
def test_web3relay(mock_call, client):
    mock_call.return_value = "0x" + "f" * 64
    data = body_of(client.post("/web3relay", json={"tx_send": "0xf86c0a85"}))
    assert data == {"success": True, "hash": "0x" + "f" * 64}
    mock_call.assert_called_once_with("eth_sendRawTransaction", ["0xf86c0a85"])


def test_web3relay_rejects_garbage(client):
    data = body_of(client.post("/web3relay", json={"tx_send": "hello"}))
    assert data["success"] is False


@patch("requests.Session.post")
def test_health_reports_lag(mock_post, client):
    mock_post.return_value = Mock(status_code=200, json=Mock(return_value={"jsonrpc": "2.0", "id": 1, "result": "0x6e"}))
    mock_post.return_value.raise_for_status = Mock()
    data = body_of(client.get("/health"))
    assert data["status"] == "healthy"
    assert data["store"]["latest_block"] == 100
    assert data["node"]["latest_block"] == 110
    assert data["lag"] == 10


@patch("requests.Session.post")
def test_health_degraded_without_node(mock_post, client):
    import requests
    mock_post.side_effect = requests.exceptions.ConnectionError("refused")
    resp = client.get("/health")
    assert resp.status_code == 200
    assert body_of(resp)["status"] == "degraded"


def test_info(client):
    data = body_of(client.get("/"))
    assert data["name"] == "Ledger Explorer"
    assert "/total" in data["endpoints"].values()


def test_swagger_spec(client):
    resp = client.get("/apispec.json")
    assert resp.status_code == 200
    assert "/v1/address={address}" in body_of(resp)["paths"]
