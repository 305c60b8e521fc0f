"""
Ledger Explorer - Query Backend
Grid, dashboard and v1 API views over stored blocks, transactions and accounts
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from flasgger import Swagger
from werkzeug.exceptions import HTTPException

from cache import create_cache
from config import config
from ledger_store import LedgerStore, StoreError
from node_relay import NodeRelay
from query_services import (
    AddressQueryService,
    AggregateQueryService,
    DashboardFeedService,
    ErrorKind,
    PointLookupService,
    QueryResult,
    RichListService,
    parse_int,
)
from rate_limiting import RateLimiter, rate_limit

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)

TOTAL_SUPPLY_ERROR = "Error getting total supply"


# ==================== FLASK APP ====================

app = Flask(__name__)
CORS(app, origins=config.CORS_ORIGINS)

swagger_config = {
    "headers": [],
    "specs": [
        {
            "endpoint": 'apispec',
            "route": '/apispec.json',
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/api/docs"
}

swagger_template = {
    "info": {
        "title": "Ledger Explorer API",
        "description": "Blocks, transactions, accounts and dashboard feeds from the explorer's ledger store",
        "version": "1.0.0",
    },
    "basePath": "/",
    "schemes": ["https", "http"],
    "tags": [
        {"name": "Health", "description": "Health check endpoints"},
        {"name": "Blocks", "description": "Block data endpoints"},
        {"name": "Transactions", "description": "Transaction endpoints"},
        {"name": "Accounts", "description": "Account/address endpoints"},
        {"name": "Dashboard", "description": "Latest blocks and transactions feeds"},
        {"name": "Supply", "description": "Token supply and top holders"},
        {"name": "Relay", "description": "Signed transaction relay"},
        {"name": "V1", "description": "Public REST API"},
    ]
}

swagger = Swagger(app, config=swagger_config, template=swagger_template)

# Initialize components
store = LedgerStore(config.DB_PATH)
cache = create_cache(config.REDIS_URL)
relay = NodeRelay(config.NODE_RPC_URL, timeout=config.NODE_RPC_TIMEOUT)
limiter = RateLimiter(config.RATE_LIMIT_PER_MINUTE, enabled=config.RATE_LIMIT_ENABLED)

address_service = AddressQueryService(store)
aggregate_service = AggregateQueryService(store, cache)
feed_service = DashboardFeedService(store, aggregate_service)
lookup_service = PointLookupService(store)
rich_list_service = RichListService(store, cache)


# ==================== REQUEST HELPERS ====================

def _request_body() -> Dict[str, Any]:
    """POST body as a dict, whether sent as JSON or form-encoded"""
    body = request.get_json(silent=True)
    if isinstance(body, dict):
        return body
    return request.form.to_dict()


def _sort_order(body: Dict[str, Any]) -> Tuple[Optional[int], Optional[str]]:
    """First DataTables order entry as (column, dir)"""
    order = body.get("order")
    if isinstance(order, list) and order and isinstance(order[0], dict):
        return parse_int(order[0].get("column")), order[0].get("dir")
    # form-encoded DataTables request
    return parse_int(body.get("order[0][column]")), body.get("order[0][dir]")


def _missing_field(name: str) -> Tuple[Response, int]:
    return jsonify({"error": f"{name} required"}), 400


def _v1_failure(result: QueryResult) -> Response:
    return jsonify({"success": False, "reason": result.error.reason})


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return e
    logger.exception(f"Unhandled error on {request.path}: {e}")
    return jsonify({"error": "Internal server error"}), 500


# ==================== ADDRESS ENDPOINTS ====================

@app.route("/addr", methods=["POST"])
def get_addr():
    """
    Paginated transactions for an address (DataTables)
    ---
    tags:
      - Accounts
    parameters:
      - name: body
        in: body
        schema:
          type: object
          properties:
            addr:
              type: string
            count:
              type: integer
              description: Total rows known to the client, echoed as recordsTotal
            start:
              type: integer
            length:
              type: integer
            draw:
              type: integer
            order:
              type: array
              items:
                type: object
                properties:
                  column:
                    type: integer
                    description: 1 (block number) or 6 (date) may be sorted ascending
                  dir:
                    type: string
    responses:
      200:
        description: DataTables page with draw, recordsTotal, recordsFiltered, mined and data rows
      400:
        description: addr missing
    """
    body = _request_body()
    addr = body.get("addr")
    if not isinstance(addr, str) or not addr:
        return _missing_field("addr")

    column, direction = _sort_order(body)
    result = address_service.list_transactions(
        addr,
        start=parse_int(body.get("start"), 0),
        limit=parse_int(body.get("length")),
        sort_column=column,
        sort_direction=direction,
        draw=parse_int(body.get("draw")),
        count=parse_int(body.get("count")),
    )
    return jsonify(result.data)


@app.route("/addr_count", methods=["POST"])
def get_addr_counter():
    """
    Transaction and mined-block counters for an address
    ---
    tags:
      - Accounts
    responses:
      200:
        description: recordsTotal, recordsFiltered and mined counters
      400:
        description: addr missing
    """
    body = _request_body()
    addr = body.get("addr")
    if not isinstance(addr, str) or not addr:
        return _missing_field("addr")

    result = address_service.count_activity(addr, count=parse_int(body.get("count")))
    return jsonify(result.data)


# ==================== BLOCK / TRANSACTION ENDPOINTS ====================

@app.route("/block", methods=["POST"])
def get_block():
    """
    Block by number
    ---
    tags:
      - Blocks
    responses:
      200:
        description: 'Block view, or {"error": true} when the block cannot be read'
    """
    body = _request_body()
    result = lookup_service.block_by_number(body.get("block"))
    if result.error:
        return jsonify({"error": True})
    return jsonify(result.data)


@app.route("/tx", methods=["POST"])
def get_tx():
    """
    Transaction from its block's embedded transaction list
    ---
    tags:
      - Transactions
    responses:
      200:
        description: Transaction with block timestamp, or {} when not found
      400:
        description: tx missing
    """
    body = _request_body()
    tx_hash = body.get("tx")
    if not isinstance(tx_hash, str) or not tx_hash:
        return _missing_field("tx")

    result = lookup_service.transaction_in_block(tx_hash)
    return jsonify(result.data)


# ==================== DASHBOARD ENDPOINTS ====================

@app.route("/data", methods=["POST"])
def get_data():
    """
    Latest blocks or transactions feed
    ---
    tags:
      - Dashboard
    parameters:
      - name: body
        in: body
        schema:
          type: object
          properties:
            action:
              type: string
              enum: [latest_blocks, latest_txs]
            limit:
              type: integer
              default: 10
    responses:
      200:
        description: '{"blocks": [...]} or {"txs": [...]}'
      400:
        description: Unknown action (empty body)
    """
    body = _request_body()
    result = feed_service.feed(body.get("action"), body.get("limit"))
    if result.error and result.error.kind == ErrorKind.CLIENT_INPUT:
        return Response(status=400)
    if result.error:
        return jsonify({"error": True})
    return jsonify(result.data)


@app.route("/total", methods=["GET"])
def get_total():
    """
    Total supply (sum of all account balances)
    ---
    tags:
      - Supply
    produces:
      - text/plain
    responses:
      200:
        description: Total supply as a plain numeric string
    """
    result = aggregate_service.total_supply()
    if result.error:
        return Response(TOTAL_SUPPLY_ERROR, mimetype="text/plain")
    return Response(result.data, mimetype="text/plain")


@app.route("/richlist", methods=["POST"])
def get_rich_list():
    """
    Accounts ranked by balance (DataTables)
    ---
    tags:
      - Supply
    responses:
      200:
        description: DataTables page of [rank, address, balance, percentage] rows
    """
    body = _request_body()
    result = rich_list_service.page(
        start=parse_int(body.get("start"), 0),
        limit=parse_int(body.get("length")),
        draw=parse_int(body.get("draw")),
    )
    return jsonify(result.data)


# ==================== RELAY ====================

@app.route("/web3relay", methods=["POST"])
def web3_relay():
    """
    Relay a signed raw transaction to the node
    ---
    tags:
      - Relay
    parameters:
      - name: body
        in: body
        schema:
          type: object
          properties:
            tx_send:
              type: string
              description: 0x-prefixed signed transaction
    responses:
      200:
        description: '{"success": true, "hash": ...} or {"success": false, "reason": ...}'
    """
    body = _request_body()
    return jsonify(relay.send_raw_transaction(body.get("tx_send")))


# ==================== V1 API ====================

@app.route("/v1/block=<block_id>", methods=["GET"])
@rate_limit(limiter)
def get_api_block(block_id):
    """
    Block by hash or number
    ---
    tags:
      - V1
    parameters:
      - name: block_id
        in: path
        type: string
        required: true
        description: Block hash (longer than 60 characters) or block number
    responses:
      200:
        description: '{"success": true, "data": block} or {"success": false, "reason": ...}'
      429:
        description: Rate limit exceeded
    """
    result = lookup_service.block(block_id)
    if result.error:
        return _v1_failure(result)
    return jsonify({"success": True, "data": result.data})


@app.route("/v1/tx=<tx_hash>", methods=["GET"])
@rate_limit(limiter)
def get_api_transaction(tx_hash):
    """
    Transaction by hash
    ---
    tags:
      - V1
    parameters:
      - name: tx_hash
        in: path
        type: string
        required: true
    responses:
      200:
        description: '{"success": true, "data": transaction} or {"success": false, "reason": ...}'
      429:
        description: Rate limit exceeded
    """
    result = lookup_service.transaction_by_hash(tx_hash)
    if result.error:
        return _v1_failure(result)
    return jsonify({"success": True, "data": result.data})


@app.route("/v1/address=<address>", methods=["GET"])
@rate_limit(limiter)
def get_api_address(address):
    """
    Account balance
    ---
    tags:
      - V1
    parameters:
      - name: address
        in: path
        type: string
        required: true
    responses:
      200:
        description: '{"success": true, "address": ..., "balance": ...} or {"success": false, "reason": ...}'
      429:
        description: Rate limit exceeded
    """
    result = lookup_service.account(address)
    if result.error:
        return _v1_failure(result)
    return jsonify({"success": True, **result.data})


# ==================== HEALTH CHECK ====================

@app.route("/health", methods=["GET"])
def health_check():
    """
    Health check
    ---
    tags:
      - Health
    responses:
      200:
        description: Store and node status with the store's lag behind the node
    """
    try:
        store_head = store.latest_block_number()
        store_ok = True
    except StoreError as e:
        logger.warning(f"Store health degraded: {e}")
        store_head = None
        store_ok = False

    node_head = relay.latest_block_number()
    lag = node_head - store_head if node_head is not None and store_head is not None else None

    status = "healthy" if store_ok and node_head is not None else "degraded"
    return jsonify({
        "status": status,
        "store": {"reachable": store_ok, "latest_block": store_head},
        "node": {"reachable": node_head is not None, "latest_block": node_head, "rpc": config.NODE_RPC_URL},
        "lag": lag,
        "cache": cache.get_stats(),
        "rate_limit": limiter.get_stats(),
        "timestamp": time.time()
    }), 200


# ==================== INFO ENDPOINT ====================

@app.route("/", methods=["GET"])
def explorer_info():
    """
    Explorer information
    ---
    tags:
      - Health
    responses:
      200:
        description: Service name, version and endpoint map
    """
    return jsonify({
        "name": "Ledger Explorer",
        "version": "1.0.0",
        "endpoints": {
            "address": "/addr",
            "address_counters": "/addr_count",
            "block": "/block",
            "transaction": "/tx",
            "dashboard": "/data",
            "total_supply": "/total",
            "richlist": "/richlist",
            "relay": "/web3relay",
            "v1": ["/v1/block=<id>", "/v1/tx=<hash>", "/v1/address=<addr>"],
            "health": "/health",
            "swagger_docs": "/api/docs",
            "openapi_spec": "/apispec.json"
        },
        "timestamp": time.time()
    })


if __name__ == "__main__":
    logger.info("Starting Ledger Explorer")
    logger.info(f"Node RPC URL: {config.NODE_RPC_URL}")
    logger.info(f"Database: {config.DB_PATH}")
    logger.info(f"Port: {config.EXPLORER_PORT}")

    app.run(
        host=config.EXPLORER_HOST,
        port=config.EXPLORER_PORT,
        debug=config.DEBUG,
        threaded=True
    )
