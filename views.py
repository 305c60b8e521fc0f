"""
Response views for ledger documents
Projects stored blocks and transactions into the shapes the grid,
dashboard and v1 API return
"""

from decimal import Context, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from config import config

BLOCK_VIEW_FIELDS = (
    "number",
    "totalDifficulty",
    "difficulty",
    "timestamp",
    "miner",
    "nonce",
    "extraData",
    "hash",
    "parentHash",
    "gasUsed",
    "gasLimit",
    "size",
)

TRANSACTION_VIEW_FIELDS = (
    "from",
    "to",
    "value",
    "input",
    "timestamp",
    "gasPrice",
    "gasUsed",
    "gas",
    "nonce",
    "blockNumber",
    "hash",
)

DIRECTION_OUT = "out"
DIRECTION_IN = "in"

# Wide enough for any 256-bit wei amount
AMOUNT_CONTEXT = Context(prec=100)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, str) and value.lower().startswith("0x"):
        return Decimal(int(value, 16))
    return Decimal(str(value))


def _plain(amount: Decimal) -> str:
    text = format(amount.normalize(AMOUNT_CONTEXT), "f")
    return text if text != "-0" else "0"


def wei_to_ether(value: Any, decimals: int = config.DENOM_DECIMALS) -> Any:
    """Format a wei amount in ether; unparseable input is returned as-is"""
    if value is None:
        return None
    try:
        return _plain(_to_decimal(value).scaleb(-decimals, AMOUNT_CONTEXT))
    except (InvalidOperation, ValueError):
        return value


def normalize_amount(value: Any) -> Union[int, str, None]:
    """Stored decimal amount as a JSON-friendly number"""
    if value is None:
        return None
    try:
        amount = _to_decimal(value)
    except (InvalidOperation, ValueError):
        return value
    if amount == amount.to_integral_value():
        return int(amount)
    return _plain(amount)


def project_block(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Minimal block view; extraData is always present, null when empty"""
    view = {field: doc.get(field) for field in BLOCK_VIEW_FIELDS}
    view["extraData"] = doc.get("extraData") or None
    return view


def project_block_list(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [project_block(doc) for doc in docs]


def project_transaction(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {field: doc.get(field) for field in TRANSACTION_VIEW_FIELDS}


def extract_transaction_from_block(
    block: Dict[str, Any], match_field: str, match_value: Any
) -> Dict[str, Any]:
    """
    First embedded transaction whose match_field equals match_value,
    stamped with the block's timestamp. Returns {} when nothing matches.
    """
    for tx in block.get("transactions") or []:
        if tx.get(match_field) == match_value:
            found = dict(tx)
            found["timestamp"] = block.get("timestamp")
            return found
    return {}


def transaction_direction(doc: Dict[str, Any], address: str) -> Optional[str]:
    """'out' when address sent the transaction, 'in' when it received it.

    The sender check runs first, so a self-send reads as 'out'.
    """
    address = address.lower()
    if (doc.get("from") or "").lower() == address:
        return DIRECTION_OUT
    if (doc.get("to") or "").lower() == address:
        return DIRECTION_IN
    return None


def filter_transactions_for_address(docs: List[Dict[str, Any]], address: str) -> List[List[Any]]:
    """Grid rows: hash, block, from, to, value (ether), gas, timestamp, direction"""
    return [
        [
            doc.get("hash"),
            doc.get("blockNumber"),
            doc.get("from"),
            doc.get("to"),
            wei_to_ether(doc.get("value")),
            doc.get("gas"),
            doc.get("timestamp"),
            transaction_direction(doc, address),
        ]
        for doc in docs
    ]
