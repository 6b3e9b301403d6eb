"""
datamarket/ledger/codec.py

Strict, versioned decoding of ledger results and cached purchase sets.

Payloads that do not match the expected shape are rejected with
PayloadError rather than coerced. Field names follow the registry
contracts' ABI output names.

Usage:
    from datamarket.ledger.codec import decode_dataset, decode_record_set

    dataset = decode_dataset(3, {"owner": "0x..", "dataHash": "Qm..", ...})
    records = decode_record_set({"version": 1, "records": [...]})
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, Union

from ..config import PLATFORM_FEE_BPS
from ..errors import PayloadError
from ..models import (
    Bounty,
    BountyStatus,
    Dataset,
    PurchaseRecord,
    Submission,
    ZERO_ADDRESS,
)
from ..money import from_units
from .client import PurchaseEvent

logger = logging.getLogger("datamarket.ledger.codec")

# Version of the persisted purchase record set
SCHEMA_VERSION = 1

# ABI output names of the registry read calls
DATASET_FIELDS = ("owner", "dataHash", "metadataHash", "price", "category", "timestamp", "active")
BOUNTY_FIELDS = (
    "creator", "title", "description", "metadataHash", "reward",
    "category", "deadline", "status", "timestamp", "fulfiller",
)
SUBMISSION_FIELDS = ("submitter", "dataHash", "description", "timestamp", "approved")


# ============================================================================
# FIELD HELPERS
# ============================================================================

def _field(payload: Mapping[str, Any], key: str, kind: Union[Type, Tuple[Type, ...]], what: str) -> Any:
    if not isinstance(payload, Mapping):
        raise PayloadError(f"{what}: expected an object, got {type(payload).__name__}")
    if key not in payload:
        raise PayloadError(f"{what}: missing field '{key}'")
    value = payload[key]
    # bool is an int subclass; never accept it where an integer is expected
    if kind is int and isinstance(value, bool):
        raise PayloadError(f"{what}: field '{key}' must be int, got bool")
    if not isinstance(value, kind):
        expected = kind.__name__ if isinstance(kind, type) else "/".join(k.__name__ for k in kind)
        raise PayloadError(f"{what}: field '{key}' must be {expected}, got {type(value).__name__}")
    return value


def _uint(payload: Mapping[str, Any], key: str, what: str) -> int:
    value = _field(payload, key, int, what)
    if value < 0:
        raise PayloadError(f"{what}: field '{key}' must be non-negative, got {value}")
    return value


def _address(payload: Mapping[str, Any], key: str, what: str) -> str:
    value = _field(payload, key, str, what)
    if not value:
        raise PayloadError(f"{what}: field '{key}' is empty")
    return value


def _is_zero_address(address: str) -> bool:
    return address.lower() == ZERO_ADDRESS


def tuple_to_payload(names: Sequence[str], values: Sequence[Any], what: str) -> Dict[str, Any]:
    """Name a positional contract result by its ABI output names."""
    if not isinstance(values, (list, tuple)) or len(values) != len(names):
        raise PayloadError(f"{what}: expected {len(names)} values, got {values!r}")
    return dict(zip(names, values))


# ============================================================================
# LEDGER SNAPSHOTS
# ============================================================================

def decode_dataset(dataset_id: int, payload: Mapping[str, Any]) -> Optional[Dataset]:
    """
    Decode a getDataset result.

    Returns None for an unregistered id (the registry answers with a
    zero owner instead of failing).
    """
    what = f"dataset {dataset_id}"
    owner = _address(payload, "owner", what)
    if _is_zero_address(owner):
        return None
    return Dataset(
        id=dataset_id,
        owner=owner,
        content_hash=_field(payload, "dataHash", str, what),
        metadata_hash=_field(payload, "metadataHash", str, what),
        price=from_units(_uint(payload, "price", what)),
        category=_field(payload, "category", str, what),
        created_at=_uint(payload, "timestamp", what),
        active=_field(payload, "active", bool, what),
    )


def decode_bounty(
    bounty_id: int,
    payload: Mapping[str, Any],
    submission_count: int = 0,
    fee_bps: int = PLATFORM_FEE_BPS,
) -> Optional[Bounty]:
    """Decode a getBounty result. Returns None for an unknown id."""
    what = f"bounty {bounty_id}"
    creator = _address(payload, "creator", what)
    if _is_zero_address(creator):
        return None

    raw_status = _uint(payload, "status", what)
    try:
        status = BountyStatus(raw_status)
    except ValueError:
        raise PayloadError(f"{what}: unknown status {raw_status}")

    fulfiller = _field(payload, "fulfiller", str, what)
    return Bounty(
        id=bounty_id,
        creator=creator,
        title=_field(payload, "title", str, what),
        description=_field(payload, "description", str, what),
        metadata_hash=_field(payload, "metadataHash", str, what),
        category=_field(payload, "category", str, what),
        reward=from_units(_uint(payload, "reward", what)),
        deadline=_uint(payload, "deadline", what),
        status=status,
        created_at=_uint(payload, "timestamp", what),
        fulfiller=None if not fulfiller or _is_zero_address(fulfiller) else fulfiller,
        fee_bps=fee_bps,
        submission_count=submission_count,
    )


def decode_submission(bounty_id: int, payload: Mapping[str, Any]) -> Submission:
    what = f"submission to bounty {bounty_id}"
    return Submission(
        bounty_id=bounty_id,
        submitter=_address(payload, "submitter", what),
        content_hash=_field(payload, "dataHash", str, what),
        description=_field(payload, "description", str, what),
        timestamp=_uint(payload, "timestamp", what),
        approved=_field(payload, "approved", bool, what),
    )


def decode_purchase_event(payload: Mapping[str, Any]) -> PurchaseEvent:
    """Decode a DatasetPurchased event (args plus log position)."""
    what = "purchase event"
    tx_id = payload.get("transactionHash") if isinstance(payload, Mapping) else None
    if tx_id is not None and (not isinstance(tx_id, str) or not tx_id):
        raise PayloadError(f"{what}: field 'transactionHash' must be a non-empty string")
    block_number = payload.get("blockNumber", 0) if isinstance(payload, Mapping) else 0
    if isinstance(block_number, bool) or not isinstance(block_number, int):
        raise PayloadError(f"{what}: field 'blockNumber' must be int")
    return PurchaseEvent(
        dataset_id=_uint(payload, "datasetId", what),
        buyer=_address(payload, "buyer", what),
        price_units=_uint(payload, "price", what),
        timestamp=_uint(payload, "timestamp", what),
        block_number=block_number,
        transaction_id=tx_id,
    )


# ============================================================================
# CACHED PURCHASE SETS
# ============================================================================

def decode_purchase_record(payload: Mapping[str, Any]) -> PurchaseRecord:
    what = "cached purchase"
    raw_price = _field(payload, "price", str, what)
    try:
        price = Decimal(raw_price)
    except InvalidOperation:
        raise PayloadError(f"{what}: price is not a decimal: {raw_price!r}")
    if not price.is_finite() or price < 0:
        raise PayloadError(f"{what}: price out of range: {raw_price!r}")
    transaction_id = _field(payload, "transactionId", str, what)
    if not transaction_id:
        raise PayloadError(f"{what}: empty transactionId")
    return PurchaseRecord(
        dataset_id=_uint(payload, "datasetId", what),
        price=price,
        timestamp=_uint(payload, "timestamp", what),
        transaction_id=transaction_id,
        buyer=_address(payload, "buyerAddress", what),
    )


def encode_record_set(records: Iterable[PurchaseRecord]) -> Dict[str, Any]:
    """Versioned persisted form of one account's purchases."""
    return {
        "version": SCHEMA_VERSION,
        "records": [r.to_dict() for r in records],
    }


def decode_record_set(payload: Mapping[str, Any]) -> List[PurchaseRecord]:
    """
    Decode one account's persisted purchases.

    Raises:
        PayloadError: wrong version or any malformed record
    """
    version = _field(payload, "version", int, "purchase record set")
    if version != SCHEMA_VERSION:
        raise PayloadError(f"purchase record set: unsupported version {version}")
    raw_records = _field(payload, "records", list, "purchase record set")
    return [decode_purchase_record(r) for r in raw_records]
