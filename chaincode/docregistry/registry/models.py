"""
Persisted record types for DocRegistry.

Records are stored as flat JSON objects with stable field names:
- PublicDocument: documentId, institution, userId
- PrivateDocument: adds name, path, hash, state
- AuditLogEntry: txID, documentId, institution, userId, operation,
  oldState (update_state only), newState, timestamp

Invariants:
    - Field names on the ledger never change
    - Decoding never guesses: wrong JSON or wrong field types raise
      RecordSerializationError
    - Audit timestamps are RFC 3339 in UTC with second precision
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .errors import RecordSerializationError

# Audit keys are AUDIT_<tx_id>; the audit namespace is [AUDIT_KEY_PREFIX, AUDIT_KEY_END).
AUDIT_KEY_PREFIX = "AUDIT_"
AUDIT_KEY_END = AUDIT_KEY_PREFIX + "\U0010ffff"

_RFC3339 = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)


def is_audit_key(key: str) -> bool:
    """Whether a key falls inside the audit namespace."""
    return key.startswith(AUDIT_KEY_PREFIX)


def audit_key(tx_id: str) -> str:
    return AUDIT_KEY_PREFIX + tx_id


def format_timestamp(ts: datetime) -> str:
    """Render a transaction timestamp as RFC 3339 UTC (second precision)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: Any) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime.

    A UTC offset (or Z) is mandatory. Fractional seconds beyond
    microseconds are truncated.

    Raises:
        ValueError: If the value is not an RFC 3339 timestamp
    """
    match = _RFC3339.match(value) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Not an RFC 3339 timestamp: {value!r}")

    date_part, time_part, fraction, offset = match.groups()
    if offset in ("Z", "z"):
        offset = "+00:00"
    micros = f".{fraction[:6].ljust(6, '0')}" if fraction else ""
    return datetime.fromisoformat(f"{date_part}T{time_part}{micros}{offset}")


def decode_json(raw: bytes, key: Optional[str] = None) -> Dict[str, Any]:
    """Decode stored bytes into a JSON object.

    Raises:
        RecordSerializationError: If the bytes are not a JSON object
    """
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise RecordSerializationError(f"Stored value is not valid JSON: {e}", key=key) from e
    if not isinstance(data, dict):
        raise RecordSerializationError("Stored value is not a JSON object", key=key)
    return data


def encode_json(data: Dict[str, Any]) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def _string(
    data: Dict[str, Any],
    name: str,
    key: Optional[str],
    required: bool = False,
) -> str:
    if name not in data:
        if required:
            raise RecordSerializationError(f"Missing field {name!r}", key=key)
        return ""
    value = data[name]
    if not isinstance(value, str):
        raise RecordSerializationError(f"Field {name!r} must be a string", key=key)
    return value


def _optional_string(data: Dict[str, Any], name: str, key: Optional[str]) -> Optional[str]:
    if data.get(name) is None:
        return None
    return _string(data, name, key)


@dataclass
class PublicDocument:
    """A public document: identity plus owning institution and user.

    Attributes:
        document_id: Unique identifier within the public scope
        institution: Owning institution
        user_id: Owning user
    """

    document_id: str
    institution: str
    user_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "institution": self.institution,
            "userId": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], key: Optional[str] = None) -> PublicDocument:
        return cls(
            document_id=_string(data, "documentId", key, required=True),
            institution=_string(data, "institution", key, required=True),
            user_id=_string(data, "userId", key, required=True),
        )

    def to_bytes(self) -> bytes:
        return encode_json(self.to_dict())

    @classmethod
    def from_bytes(cls, raw: bytes, key: Optional[str] = None):
        return cls.from_dict(decode_json(raw, key), key)


@dataclass
class PrivateDocument(PublicDocument):
    """A private document with content metadata and a lifecycle state.

    Attributes:
        name: Display name of the content
        path: Storage path of the content
        hash: Content fingerprint (opaque)
        state: Free-form lifecycle state
    """

    name: str = ""
    path: str = ""
    hash: str = ""
    state: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "name": self.name,
                "path": self.path,
                "hash": self.hash,
                "state": self.state,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], key: Optional[str] = None) -> PrivateDocument:
        return cls(
            document_id=_string(data, "documentId", key, required=True),
            institution=_string(data, "institution", key, required=True),
            user_id=_string(data, "userId", key, required=True),
            name=_string(data, "name", key),
            path=_string(data, "path", key),
            hash=_string(data, "hash", key),
            state=_string(data, "state", key),
        )


class AuditOperation(str, Enum):
    """Mutations that produce an audit entry."""

    CREATE = "create"
    UPDATE_STATE = "update_state"


@dataclass
class AuditLogEntry:
    """Immutable record of one mutating operation.

    Attributes:
        tx_id: Host transaction id (the audit key is AUDIT_<tx_id>)
        document_id: Mutated document
        institution: Document institution at mutation time
        user_id: Document user at mutation time
        operation: create or update_state
        timestamp: RFC 3339 transaction timestamp
        old_state: Previous state (update_state only)
        new_state: Resulting state (None for public documents)
    """

    tx_id: str
    document_id: str
    institution: str
    user_id: str
    operation: AuditOperation
    timestamp: str
    old_state: Optional[str] = None
    new_state: Optional[str] = None

    @property
    def key(self) -> str:
        return audit_key(self.tx_id)

    def parsed_timestamp(self) -> datetime:
        """Timestamp as an aware datetime.

        Raises:
            ValueError: If the stored timestamp is not RFC 3339
        """
        return parse_timestamp(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "txID": self.tx_id,
            "documentId": self.document_id,
            "institution": self.institution,
            "userId": self.user_id,
            "operation": self.operation.value,
        }
        if self.old_state is not None:
            data["oldState"] = self.old_state
        if self.new_state is not None:
            data["newState"] = self.new_state
        data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], key: Optional[str] = None) -> AuditLogEntry:
        operation = _string(data, "operation", key, required=True)
        try:
            op = AuditOperation(operation)
        except ValueError as e:
            raise RecordSerializationError(f"Unknown audit operation {operation!r}", key=key) from e

        return cls(
            tx_id=_string(data, "txID", key, required=True),
            document_id=_string(data, "documentId", key, required=True),
            institution=_string(data, "institution", key),
            user_id=_string(data, "userId", key),
            operation=op,
            timestamp=_string(data, "timestamp", key),
            old_state=_optional_string(data, "oldState", key),
            new_state=_optional_string(data, "newState", key),
        )

    def to_bytes(self) -> bytes:
        return encode_json(self.to_dict())

    @classmethod
    def from_bytes(cls, raw: bytes, key: Optional[str] = None) -> AuditLogEntry:
        return cls.from_dict(decode_json(raw, key), key)
