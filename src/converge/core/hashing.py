"""
Content hashing for change detection.

The Change-Hash Gate decides when expensive or disruptive work has to
run again. Every gated task records the hash of its inputs in the
topology's status; the task re-runs only when the freshly computed hash
differs from the recorded one.

Manifesto:
    Reconciliation runs far more often than anything actually changes:
    - **Deterministic:** Identical content gives an identical hash, regardless
      of the order a mapping was built in
    - **Content-based:** Byte strings, text and mappings hash by value
    - **Gate, not cache:** ``set_hash`` is the only way a recorded hash moves

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                    Change-Hash Gate                           │
        └──────────────────────────────────────────────────────────────┘

        Aggregate input hash:
        ┌────────────────────────────────────────────────────────────┐
        │ h = object_hash({"secret": ..., "config": ..., "tls": ...})│
        │ changed → halt the pass, record h, pick it up next pass    │
        └────────────────────────────────────────────────────────────┘

        Per-task hash (migration job, asset import):
        ┌────────────────────────────────────────────────────────────┐
        │ h == status.hash["dbsync"] → skip the task entirely         │
        │ h != status.hash["dbsync"] → run it, then record h          │
        └────────────────────────────────────────────────────────────┘

Examples:
    >>> hashes = {}
    >>> set_hash(hashes, "input", object_hash("abc"))
    True
    >>> set_hash(hashes, "input", object_hash("abc"))
    False
    >>> object_hash({"a": 1, "b": 2}) == object_hash({"b": 2, "a": 1})
    True

Tags:
    hashing, change-detection, idempotency, reconciliation

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import base64
import hashlib
import json
from collections.abc import Mapping, MutableMapping
from enum import Enum
from typing import Any

from pydantic import BaseModel


class HashKey(str, Enum):
    """Keys of the recorded hashes in ``status.hash``."""

    INPUT = "input"
    MIGRATION = "dbsync"
    ASSET_UPLOAD = "asset-upload"


def _canonical_key(key: Any) -> str:
    if isinstance(key, Enum):
        key = key.value
    if not isinstance(key, str):
        raise TypeError(f"mapping keys must be strings, got {type(key).__name__}")
    return key


def _canonical(value: Any) -> Any:
    """Reduce a value to JSON-compatible data with a stable shape."""
    if isinstance(value, BaseModel):
        return _canonical(value.model_dump(mode="json"))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (bytes, bytearray)):
        return {"__bytes__": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, Mapping):
        return {_canonical_key(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_canonical(v) for v in value)
    return value


def object_hash(value: Any) -> str:
    """
    Compute a stable content hash.

    Accepts text, byte strings, mappings with string keys (hashed
    independently of insertion order), sequences and pydantic models.
    Any other mapping key raises ``TypeError``. The value is reduced
    to canonical JSON with sorted keys, then hashed with SHA-256.

    Args:
        value: Content to hash

    Returns:
        64-char hex digest
    """
    payload = json.dumps(
        _canonical(value),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _key(key: HashKey | str) -> str:
    return key.value if isinstance(key, HashKey) else key


def set_hash(hashes: MutableMapping[str, str], key: HashKey | str, new_hash: str) -> bool:
    """
    Record ``new_hash`` under ``key`` if it differs from what is recorded.

    A key that was never recorded counts as changed.

    Returns:
        True when the map was updated
    """
    k = _key(key)
    if k in hashes and hashes[k] == new_hash:
        return False
    hashes[k] = new_hash
    return True


def hash_changed(hashes: Mapping[str, str], key: HashKey | str, new_hash: str) -> bool:
    """Check the gate without recording anything."""
    k = _key(key)
    return k not in hashes or hashes[k] != new_hash


def recorded_hash(hashes: Mapping[str, str], key: HashKey | str) -> str:
    """Return the recorded hash for ``key``, or ``""`` when none is recorded."""
    return hashes.get(_key(key), "")


__all__ = [
    "HashKey",
    "object_hash",
    "set_hash",
    "hash_changed",
    "recorded_hash",
]
