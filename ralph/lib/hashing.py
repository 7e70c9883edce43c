"""Deterministic digests for evidence artifacts.

The digest covers every field of the artifact except the digest field
itself, serialized as canonical JSON (sorted keys, compact separators,
UTF-8). Producers and the verifier must use the same scheme.
"""

import hashlib
import json

DIGEST_FIELD = "integrity_digest"


def canonical_json(data) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def content_digest(record: dict) -> str:
    """Digest of record with the digest field excluded."""
    content = {k: v for k, v in record.items() if k != DIGEST_FIELD}
    return sha256_text(canonical_json(content))


def with_digest(record: dict) -> dict:
    """Return a copy of record carrying its own integrity digest."""
    signed = {k: v for k, v in record.items() if k != DIGEST_FIELD}
    signed[DIGEST_FIELD] = content_digest(signed)
    return signed
