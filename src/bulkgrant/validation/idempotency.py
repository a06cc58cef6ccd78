"""Fingerprints for submit requests that carry an idempotency key.

Two submits share a fingerprint when the same requester sends the same key
for the same users, projects and role. List order is ignored since the
normalized lists are already de-duplicated.
"""
import hashlib
import json
from typing import List, Optional


FINGERPRINT_VERSION = 1


def request_hash(
    requester_id: str,
    user_emails: List[str],
    project_ids: List[str],
    role: str,
    idempotency_key: Optional[str],
) -> Optional[str]:
    if not idempotency_key:
        return None
    document = {
        "v": FINGERPRINT_VERSION,
        "requester": requester_id,
        "key": idempotency_key,
        "role": role,
        "users": sorted(user_emails),
        "projects": sorted(project_ids),
    }
    encoded = json.dumps(document, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
