"""
Deterministic user-id derivation.

The same email always yields the same id, across requests and restarts, so
the local cache and the upstream directory agree on identity without a
round trip. MD5 is only a short stable fingerprint here, not a security
primitive.
"""

from __future__ import annotations

import hashlib
import re

from replicachat.constants import ID_DIGEST_LENGTH, ID_PREFIX_LENGTH

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def derive_user_id(email: str) -> str:
    """Derive ``<prefix>_<digest>`` from an email address.

    >>> derive_user_id("Jane.Doe@Example.com")[:17]
    'janedoeexamplecom'
    """
    lowered = email.lower()
    prefix = _NON_ALNUM.sub("", lowered)[:ID_PREFIX_LENGTH]
    digest = hashlib.md5(lowered.encode("utf-8")).hexdigest()[:ID_DIGEST_LENGTH]
    return f"{prefix}_{digest}"
