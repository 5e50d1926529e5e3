"""
Key/path normalization shared by every backend.

Keys are slash-separated logical paths. A configured base path namespaces
them into a "full key", which is what the backend actually stores. Full keys
use "/" exclusively so the same string is valid as a relative filesystem path
and as an object-store key.
"""

from __future__ import annotations

import mimetypes
from typing import Optional

from .contracts import DEFAULT_MIME_TYPE

SEP = "/"


def normalize_key(key: str) -> str:
    """Unify separators and drop empty / "." segments and outer slashes."""
    parts = key.replace("\\", SEP).split(SEP)
    return SEP.join(p for p in parts if p and p != ".")


def full_key(key: str, base_path: Optional[str] = None) -> str:
    if not base_path:
        return key
    return normalize_key(f"{base_path}{SEP}{key}")


def strip_prefix(full: str, base_path: Optional[str] = None) -> str:
    if not base_path:
        return full
    base = normalize_key(base_path)
    if not base:
        return full
    candidate = full.replace("\\", SEP)
    if candidate == base:
        return ""
    if candidate.startswith(base + SEP):
        return candidate[len(base) + 1:]
    return full


def list_prefix(prefix: str, base_path: Optional[str] = None) -> str:
    """Full-key prefix for listing.

    With a base path, an empty prefix becomes "<base>/" so sibling
    namespaces sharing a leading string ("root" vs "root2") never leak in.
    A trailing slash on the caller's prefix is kept.
    """
    if not base_path:
        return prefix
    base = normalize_key(base_path)
    if not base:
        return prefix
    rest = normalize_key(prefix)
    if not rest:
        return base + SEP
    trailing = SEP if prefix.replace("\\", SEP).endswith(SEP) else ""
    return f"{base}{SEP}{rest}{trailing}"


def extract_name(key: str) -> str:
    return key.rsplit(SEP, 1)[-1] or key


def guess_mime_type(key: str, default: str = DEFAULT_MIME_TYPE) -> str:
    mime, _ = mimetypes.guess_type(extract_name(key), strict=False)
    return mime or default
