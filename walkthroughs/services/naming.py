from __future__ import annotations

import hashlib
import re

DNS_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_HYPHEN_RUN_RE = re.compile(r"-+")

MAX_DNS_LABEL_LEN = 63
HASH_SUFFIX_LEN = 6

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def slugify_token(value: str) -> str:
    lowered = value.lower()
    replaced = _NON_ALNUM_RE.sub("-", lowered)
    collapsed = _HYPHEN_RUN_RE.sub("-", replaced)
    return collapsed.strip("-")


def is_valid_dns_label(value: str) -> bool:
    return bool(DNS_LABEL_RE.fullmatch(value))


def stable_suffix(value: str, *, length: int = HASH_SUFFIX_LEN) -> str:
    """Base36 digest of ``value``; distinct inputs that slugify alike still differ here."""
    number = int.from_bytes(hashlib.sha256(value.encode("utf-8")).digest(), "big")
    digits = []
    for _ in range(length):
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(digits)


def namespace_name_for_user(username: str, *, suffix: str = "walkthrough-projects") -> str:
    """Deterministic namespace name: ``<user-slug>-<hash>[-<suffix>]``.

    The suffix is dropped, then the slug trimmed, when the label would exceed
    63 characters. The hash covers the exact username so the mapping stays
    injective for all practical purposes.
    """
    if not username:
        raise ValueError("username must be non-empty")
    digest = stable_suffix(username)
    slug = slugify_token(username) or "user"
    tail = slugify_token(suffix)

    candidate = "-".join(part for part in (slug, digest, tail) if part)
    if len(candidate) > MAX_DNS_LABEL_LEN:
        room = MAX_DNS_LABEL_LEN - HASH_SUFFIX_LEN - 1
        candidate = f"{slug[:room].strip('-') or 'user'}-{digest}"

    if not is_valid_dns_label(candidate):
        raise ValueError(f"generated namespace name {candidate!r} is not a valid DNS label")
    return candidate


def namespace_display_name_for_user(username: str, display_name: str | None = None) -> str:
    owner = display_name or username
    return f"{owner}'s Walkthroughs"
