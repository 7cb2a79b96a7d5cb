"""Client identity resolution for rate limit keys.

Derives a stable per-client string from request headers without requiring
authentication. Behind a trusted proxy the forwarded address is used;
otherwise a fingerprint of the User-Agent and Accept-Language headers keeps
anonymous clients from all sharing one bucket.
"""

from __future__ import annotations

from typing import Mapping

FINGERPRINT_PREFIX = "unknown-"

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

# Checked in order when proxy headers are trusted
_PROXY_HEADERS = ("x-real-ip", "cf-connecting-ip")


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def fingerprint_hash(text: str) -> str:
    """Hash text with a 31-multiplier rolling hash, rendered in base 36.

    The hash runs over UTF-16 code units and wraps to a signed 32-bit
    integer after every step, so keys match those produced by other
    services sharing the same Redis keyspace.

    Examples:
        >>> fingerprint_hash("")
        '0'
        >>> fingerprint_hash("a")
        '2p'
    """

    encoded = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def _forwarded_address(headers: Mapping[str, str]) -> str | None:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for name in _PROXY_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def resolve_client_key(headers: Mapping[str, str], *, trust_proxy: bool) -> str:
    """Resolve the rate limit identity of the client that sent ``headers``.

    Args:
        headers: Request headers. Lookups use lower-case names, which
            Starlette's ``Headers`` matches case-insensitively.
        trust_proxy: Whether forwarding headers may be believed.

    Returns:
        The client address, or ``"unknown-<hash>"`` when no address is usable.
    """

    if trust_proxy:
        address = _forwarded_address(headers)
        if address:
            return address

    user_agent = headers.get("user-agent") or ""
    accept_language = headers.get("accept-language") or ""
    return f"{FINGERPRINT_PREFIX}{fingerprint_hash(user_agent + accept_language)}"
