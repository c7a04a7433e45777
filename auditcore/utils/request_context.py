"""Request metadata extractors used to attribute audit entries.

Both helpers are pure: they only look at the values passed in. Forwarding
headers are supplied by the client or by intermediate proxies and can be
spoofed, so the resolved address is good for attribution in the audit trail
and must not be used for access control.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

UNKNOWN_IP = "Unknown IP"
UNKNOWN_BROWSER = "Unknown Browser"
UNKNOWN_ENGINE = "Unknown Engine"
OTHER_BROWSER = "Other Browser"

LOOPBACK_ADDRESSES = frozenset({"127.0.0.1", "::1", "localhost"})

# Provider-specific headers outrank the generic X-Forwarded-For chain.
CLIENT_IP_HEADERS = (
    "cf-connecting-ip",
    "true-client-ip",
    "x-real-ip",
    "x-client-ip",
    "x-cluster-client-ip",
)


@dataclass(frozen=True)
class BrowserInfo:
    browser: str
    engine: str


# Checked in order. Edge and Opera user agents also contain "Chrome", so they
# come first; older rows labelled these clients "Chrome" and stats grouped on
# browser will show both labels.
_BROWSER_TABLE: tuple[tuple[tuple[str, ...], BrowserInfo], ...] = (
    (("Edg",), BrowserInfo("Edge", "Blink")),
    (("OPR", "Opera"), BrowserInfo("Opera", "Blink")),
    (("Chrome",), BrowserInfo("Chrome", "Blink")),
    (("Firefox",), BrowserInfo("Firefox", "Gecko")),
    (("Safari",), BrowserInfo("Safari", "WebKit")),
)


def header_value(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        # Plain dicts are case-sensitive; Starlette's Headers are not.
        for key, candidate in headers.items():
            if key.lower() == name:
                value = candidate
                break
    if value is None:
        return None
    value = value.strip()
    return value or None


def _is_routable(address: str | None) -> bool:
    return bool(address) and address not in LOOPBACK_ADDRESSES


def resolve_client_ip(headers: Mapping[str, str] | None, socket_address: str | None = None) -> str:
    """Return the best-guess client address for an inbound request."""

    headers = headers or {}
    for name in CLIENT_IP_HEADERS:
        candidate = header_value(headers, name)
        if _is_routable(candidate):
            return candidate  # type: ignore[return-value]

    forwarded = header_value(headers, "x-forwarded-for")
    if forwarded:
        for hop in forwarded.split(","):
            hop = hop.strip()
            if _is_routable(hop):
                return hop

    if socket_address:
        return socket_address
    return UNKNOWN_IP


def resolve_browser_info(user_agent: str | None) -> BrowserInfo:
    """Map a User-Agent string onto a coarse browser/engine label."""

    if not user_agent:
        return BrowserInfo(UNKNOWN_BROWSER, UNKNOWN_ENGINE)
    for needles, info in _BROWSER_TABLE:
        if any(needle in user_agent for needle in needles):
            return info
    return BrowserInfo(OTHER_BROWSER, UNKNOWN_ENGINE)


__all__ = [
    "BrowserInfo",
    "CLIENT_IP_HEADERS",
    "UNKNOWN_IP",
    "header_value",
    "resolve_browser_info",
    "resolve_client_ip",
]
