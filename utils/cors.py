from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import azure.functions as func

from shared.config import get_bool_setting, get_cors_origins

ALLOWED_ORIGINS = get_cors_origins()
ALLOW_CREDENTIALS = get_bool_setting(["CORS_ALLOW_CREDENTIALS", "CORS_CREDENTIALS"])
# Headers the CRM web client sends on every call.
DEFAULT_ALLOWED_HEADERS = ("authorization", "x-client-info", "apikey", "content-type")


def _split_origin(value: str, *, default_scheme: Optional[str] = None) -> Tuple[Optional[str], Optional[str], Optional[int]]:
    """(scheme, host, port) for an origin; scheme is None when the entry had none."""
    text = str(value or "").strip().rstrip("/")
    if not text:
        return None, None, None
    has_scheme = "://" in text
    parsed = urlparse(text if has_scheme or not default_scheme else f"{default_scheme}://{text}")
    host = (parsed.hostname or "").lower()
    try:
        port = parsed.port
    except ValueError:
        host = ""
    if not host:
        return None, None, None
    return ((parsed.scheme or "").lower() if has_scheme else None), host, port


def _origin_matches(origin: Optional[str], allowed_origin: str) -> bool:
    """
    Compare a request origin against one allow-list entry.
    Entries may omit the scheme and may use a leading "*." host wildcard.
    """
    if allowed_origin == "*":
        return bool(origin)
    if not origin or not allowed_origin:
        return False

    origin_scheme, origin_host, origin_port = _split_origin(origin, default_scheme="https")
    allowed_scheme, allowed_host, allowed_port = _split_origin(allowed_origin, default_scheme="https")
    if not (origin_host and allowed_host):
        return False
    scheme_ok = not (allowed_scheme and origin_scheme) or allowed_scheme == origin_scheme
    port_ok = allowed_port is None or allowed_port == origin_port
    if not (scheme_ok and port_ok):
        return False
    if allowed_host.startswith("*."):
        base = allowed_host[2:]
        return origin_host == base or origin_host.endswith("." + base)
    return origin_host == allowed_host


def _allow_headers(req: func.HttpRequest) -> str:
    """Client headers plus whatever a preflight asks for, deduplicated case-insensitively."""
    names: List[str] = list(DEFAULT_ALLOWED_HEADERS)
    known = {name.lower() for name in names}
    for requested in req.headers.get("Access-Control-Request-Headers", "").split(","):
        requested = requested.strip()
        if requested and requested.lower() not in known:
            known.add(requested.lower())
            names.append(requested)
    return ", ".join(names)


def _allow_methods(methods: Iterable[str]) -> str:
    ordered: List[str] = []
    for method in list(methods) + ["OPTIONS"]:
        upper = method.strip().upper()
        if upper and upper not in ordered:
            ordered.append(upper)
    return ", ".join(ordered)


def build_cors_headers(req: func.HttpRequest, allowed_methods: Iterable[str]) -> Dict[str, str]:
    """
    CORS headers for this request. A disallowed origin only gets Vary, so the
    browser blocks the response.
    """
    origin = req.headers.get("origin") or req.headers.get("Origin")
    wildcard = "*" in ALLOWED_ORIGINS
    if not wildcard and not any(_origin_matches(origin, entry) for entry in ALLOWED_ORIGINS):
        return {"Vary": "Origin"}

    echo_origin = bool(origin) and (ALLOW_CREDENTIALS or not wildcard)
    headers = {
        "Vary": "Origin",
        "Access-Control-Allow-Origin": origin if echo_origin else "*",
        "Access-Control-Allow-Methods": _allow_methods(allowed_methods),
        "Access-Control-Allow-Headers": _allow_headers(req),
    }
    if ALLOW_CREDENTIALS:
        headers["Access-Control-Allow-Credentials"] = "true"
    return headers
