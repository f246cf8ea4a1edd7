"""Rate limiting for the LaborHire service.

Routes behind a bearer token are limited per auth user, so an admin is not
throttled by other callers sharing a NAT or proxy and cannot dodge the
limit by changing address. Requests without a valid token are keyed on the
client address. X-Forwarded-For counts only when the direct peer is one of
``Settings.trusted_proxy_cidrs``.

Limits and trusted ranges come from settings and are read per request.
"""

import ipaddress
from functools import lru_cache

from fastapi import HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from .auth import decode_token
from .config import get_settings
from .logging_config import get_logger

logger = get_logger("rate_limit")


@lru_cache
def _networks(cidrs: tuple[str, ...]) -> tuple:
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError:
            logger.warning(f"Ignoring malformed trusted proxy CIDR | cidr={cidr}")
    return tuple(networks)


def is_trusted_proxy(ip: str) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    networks = _networks(tuple(get_settings().trusted_proxy_cidrs))
    return any(address in network for network in networks)


def client_ip(request: Request) -> str:
    """The caller's address, or the leftmost forwarded one behind a trusted proxy."""
    peer = get_remote_address(request)
    if is_trusted_proxy(peer):
        forwarded = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
        if forwarded:
            return forwarded
    return peer


def caller_key(request: Request) -> str:
    """``user:<sub>`` for a valid bearer token, otherwise ``ip:<address>``.

    An invalid token is not rejected here; the route's auth dependency
    answers it with 401.
    """
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        try:
            subject = decode_token(token.strip(), get_settings()).get("sub")
        except HTTPException:
            subject = None
        if subject:
            return f"user:{subject}"
    return f"ip:{client_ip(request)}"


def admin_limit() -> str:
    return get_settings().admin_rate_limit


def wallet_limit() -> str:
    return get_settings().wallet_rate_limit


limiter = Limiter(key_func=caller_key)
