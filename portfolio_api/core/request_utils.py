"""Request utility functions for handling common request operations."""

import ipaddress
import logging
import secrets
import time

from fastapi import Request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _is_valid_ip(ip_str: str) -> bool:
    """Check if a string is a valid IP address."""
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def generate_request_id() -> str:
    """Generate a correlation id of the form req_<epoch-ms>_<16 hex chars>."""
    return f"req_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


def get_request_id(request: Request) -> str | None:
    """Return the correlation id the caller supplied, if any.

    The request-id middleware stores the caller's header on request.state;
    ids generated server-side are not echoed in error envelopes.
    """
    supplied = getattr(request.state, "supplied_request_id", None)
    if supplied is not None:
        return supplied
    value = request.headers.get(REQUEST_ID_HEADER)
    return value.strip() if value and value.strip() else None


def get_client_ip(request: Request, trusted_proxies: set[str] | None = None) -> str:
    """Get the client IP address from a request.

    X-Forwarded-For / X-Real-IP are only honoured when the direct peer is a
    configured trusted proxy; otherwise they are trivially spoofable and would
    let a caller dodge the per-IP login limits.

    Args:
        request: The FastAPI request object
        trusted_proxies: Peer addresses allowed to set forwarding headers

    Returns:
        Client IP address, or "unknown" if not available
    """
    direct_ip = request.client.host if request.client else None

    if trusted_proxies and direct_ip in trusted_proxies:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            ip = forwarded.split(",")[0].strip()
            if _is_valid_ip(ip):
                return ip
            logger.warning(f"Invalid IP in X-Forwarded-For header: {ip}")

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            ip = real_ip.strip()
            if _is_valid_ip(ip):
                return ip
            logger.warning(f"Invalid X-Real-IP: {real_ip}")

    if direct_ip:
        return direct_ip

    return "unknown"
