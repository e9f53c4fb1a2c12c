"""URL handling.

``canonicalize_url`` is applied to every URL before it is stored or sent:
query strings and fragments carry tracking tokens and session ids, so only
scheme, host, port and path survive.
"""

import logging
import re
from typing import Any, Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

_CART_URL_RE = re.compile(r"(\bcart\b|\bbag\b|\bcheckout\b)", re.IGNORECASE)


def canonicalize_url(url: Any) -> Optional[str]:
    """Strip query, fragment and credentials from an http(s) URL.

    Returns:
        The canonical URL, or ``None`` when the input cannot be parsed.
    """
    if not isinstance(url, str) or not url.strip():
        return None
    try:
        parsed = urlsplit(url.strip())
        port = parsed.port
    except ValueError:
        return None
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.hostname:
        return None
    netloc = parsed.hostname
    if port is not None:
        netloc = f"{netloc}:{port}"
    return f"{parsed.scheme.lower()}://{netloc}{parsed.path}"


def require_canonical_url(url: Any, field_name: str = "url") -> str:
    """Canonicalize *url* or raise.

    Raises:
        ValueError: If the URL cannot be parsed.
    """
    canonical = canonicalize_url(url)
    if canonical is None:
        raise ValueError(f"{field_name} is not a valid http(s) URL: {url!r}")
    return canonical


def hostname_of(url: str) -> str:
    """Host without a leading ``www.``; empty string when unparseable."""
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def is_cart_url(url: str) -> bool:
    return bool(_CART_URL_RE.search(url or ""))


def validate_backend_url(url: Optional[str], *, allow_localhost_http: bool = True) -> Optional[str]:
    """Validate a backend URL before a bearer token is sent to it.

    Rejects non-http/https schemes, URLs with no host, and remote HTTP
    endpoints (only localhost/127.0.0.1 are allowed over plaintext HTTP).

    Returns:
        The URL without a trailing slash if valid, or ``None`` if rejected
        (with a warning logged for each rejection reason).
    """
    if not url:
        return None
    try:
        parsed = urlsplit(url)
    except ValueError:
        logger.warning("Invalid backend_url; could not parse.")
        return None
    if parsed.scheme not in {"https", "http"}:
        logger.warning("Invalid backend_url scheme; only http/https allowed.")
        return None
    if not parsed.netloc:
        logger.warning("Invalid backend_url; missing host.")
        return None
    if parsed.scheme == "http":
        if not allow_localhost_http:
            logger.warning("HTTP not allowed in this context.")
            return None
        host = parsed.hostname or ""
        if host not in {"localhost", "127.0.0.1"}:
            logger.warning("Refusing non-local http backend_url for security.")
            return None
    return url.rstrip("/")
