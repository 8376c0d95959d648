"""CSRF protection for the HTTP binding.

Tokens use the double-submit pattern: the token is set as an HttpOnly cookie
by ``GET /csrf-token`` and must be echoed back in a request header. The token
is ``<random>.<hmac>`` so a forged cookie/header pair is still rejected.
"""

import hashlib
import hmac
import logging
import re
import secrets
from collections.abc import Mapping
from urllib.parse import urlsplit

from billsdk.core.config import Settings
from billsdk.core.errors import CSRFError, ErrorCode

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
SKIP_PATHS = frozenset({"/webhook"})
SEPARATOR = "."


def _sign(value: str, secret: str) -> str:
    return hmac.new(secret.encode(), value.encode(), hashlib.sha256).hexdigest()


def generate_token(secret: str) -> str:
    """Generate a token of the form ``<64 hex chars>.<hex HMAC-SHA256 of the random part>``."""
    random_part = secrets.token_hex(32)
    return f"{random_part}{SEPARATOR}{_sign(random_part, secret)}"


def verify_token(token: str, secret: str) -> bool:
    """Check that ``token`` was signed with ``secret``."""
    random_part, sep, signature = token.partition(SEPARATOR)
    if not sep or not random_part or not signature:
        return False
    return hmac.compare_digest(_sign(random_part, secret).encode(), signature.encode())


def parse_cookie(header: str | None, name: str) -> str | None:
    """Read one cookie value from a raw ``Cookie`` header."""
    if not header:
        return None
    prefix = f"{name}="
    for part in header.split(";"):
        part = part.strip()
        if part.startswith(prefix):
            return part[len(prefix) :]
    return None


def build_cookie_header(name: str, value: str, secure: bool) -> str:
    parts = [f"{name}={value}", "HttpOnly", "SameSite=Lax", "Path=/"]
    if secure:
        parts.append("Secure")
    return "; ".join(parts)


def _wildcard_pattern(pattern: str) -> re.Pattern[str]:
    # ``**`` matches anything, ``*`` matches a single host label
    escaped = re.escape(pattern).replace(r"\*\*", "\0").replace(r"\*", "[^.]+")
    return re.compile("^" + escaped.replace("\0", ".*") + "$")


def is_trusted_origin(url: str, patterns: list[str]) -> bool:
    """Match the origin of ``url`` against trusted origin patterns.

    Patterns without a wildcard must equal the origin exactly
    (``https://app.example.com``). Wildcard patterns with a scheme match the
    origin (``https://*.example.com``), host-only patterns match the host
    (``*.example.com``).
    """
    if not url:
        return False
    parsed = urlsplit(url)
    if not parsed.scheme or not parsed.netloc:
        return False
    origin = f"{parsed.scheme}://{parsed.netloc}"

    for pattern in patterns:
        if "*" not in pattern:
            if pattern.rstrip("/") == origin:
                return True
        elif "://" in pattern:
            if _wildcard_pattern(pattern).match(origin):
                return True
        elif _wildcard_pattern(pattern).match(parsed.netloc):
            return True
    return False


def check_request(method: str, path: str, headers: Mapping[str, str], config: Settings) -> None:
    """Validate origin and CSRF token for a mutating request.

    Safe methods and the webhook path are exempt. The origin check is skipped
    when no trusted origins are configured.

    Raises:
        CSRFError: If the origin is untrusted or the token is missing,
            mismatched or has an invalid signature.
    """
    if method.upper() in SAFE_METHODS or path in SKIP_PATHS:
        return

    trusted = config.trusted_origins
    if trusted:
        origin = headers.get("origin") or headers.get("referer") or ""
        if not origin or origin == "null":
            logger.warning("Origin check failed for %s: missing origin", path)
            raise CSRFError("Missing or null Origin header", code=ErrorCode.ORIGIN_NOT_TRUSTED)
        if not is_trusted_origin(origin, trusted):
            logger.warning("Origin check failed for %s: %s", path, origin)
            raise CSRFError(f"Origin {origin} is not trusted", code=ErrorCode.ORIGIN_NOT_TRUSTED)

    header_token = headers.get(config.CSRF_HEADER_NAME)
    if not header_token:
        raise CSRFError("Missing CSRF token")
    cookie_token = parse_cookie(headers.get("cookie"), config.CSRF_COOKIE_NAME)
    if not cookie_token:
        raise CSRFError("Missing CSRF cookie")
    if not hmac.compare_digest(header_token.encode(), cookie_token.encode()):
        logger.warning("CSRF check failed for %s: token mismatch", path)
        raise CSRFError("CSRF token mismatch")
    if not verify_token(header_token, config.SECRET):
        logger.warning("CSRF check failed for %s: invalid signature", path)
        raise CSRFError("CSRF token signature invalid")
