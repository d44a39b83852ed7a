"""
Security utilities: access credential signing, API key authentication
and rate limiting.

Access credentials are HS256-signed JWTs. Visitor, resident and gate
devices authenticate to the service with an API key; resident identity
itself is asserted by the calling app.
"""

import calendar
import secrets
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from jose import JWTError, jwt

from gatepass.core.config import get_settings
from gatepass.core.logging import get_logger
from gatepass.domain.errors import MalformedTokenError

logger = get_logger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


@dataclass(frozen=True)
class CredentialClaims:
    """
    Decoded content of an access credential token.

    Attributes:
        visit_request_id: Visit request the credential was minted for.
        issued_at: Issue time, naive UTC with whole-second precision.
        nonce: Random value bound to the stored credential.
    """

    visit_request_id: str
    issued_at: datetime
    nonce: str


class CredentialCodec:
    """
    Encodes and decodes the opaque token carried by an access credential.

    Tokens are signed with the service secret, so a visit ID alone is not
    enough to forge or guess another visitor's pass. Encoding is
    deterministic: the same claims always produce the same token.

    Example:
        codec = CredentialCodec(secret_key="...")
        token = codec.encode("3f2a", issued_at, "n0nce")
        claims = codec.decode(token)
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        """
        Initialize codec.

        Args:
            secret_key: Signing key shared by every engine instance.
            algorithm: JWS algorithm (HMAC family).
        """
        self._secret_key = secret_key
        self._algorithm = algorithm

    def encode(self, visit_request_id: str, issued_at: datetime, nonce: str) -> str:
        """
        Produce the token for a credential.

        Args:
            visit_request_id: Visit request ID.
            issued_at: Issue time (naive values are read as UTC).
            nonce: Credential nonce.

        Returns:
            str: Compact signed token.

        Raises:
            ValueError: If the visit ID or nonce is empty.
        """
        if not visit_request_id or not nonce:
            raise ValueError("visit_request_id and nonce are required")

        claims = {
            "sub": visit_request_id,
            "iat": calendar.timegm(issued_at.utctimetuple()),
            "jti": nonce,
        }
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def decode(self, token: str) -> CredentialClaims:
        """
        Verify and decode a presented token.

        The token must be the exact canonical encoding of its claims,
        which rejects edits that survive base64 decoding.

        Args:
            token: Raw token as scanned or typed at the gate.

        Returns:
            CredentialClaims: Verified claims.

        Raises:
            MalformedTokenError: If the token is not a valid credential.
        """
        if not isinstance(token, str) or not token:
            raise MalformedTokenError("Empty credential token")
        # Signed tokens are base64url; anything else never reaches jose
        if not token.isascii():
            raise MalformedTokenError("Credential token has non-ASCII characters")

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={
                    "require_sub": True,
                    "require_iat": True,
                    "require_jti": True,
                },
            )
        except JWTError as e:
            raise MalformedTokenError("Credential token failed verification") from e

        visit_request_id = payload.get("sub")
        iat = payload.get("iat")
        nonce = payload.get("jti")
        if (
            not isinstance(visit_request_id, str)
            or not isinstance(nonce, str)
            or not isinstance(iat, int)
            or isinstance(iat, bool)
        ):
            raise MalformedTokenError("Credential token has unexpected claims")

        issued_at = datetime.fromtimestamp(iat, tz=timezone.utc).replace(tzinfo=None)

        try:
            canonical = self.encode(visit_request_id, issued_at, nonce)
        except ValueError as e:
            raise MalformedTokenError("Credential token has empty claims") from e

        if not secrets.compare_digest(canonical, token):
            raise MalformedTokenError("Credential token is not canonical")

        return CredentialClaims(
            visit_request_id=visit_request_id,
            issued_at=issued_at,
            nonce=nonce,
        )


def get_credential_codec() -> CredentialCodec:
    """Build a codec from application settings."""
    settings = get_settings()
    return CredentialCodec(settings.secret_key, settings.algorithm)


async def verify_api_key(
    api_key: Annotated[str | None, Depends(api_key_header)],
) -> None:
    """
    Verify API key for device and service authentication.

    Args:
        api_key: API key from X-API-Key header.

    Raises:
        HTTPException: If API key is missing or invalid.
    """
    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
        )

    settings = get_settings()
    if not secrets.compare_digest(api_key, settings.api_key):
        logger.warning("api_key_invalid", reason="key_mismatch")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


@dataclass
class RateLimiter:
    """
    In-memory sliding window rate limiter.

    Slows down token probing at the gate endpoint. For multi-instance
    deployments move this to a shared store.

    Attributes:
        requests_per_window: Maximum requests allowed per window.
        window_seconds: Size of the sliding window in seconds.
    """

    requests_per_window: int
    window_seconds: int
    _requests: dict[str, list[float]] = field(default_factory=lambda: defaultdict(list))
    _last_eviction: float = 0.0

    @property
    def tracked_clients(self) -> int:
        """Number of client keys currently held."""
        return len(self._requests)

    def is_allowed(self, key: str) -> bool:
        """
        Record a request for the key and report whether it is allowed.

        Args:
            key: Client identifier (IP plus route group).

        Returns:
            bool: True if request is allowed, False if rate limit exceeded.
        """
        now = time.time()
        window_start = now - self.window_seconds

        if now - self._last_eviction >= self.window_seconds:
            self._evict_idle(window_start)
            self._last_eviction = now

        self._requests[key] = [
            req_time for req_time in self._requests[key]
            if req_time > window_start
        ]

        if len(self._requests[key]) < self.requests_per_window:
            self._requests[key].append(now)
            return True

        return False

    def reset(self) -> None:
        """Forget all recorded requests."""
        self._requests.clear()
        self._last_eviction = 0.0

    def _evict_idle(self, window_start: float) -> None:
        """Drop keys with no request inside the current window."""
        idle = [
            key for key, times in self._requests.items()
            if not times or times[-1] <= window_start
        ]
        for key in idle:
            del self._requests[key]


_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the process-wide rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        settings = get_settings()
        _rate_limiter = RateLimiter(
            requests_per_window=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _rate_limiter


async def check_rate_limit(request: Request) -> None:
    """
    Rate limiting dependency for FastAPI routes.

    Limits are tracked per client IP and first path segment after the
    API prefix, so polling the status view does not starve gate scans.

    Raises:
        HTTPException: If rate limit is exceeded.
    """
    rate_limiter = get_rate_limiter()
    client_ip = request.client.host if request.client else "unknown"
    segments = [part for part in request.url.path.split("/") if part]
    route_group = segments[2] if len(segments) > 2 else "root"
    key = f"{client_ip}:{route_group}"

    if not rate_limiter.is_allowed(key):
        logger.warning(
            "rate_limit_exceeded",
            client_ip=client_ip,
            route_group=route_group,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
            headers={
                "Retry-After": str(rate_limiter.window_seconds),
                "X-RateLimit-Remaining": "0",
            },
        )
