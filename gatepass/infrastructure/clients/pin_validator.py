"""
Estate PIN validation clients.

The validation service is authoritative: one attempt per submission, no
retries, and any transport or protocol failure surfaces as
DependencyError so that no visit request is created.
"""

from typing import Any

import httpx

from gatepass.core.logging import get_logger
from gatepass.domain.errors import DependencyError
from gatepass.domain.models import PinValidation
from gatepass.domain.ports import PinValidator

logger = get_logger(__name__)


class HttpPinValidator(PinValidator):
    """
    PIN validator calling the estate management HTTP API.

    Expects ``POST {base_url}/pins/validate`` to answer 200 with
    ``{"valid": bool, "guest_info": {"name": str, "purpose": str}}``.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize validator.

        Args:
            base_url: Service base URL.
            timeout_seconds: Request timeout.
            transport: Optional custom transport (tests).
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    async def validate(self, pin: str, estate_reference: str) -> PinValidation:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    "/pins/validate",
                    json={"pin": pin, "estate_reference": estate_reference},
                )
                response.raise_for_status()
                body: Any = response.json()
        except httpx.HTTPError as e:
            logger.error(
                "pin_validation_unavailable",
                estate=estate_reference,
                error=str(e),
            )
            raise DependencyError("PIN validation service is unavailable") from e
        except ValueError as e:
            logger.error("pin_validation_bad_response", estate=estate_reference)
            raise DependencyError("PIN validation service returned invalid JSON") from e

        if not isinstance(body, dict) or not isinstance(body.get("valid"), bool):
            logger.error("pin_validation_bad_response", estate=estate_reference)
            raise DependencyError("PIN validation service returned an unexpected body")

        guest_info = body.get("guest_info") or {}
        if not isinstance(guest_info, dict):
            guest_info = {}

        return PinValidation(
            valid=body["valid"],
            guest_name=guest_info.get("name"),
            purpose=guest_info.get("purpose"),
        )


class UnconfiguredPinValidator(PinValidator):
    """Stand-in when no PIN service URL is configured. Always fails closed."""

    async def validate(self, pin: str, estate_reference: str) -> PinValidation:
        logger.warning("pin_validation_not_configured", estate=estate_reference)
        raise DependencyError("PIN validation service is not configured")
