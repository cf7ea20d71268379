"""Async HTTP client for the lab provisioning service.

Three endpoints are used: launch (provision a lab and return credentials),
OTP refresh (issue a fresh code for a known username) and a fire-and-forget
trigger that posts the launch body and only reports the raw response.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from lablaunch.config import settings
from lablaunch.errors import MalformedResponseError, ServerError, TransportError
from lablaunch.models import OtpCode, ProvisionRequest, ProvisionResult

logger = logging.getLogger(__name__)

_JSON_HEADERS = {"Content-Type": "application/json"}

# Launch fields that may be dropped without failing the launch
_OPTIONAL_OTP_FIELDS = frozenset({"totpCode", "totpExpiryTime", "totpSecondsRemaining"})


def _invalid_fields(e: ValidationError) -> set[str]:
    return {str(err["loc"][0]) for err in e.errors() if err.get("loc")}


def _error_message(resp: httpx.Response, fallback: str) -> str:
    """Server-provided ``error`` field if present, else the fallback text."""
    try:
        data = resp.json()
    except ValueError:
        return fallback
    if isinstance(data, dict):
        message = data.get("error")
        if isinstance(message, str) and message:
            return message
    return fallback


def _json_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as e:
        raise MalformedResponseError(
            f"Response is not valid JSON (status {resp.status_code})",
            status_code=resp.status_code,
        ) from e
    if not isinstance(data, dict):
        raise MalformedResponseError(
            "Response JSON is not an object", status_code=resp.status_code
        )
    return data


class LabApiClient:
    """Client for the launch, OTP refresh and trigger endpoints."""

    def __init__(
        self,
        *,
        launch_url: str | None = None,
        otp_refresh_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.launch_url = launch_url or settings.launch_url
        self.otp_refresh_url = otp_refresh_url or settings.otp_refresh_url
        self._client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.request_timeout,
            transport=transport,
            headers=_JSON_HEADERS,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> LabApiClient:
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.aclose()

    async def _post(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            return await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("POST %s failed without a response: %s", url, e)
            raise TransportError(str(e) or type(e).__name__) from e

    # --- Endpoints ---

    async def launch(self, request: ProvisionRequest) -> ProvisionResult:
        """Provision a lab. Exactly one request, never retried."""
        resp = await self._post(self.launch_url, request.to_payload())
        if not resp.is_success:
            message = _error_message(resp, f"Request failed: {resp.status_code}")
            logger.warning("Launch rejected (%d): %s", resp.status_code, message)
            raise ServerError(message, status_code=resp.status_code)

        data = _json_body(resp)
        try:
            result = ProvisionResult.model_validate(data)
        except ValidationError as e:
            invalid = _invalid_fields(e)
            if not invalid <= _OPTIONAL_OTP_FIELDS:
                raise MalformedResponseError(
                    f"Launch response is malformed ({', '.join(sorted(invalid))})",
                    status_code=resp.status_code,
                ) from e
            logger.debug("Ignoring unusable OTP fields in launch response: %s", ", ".join(sorted(invalid)))
            result = ProvisionResult.model_validate(
                {k: v for k, v in data.items() if k not in invalid}
            )
        logger.info(
            "Launched lab in %s for user %s (otp=%s)",
            request.resource_group,
            result.username,
            "yes" if result.totp_code else "no",
        )
        return result

    async def refresh_otp(self, username: str) -> OtpCode:
        """Request a fresh one-time code for an already provisioned user."""
        resp = await self._post(self.otp_refresh_url, {"username": username})
        if not resp.is_success:
            message = _error_message(resp, "Failed to refresh verification code")
            logger.warning("OTP refresh rejected (%d): %s", resp.status_code, message)
            raise ServerError(message, status_code=resp.status_code)

        data = _json_body(resp)
        try:
            otp = OtpCode.model_validate(data)
        except ValidationError as e:
            missing = ", ".join(sorted(_invalid_fields(e)))
            raise MalformedResponseError(
                f"Refresh response is malformed ({missing})",
                status_code=resp.status_code,
            ) from e
        logger.debug("Refreshed OTP for %s (%ss left)", username, otp.seconds_remaining)
        return otp

    async def trigger(self, request: ProvisionRequest) -> str:
        """Post the launch body and return the raw response text."""
        resp = await self._post(self.launch_url, request.to_payload())
        if not resp.is_success:
            logger.error(
                "Trigger failed with status %d: %s", resp.status_code, resp.text[:200]
            )
            raise ServerError(
                f"Request failed: {resp.status_code} {resp.text[:200]}".rstrip(),
                status_code=resp.status_code,
            )
        logger.info("Trigger response: %s", resp.text[:200])
        return resp.text
