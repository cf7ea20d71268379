"""Pydantic models for data exchanged with the lab provisioning service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class OtpPhase(StrEnum):
    EMPTY = "empty"
    VALID = "valid"
    EXPIRED = "expired"
    REFRESHING = "refreshing"


# === Wire models ===


class ProvisionRequest(BaseModel):
    """Deployment target for one launch attempt."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    subscription_id: NonEmptyStr = Field(alias="subscriptionId")
    resource_group: NonEmptyStr = Field(alias="resourceGroup")
    template_url: NonEmptyStr = Field(alias="templateUrl")

    def to_payload(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


class OtpCode(BaseModel):
    """A one-time code as returned by the refresh endpoint."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    code: str
    expiry_time: datetime = Field(alias="expiryTime")
    seconds_remaining: int = Field(alias="secondsRemaining")

    @field_validator("seconds_remaining")
    @classmethod
    def _clamp_seconds(cls, v: int) -> int:
        return max(v, 0)


class ProvisionResult(BaseModel):
    """Account credentials (and optionally a first OTP) for a launched lab."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True, extra="allow")

    username: str
    password: str
    totp_code: str | None = Field(default=None, alias="totpCode")
    totp_expiry_time: datetime | None = Field(default=None, alias="totpExpiryTime")
    totp_seconds_remaining: int | None = Field(default=None, alias="totpSecondsRemaining")

    def otp_seed(self) -> OtpCode | None:
        """The OTP carried by the launch response, if it is complete."""
        if not self.totp_code or self.totp_expiry_time is None or self.totp_seconds_remaining is None:
            return None
        return OtpCode(
            code=self.totp_code,
            expiry_time=self.totp_expiry_time,
            seconds_remaining=self.totp_seconds_remaining,
        )


# === Controller state ===


@dataclass(frozen=True)
class OtpState:
    """Read-only snapshot of the OTP controller."""

    code: str | None = None
    expiry: datetime | None = None
    seconds_remaining: int = 0
    refreshing: bool = False

    @property
    def phase(self) -> OtpPhase:
        if self.refreshing:
            return OtpPhase.REFRESHING
        if self.code is None:
            return OtpPhase.EMPTY
        if self.seconds_remaining > 0:
            return OtpPhase.VALID
        return OtpPhase.EXPIRED
