"""Countdown and refresh cycle for the time-boxed MFA verification code.

The controller holds one code at a time. A countdown task decrements the
remaining seconds once per tick while any remain, and a manual ``refresh()``
asks the service for a new code for the provisioned username.

Phases::

    empty ──refresh()──▶ refreshing ──ok──▶ valid ──ticks reach 0──▶ expired
      ▲                      │                                          │
      └───────failure────────┘◀───────────────refresh()─────────────────┘

Only one refresh may be in flight; extra calls while refreshing are ignored.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass

from lablaunch.client import LabApiClient
from lablaunch.config import settings
from lablaunch.errors import LabApiError
from lablaunch.models import OtpCode, OtpPhase, OtpState, ProvisionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OtpDisplay:
    """What the code section should show for the current phase."""

    phase: OtpPhase
    code: str | None
    progress: float
    warning: bool
    label: str


class OtpCountdownController:
    """Owns the current code, its expiry and the per-second countdown."""

    def __init__(
        self,
        client: LabApiClient,
        *,
        cycle_seconds: int | None = None,
        warning_seconds: int | None = None,
        tick_interval: float | None = None,
    ) -> None:
        self.client = client
        self.cycle_seconds = cycle_seconds or settings.otp_cycle_seconds
        self.warning_seconds = warning_seconds if warning_seconds is not None else settings.otp_warning_seconds
        self.tick_interval = tick_interval if tick_interval is not None else settings.tick_interval

        self.username: str | None = None
        self._state = OtpState()
        self._timer: asyncio.Task[None] | None = None
        self._disposed = False
        self._generation = 0

    # --- State ---

    @property
    def state(self) -> OtpState:
        return self._state

    @property
    def phase(self) -> OtpPhase:
        return self._state.phase

    @property
    def timer_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def disposed(self) -> bool:
        return self._disposed

    def seed(self, otp: OtpCode) -> None:
        """Replace the current code in one assignment and restart the countdown."""
        self._state = OtpState(
            code=otp.code,
            expiry=otp.expiry_time,
            seconds_remaining=otp.seconds_remaining,
            refreshing=self._state.refreshing,
        )
        self._restart_timer()

    def seed_from_launch(self, result: ProvisionResult) -> None:
        """Adopt the launched username and the first code, if the launch carried one.

        Starts a new session: a refresh still in flight for the previous
        username is discarded when it resolves.
        """
        self._generation += 1
        self.username = result.username
        otp = result.otp_seed()
        if otp is None:
            logger.debug("Launch for %s carried no complete OTP; waiting for refresh", result.username)
            self.clear()
            return
        self._set_refreshing(False)
        self.seed(otp)

    def clear(self) -> None:
        """Drop the code and stop counting down."""
        self._generation += 1
        self._cancel_timer()
        self._state = OtpState()

    def tick(self) -> int:
        """Apply one elapsed second. Never goes below zero."""
        remaining = max(self._state.seconds_remaining - 1, 0)
        if remaining != self._state.seconds_remaining:
            self._state = OtpState(
                code=self._state.code,
                expiry=self._state.expiry,
                seconds_remaining=remaining,
                refreshing=self._state.refreshing,
            )
            if remaining == 0:
                logger.info("Verification code for %s expired", self.username)
        return remaining

    # --- Refresh ---

    async def refresh(self) -> OtpCode | None:
        """Fetch a new code for the known username.

        Returns the new code, or ``None`` when the call was skipped (no
        identity, a refresh already in flight) or its outcome was discarded
        (the controller was disposed, relaunched or cleared before the
        response arrived). Service failures reset the controller to empty and
        propagate as :class:`LabApiError`.
        """
        if self._disposed:
            return None
        if not self.username:
            logger.debug("Refresh requested before any lab was launched; ignoring")
            return None
        if self._state.refreshing:
            logger.debug("Refresh for %s already in flight; ignoring", self.username)
            return None

        username = self.username
        generation = self._generation
        self._set_refreshing(True)
        try:
            otp = await self.client.refresh_otp(username)
        except LabApiError as e:
            if self._outdated(generation):
                logger.debug("Discarding refresh failure for %s: %s", username, e.message)
                return None
            self._cancel_timer()
            self._state = OtpState()
            raise
        finally:
            if not self._outdated(generation):
                self._set_refreshing(False)

        if self._outdated(generation):
            logger.debug("Discarding refresh result for %s", username)
            return None
        self.seed(otp)
        return otp

    # --- Display ---

    def display(self) -> OtpDisplay:
        state = self._state
        phase = state.phase
        if phase is OtpPhase.REFRESHING:
            return OtpDisplay(phase, None, 0.0, False, "Refreshing...")
        if phase is OtpPhase.EMPTY:
            return OtpDisplay(
                phase, None, 0.0, False,
                "No verification code available. Refresh to request one.",
            )
        if phase is OtpPhase.EXPIRED:
            return OtpDisplay(phase, None, 0.0, True, "Code expired - please refresh")

        progress = min(max(state.seconds_remaining / self.cycle_seconds, 0.0), 1.0)
        return OtpDisplay(
            phase,
            state.code,
            progress,
            state.seconds_remaining < self.warning_seconds,
            f"{state.seconds_remaining}s remaining",
        )

    # --- Lifetime ---

    async def dispose(self) -> None:
        """Stop the countdown and ignore any response that arrives later."""
        self._disposed = True
        task = self._timer
        self._cancel_timer()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # --- Internals ---

    def _outdated(self, generation: int) -> bool:
        return self._disposed or generation != self._generation

    def _set_refreshing(self, refreshing: bool) -> None:
        s = self._state
        self._state = OtpState(
            code=s.code,
            expiry=s.expiry,
            seconds_remaining=s.seconds_remaining,
            refreshing=refreshing,
        )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _restart_timer(self) -> None:
        self._cancel_timer()
        if self._disposed or self._state.seconds_remaining <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop: the caller drives the countdown through tick().
            return
        self._timer = loop.create_task(self._countdown(), name="otp-countdown")

    async def _countdown(self) -> None:
        while self._state.seconds_remaining > 0:
            await asyncio.sleep(self.tick_interval)
            self.tick()
        if self._timer is asyncio.current_task():
            self._timer = None
