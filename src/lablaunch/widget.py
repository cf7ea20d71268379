"""Lab launch widget: launch button, credentials panel and MFA code section.

The widget owns one :class:`ProvisionInitiator` and one
:class:`OtpCountdownController` for its mounted lifetime and turns every
service failure into a single ``error`` string for display.
"""

from __future__ import annotations

import logging

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.text import Text

from lablaunch.client import LabApiClient
from lablaunch.errors import LabApiError
from lablaunch.initiator import ProvisionInitiator
from lablaunch.models import OtpCode, ProvisionRequest, ProvisionResult
from lablaunch.otp import OtpCountdownController

logger = logging.getLogger(__name__)


class LabWidget:
    """A single lab launch session."""

    def __init__(
        self,
        client: LabApiClient | None = None,
        *,
        cycle_seconds: int | None = None,
        warning_seconds: int | None = None,
        tick_interval: float | None = None,
    ) -> None:
        self._owns_client = client is None
        self.client = client or LabApiClient()
        self.initiator = ProvisionInitiator(self.client)
        self.otp = OtpCountdownController(
            self.client,
            cycle_seconds=cycle_seconds,
            warning_seconds=warning_seconds,
            tick_interval=tick_interval,
        )
        self.response: ProvisionResult | None = None
        self.error: str | None = None

    @property
    def loading(self) -> bool:
        return self.initiator.loading

    @property
    def disposed(self) -> bool:
        return self.otp.disposed

    # --- Actions ---

    async def launch(self, request: ProvisionRequest) -> ProvisionResult | None:
        """Launch a lab. Returns ``None`` if skipped or failed (see ``error``)."""
        if self.disposed or self.loading:
            return None

        self.error = None
        try:
            result = await self.initiator.launch(request)
        except LabApiError as e:
            if not self.disposed:
                self.error = e.message
            return None

        if self.disposed:
            logger.debug("Discarding launch result for %s after dispose", result.username)
            return None
        self.response = result
        self.otp.seed_from_launch(result)
        return result

    async def refresh(self) -> OtpCode | None:
        """Request a fresh verification code for the launched user."""
        if self.otp.username:
            self.error = None
        try:
            return await self.otp.refresh()
        except LabApiError as e:
            self.error = e.message
            return None

    # --- Lifetime ---

    async def dispose(self) -> None:
        await self.otp.dispose()

    async def aclose(self) -> None:
        await self.dispose()
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> LabWidget:
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.aclose()

    # --- Rendering ---

    def render(self) -> RenderableType:
        parts: list[RenderableType] = [
            Text(
                "[ Launching Lab... ]" if self.loading else "[ Launch Lab Environment ]",
                style="bold white on dodger_blue2",
            )
        ]

        if self.response is not None:
            parts.append(self._render_response(self.response))

        if self.error:
            parts.append(Text(f"Error: {self.error}", style="red"))

        return Group(*parts)

    def _render_response(self, result: ProvisionResult) -> Panel:
        display = self.otp.display()
        refresh_label = "[ Refreshing... ]" if self.otp.state.refreshing else "[ Refresh Code ]"

        lines: list[RenderableType] = [
            Text.assemble(("Username: ", "bold"), result.username),
            Text.assemble(("Password: ", "bold"), result.password),
            Text(""),
            Text.assemble(("MFA Verification Code:  ", "bold"), (refresh_label, "dodger_blue2")),
        ]

        if display.code is not None:
            color = "red" if display.warning else "green"
            lines.append(Text(" ".join(display.code), style="bold"))
            lines.append(
                ProgressBar(
                    total=1.0,
                    completed=display.progress,
                    width=30,
                    complete_style=color,
                    finished_style=color,
                )
            )
            lines.append(Text(display.label, style="grey50"))
        else:
            lines.append(Text(display.label, style="red" if display.warning else "grey50"))

        return Panel(Group(*lines), title="Lab Environment Ready!", width=50)
