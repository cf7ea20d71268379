"""CLI entry point for lablaunch."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from pydantic import ValidationError
from rich.console import Console
from rich.live import Live
from rich.table import Table

from lablaunch.config import settings
from lablaunch.models import OtpPhase, ProvisionRequest

console = Console()

_LIVE_PHASES = (OtpPhase.VALID, OtpPhase.REFRESHING)


def _request_for(profile: str) -> ProvisionRequest:
    from lablaunch.config import profile_request

    try:
        return profile_request(profile)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    except ValidationError as e:
        console.print(f"[red]Lab profile {profile!r} is invalid:[/red] {e.error_count()} bad field(s)")
        sys.exit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log at DEBUG level.")
def main(verbose: bool) -> None:
    """lablaunch: launch lab environments and show their MFA codes."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )


@main.command()
def status() -> None:
    """Show configured endpoints and timing."""
    console.print("[bold]lablaunch Configuration[/bold]")
    console.print(f"  Launch endpoint: {settings.launch_url}")
    console.print(f"  OTP endpoint: {settings.otp_refresh_url}")
    console.print(f"  Timeout: {settings.request_timeout:g}s")
    console.print(f"  OTP cycle: {settings.otp_cycle_seconds}s (warn under {settings.otp_warning_seconds}s)")
    console.print(f"  Default profile: {settings.default_profile}")
    console.print(f"  Supabase: {settings.supabase_url or '[dim]not configured[/dim]'}")


@main.command()
def profiles() -> None:
    """List lab profiles."""
    from lablaunch.config import load_all_lab_profiles

    all_profiles = load_all_lab_profiles()
    if not all_profiles:
        console.print("[yellow]No lab profiles found[/yellow]")
        return

    table = Table("Slug", "Name", "Resource group", "Template")
    for slug, p in all_profiles.items():
        table.add_row(slug, p.name, p.resource_group, p.template_url)
    console.print(table)


@main.command()
@click.option("--profile", default=None, help="Lab profile slug.")
def trigger(profile: str | None) -> None:
    """Send the launch request without waiting for credentials."""
    from lablaunch.client import LabApiClient
    from lablaunch.errors import LabApiError

    request = _request_for(profile or settings.default_profile)

    async def _trigger() -> str:
        async with LabApiClient() as client:
            return await client.trigger(request)

    try:
        text = asyncio.run(_trigger())
    except LabApiError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        sys.exit(1)
    console.print(text)


@main.command()
@click.option("--profile", default=None, help="Lab profile slug.")
@click.option("--watch/--no-watch", default=True, help="Keep showing the MFA code countdown.")
def launch(profile: str | None, watch: bool) -> None:
    """Launch a lab environment and show its credentials."""
    from lablaunch.widget import LabWidget

    request = _request_for(profile or settings.default_profile)

    async def _launch() -> int:
        async with LabWidget() as widget:
            with console.status("Launching Lab..."):
                await widget.launch(request)
            if widget.response is None:
                console.print(widget.render())
                return 1
            if not watch:
                console.print(widget.render())
                return 0

            while True:
                with Live(widget.render(), console=console, refresh_per_second=4) as live:
                    while widget.otp.phase in _LIVE_PHASES:
                        await asyncio.sleep(0.25)
                        live.update(widget.render())
                    live.update(widget.render())
                if not click.confirm("Request a new verification code?", default=True):
                    return 0
                await widget.refresh()

    sys.exit(asyncio.run(_launch()))


@main.command()
@click.argument("username")
def otp(username: str) -> None:
    """Request a fresh verification code for USERNAME."""
    from lablaunch.widget import LabWidget

    async def _otp() -> int:
        async with LabWidget() as widget:
            widget.otp.username = username
            await widget.refresh()
            if widget.error:
                console.print(f"[red]Error: {widget.error}[/red]")
                return 1
            display = widget.otp.display()
            if display.code is None:
                console.print(display.label)
            else:
                console.print(f"[bold]{display.code}[/bold]  {display.label}")
            return 0

    sys.exit(asyncio.run(_otp()))


@main.command()
@click.argument("email")
@click.password_option(confirmation_prompt=False)
def login(email: str, password: str) -> None:
    """Sign in to Supabase with EMAIL and a password."""
    from lablaunch.auth import SupabaseAuthPanel
    from lablaunch.errors import AuthError

    async def _login() -> str:
        async with SupabaseAuthPanel() as panel:
            session = await panel.sign_in_with_password(email, password)
            return session.user.email or session.user.id

    try:
        who = asyncio.run(_login())
    except (ValueError, AuthError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    console.print(f"Welcome, {who}")


if __name__ == "__main__":
    main()
