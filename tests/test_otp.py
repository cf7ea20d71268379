"""Tests for the OTP countdown controller."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import httpx
import pytest

from lablaunch.client import LabApiClient
from lablaunch.errors import ServerError
from lablaunch.models import OtpCode, OtpPhase, ProvisionResult
from lablaunch.otp import OtpCountdownController

EXPIRY = "2026-10-19T12:00:30Z"


def _otp_response(code: str = "654321", seconds: int = 30) -> httpx.Response:
    return httpx.Response(200, json={"code": code, "expiryTime": EXPIRY, "secondsRemaining": seconds})


def _controller(handler, **kwargs) -> OtpCountdownController:
    client = LabApiClient(
        launch_url="https://labs.test/launch",
        otp_refresh_url="https://labs.test/otp",
        transport=httpx.MockTransport(handler),
    )
    kwargs.setdefault("tick_interval", 3600)
    return OtpCountdownController(client, cycle_seconds=30, warning_seconds=10, **kwargs)


def _never_called(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


def _seed(seconds: int, code: str = "123456") -> OtpCode:
    return OtpCode(code=code, expiry_time=datetime(2026, 10, 19, 12, 0, 30, tzinfo=UTC), seconds_remaining=seconds)


def test_initial_state_is_empty():
    ctl = _controller(_never_called)
    assert ctl.phase == OtpPhase.EMPTY
    assert ctl.state.code is None
    assert ctl.state.seconds_remaining == 0
    assert not ctl.timer_running


def test_refresh_without_identity_is_noop():
    ctl = _controller(_never_called)
    before = ctl.state

    assert asyncio.run(ctl.refresh()) is None
    assert ctl.state == before
    assert ctl.phase == OtpPhase.EMPTY


def test_refresh_replaces_code_and_seconds():
    ctl = _controller(lambda request: _otp_response("987654", 22))
    ctl.seed(_seed(5, code="111111"))
    ctl.username = "labuser01"

    async def _run():
        otp = await ctl.refresh()
        running = ctl.timer_running
        await ctl.dispose()
        return otp, running

    otp, running = asyncio.run(_run())
    assert otp is not None
    assert ctl.state.code == "987654"
    assert ctl.state.seconds_remaining == 22
    assert ctl.state.expiry == datetime(2026, 10, 19, 12, 0, 30, tzinfo=UTC)
    assert running
    assert not ctl.timer_running


def test_refresh_failure_resets_to_empty():
    ctl = _controller(lambda request: httpx.Response(503, json={"error": "OTP service unavailable"}))
    ctl.seed(_seed(12))
    ctl.username = "labuser01"

    with pytest.raises(ServerError, match="OTP service unavailable"):
        asyncio.run(ctl.refresh())
    assert ctl.phase == OtpPhase.EMPTY
    assert ctl.state.code is None
    assert not ctl.state.refreshing


def test_refresh_malformed_response_resets_to_empty():
    ctl = _controller(lambda request: httpx.Response(200, json={"code": "123456"}))
    ctl.username = "labuser01"

    with pytest.raises(ServerError):
        asyncio.run(ctl.refresh())
    assert ctl.phase == OtpPhase.EMPTY


def test_concurrent_refresh_issues_one_request():
    calls = 0

    async def _run():
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            await release.wait()
            return _otp_response()

        ctl = _controller(handler)
        ctl.username = "labuser01"

        first = asyncio.create_task(ctl.refresh())
        await asyncio.sleep(0)
        assert ctl.phase == OtpPhase.REFRESHING
        second = await ctl.refresh()
        release.set()
        result = await first
        await ctl.dispose()
        return result, second, ctl

    result, second, ctl = asyncio.run(_run())
    assert calls == 1
    assert second is None
    assert result is not None
    assert ctl.phase == OtpPhase.VALID


def test_ticks_never_go_below_zero():
    ctl = _controller(_never_called)
    ctl.seed(_seed(3))
    for _ in range(10):
        assert ctl.tick() >= 0
    assert ctl.state.seconds_remaining == 0
    assert ctl.phase == OtpPhase.EXPIRED
    assert ctl.state.code == "123456"


def test_tick_on_empty_controller_stays_at_zero():
    ctl = _controller(_never_called)
    assert ctl.tick() == 0
    assert ctl.phase == OtpPhase.EMPTY


def test_launch_seed_counts_down_to_expired():
    ctl = _controller(_never_called)
    result = ProvisionResult.model_validate(
        {
            "username": "labuser01",
            "password": "P@ss",
            "totpCode": "123456",
            "totpExpiryTime": EXPIRY,
            "totpSecondsRemaining": 30,
        }
    )
    ctl.seed_from_launch(result)
    assert ctl.username == "labuser01"
    assert ctl.phase == OtpPhase.VALID
    assert ctl.state.seconds_remaining == 30

    seen = [ctl.tick() for _ in range(30)]
    assert seen == list(range(29, -1, -1))
    assert ctl.phase == OtpPhase.EXPIRED


def test_launch_without_otp_keeps_empty_but_learns_identity():
    ctl = _controller(_never_called)
    ctl.seed_from_launch(ProvisionResult(username="labuser01", password="P@ss"))
    assert ctl.username == "labuser01"
    assert ctl.phase == OtpPhase.EMPTY


def test_countdown_task_runs_until_zero():
    ctl = _controller(_never_called, tick_interval=0.01)

    async def _run():
        ctl.seed(_seed(3))
        assert ctl.timer_running
        for _ in range(200):
            if ctl.phase == OtpPhase.EXPIRED:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.02)

    asyncio.run(_run())
    assert ctl.phase == OtpPhase.EXPIRED
    assert ctl.state.seconds_remaining == 0
    assert not ctl.timer_running


def test_seed_with_zero_seconds_does_not_start_timer():
    ctl = _controller(_never_called)

    async def _run():
        ctl.seed(_seed(0))
        return ctl.timer_running

    assert asyncio.run(_run()) is False
    assert ctl.phase == OtpPhase.EXPIRED


def test_refresh_from_expired():
    ctl = _controller(lambda request: _otp_response("222222", 30))
    ctl.username = "labuser01"
    ctl.seed(_seed(0))
    assert ctl.phase == OtpPhase.EXPIRED

    async def _run():
        await ctl.refresh()
        await ctl.dispose()

    asyncio.run(_run())
    assert ctl.phase == OtpPhase.VALID
    assert ctl.state.code == "222222"


def test_dispose_cancels_timer_and_blocks_refresh():
    ctl = _controller(_never_called)

    async def _run():
        ctl.seed(_seed(30))
        ctl.username = "labuser01"
        assert ctl.timer_running
        await ctl.dispose()
        return await ctl.refresh()

    assert asyncio.run(_run()) is None
    assert not ctl.timer_running
    assert ctl.disposed


def test_refresh_result_after_dispose_is_discarded():
    async def _run():
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            await release.wait()
            return _otp_response("999999", 30)

        ctl = _controller(handler)
        ctl.username = "labuser01"
        pending = asyncio.create_task(ctl.refresh())
        await asyncio.sleep(0)
        await ctl.dispose()
        release.set()
        return await pending, ctl

    result, ctl = asyncio.run(_run())
    assert result is None
    assert ctl.state.code != "999999"
    assert not ctl.timer_running


def test_display_policy():
    ctl = _controller(_never_called)
    empty = ctl.display()
    assert empty.phase == OtpPhase.EMPTY
    assert empty.code is None
    assert "Refresh" in empty.label

    ctl.seed(_seed(15))
    valid = ctl.display()
    assert valid.code == "123456"
    assert valid.progress == pytest.approx(0.5)
    assert not valid.warning
    assert valid.label == "15s remaining"

    for _ in range(6):
        ctl.tick()
    warn = ctl.display()
    assert warn.label == "9s remaining"
    assert warn.warning

    for _ in range(9):
        ctl.tick()
    expired = ctl.display()
    assert expired.phase == OtpPhase.EXPIRED
    assert expired.code is None
    assert expired.label == "Code expired - please refresh"


def test_display_progress_is_clamped():
    ctl = _controller(_never_called)
    ctl.seed(_seed(45))
    assert ctl.display().progress == 1.0
