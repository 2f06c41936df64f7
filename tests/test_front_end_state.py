"""Tests for the Streamlit-facing helpers: upload bookkeeping, engine teardown and refresh decisions."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from conftest import CaptureFactory, FakeCapture
from core.acquisition import AcquisitionSource
from core.scheduler import CaptureScheduler
from core.types import CaptureMode
from ui.engine_runner import EngineRunner
from ui.live_view import controls_outdated
from utils import state_manager


@pytest.fixture
def state() -> dict:
    session: dict = {}
    state_manager.initialize_state(session)
    return session


def make_runner(capture: FakeCapture) -> EngineRunner:
    async def gateway(payload, context):
        raise AssertionError("no analysis expected")

    source = AcquisitionSource(capture_factory=CaptureFactory(capture))
    return EngineRunner(CaptureScheduler(gateway=gateway, source=source))


class TestUploadBookkeeping:
    def test_same_upload_is_loaded_once(self, state: dict) -> None:
        assert state_manager.claim_upload("file-1", state) is True
        assert state_manager.claim_upload("file-1", state) is False
        assert state_manager.claim_upload("file-2", state) is True

    def test_clearing_gives_the_uploader_a_fresh_key(self, state: dict) -> None:
        state_manager.claim_upload("file-1", state)
        before = state_manager.uploader_key(state)

        state_manager.clear_upload(state)

        assert state_manager.uploader_key(state) != before
        assert state["asset_token"] is None

    def test_empty_uploader_claims_nothing(self, state: dict) -> None:
        assert state_manager.claim_upload(None, state) is False


class TestEngineTeardown:
    def test_new_runner_is_stopped_at_exit(self, state: dict, monkeypatch: pytest.MonkeyPatch) -> None:
        registered = []
        monkeypatch.setattr(state_manager.atexit, "register", registered.append)
        capture = FakeCapture()

        runner = state_manager.get_runner(lambda: make_runner(capture), state)
        try:
            assert state_manager.get_runner(lambda: make_runner(FakeCapture()), state) is runner
            assert registered == [runner.stop]
        finally:
            runner.stop()

    def test_stop_releases_camera_and_loop_thread(self) -> None:
        capture = FakeCapture()
        runner = make_runner(capture)
        runner.start()
        assert runner.submit(runner.scheduler.start_live()) is True
        thread = runner._thread

        runner.stop()
        runner.stop()

        assert capture.released
        assert not thread.is_alive()
        assert runner._thread is None


def snapshot(mode: CaptureMode, in_flight: bool = False, device_error: bool = False) -> SimpleNamespace:
    return SimpleNamespace(mode=mode, in_flight=in_flight, device_error=device_error)


class TestControlsOutdated:
    def test_settled_manual_call_needs_refresh(self) -> None:
        drawn = snapshot(CaptureMode.STATIC_IMAGE, in_flight=True)

        assert controls_outdated(drawn, snapshot(CaptureMode.STATIC_IMAGE, in_flight=False)) is True

    def test_unchanged_static_image_needs_nothing(self) -> None:
        drawn = snapshot(CaptureMode.STATIC_IMAGE)

        assert controls_outdated(drawn, snapshot(CaptureMode.STATIC_IMAGE)) is False

    def test_surveillance_ticks_do_not_refresh_controls(self) -> None:
        drawn = snapshot(CaptureMode.CONTINUOUS_SURVEILLANCE)

        assert controls_outdated(drawn, snapshot(CaptureMode.CONTINUOUS_SURVEILLANCE, in_flight=True)) is False

    @pytest.mark.parametrize("current", [
        snapshot(CaptureMode.IDLE),
        snapshot(CaptureMode.STATIC_IMAGE, device_error=True),
    ])
    def test_mode_or_device_error_change_refreshes(self, current: SimpleNamespace) -> None:
        assert controls_outdated(snapshot(CaptureMode.STATIC_IMAGE), current) is True
