"""Tests for AcquisitionSource: device lifecycle, assets, readiness and release."""

from __future__ import annotations

import os
import time

import numpy as np
import pytest

from conftest import CaptureFactory, FakeCapture, wait_for
from core.acquisition import AcquisitionSource
from core.errors import DeviceUnavailable, FrameNotReady, PermissionDenied
from core.types import Frame, FrameKind


class TestLiveDevice:
    @pytest.mark.asyncio
    async def test_open_device_produces_frames(self) -> None:
        factory = CaptureFactory()
        source = AcquisitionSource(capture_factory=factory, device_index=2)
        try:
            source.open_device()
            assert factory.opened_with == [2]
            assert source.kind == FrameKind.LIVE

            await wait_for(lambda: source._latest_frame is not None)
            frame = source.current_frame()
            assert frame.kind == FrameKind.LIVE
            assert (frame.width, frame.height) == (64, 48)
        finally:
            source.close()

    def test_not_ready_before_first_frame(self) -> None:
        source = AcquisitionSource(capture_factory=CaptureFactory())
        source.kind = FrameKind.LIVE
        with pytest.raises(FrameNotReady):
            source.current_frame()

    def test_permission_error_maps_to_permission_denied(self) -> None:
        source = AcquisitionSource(capture_factory=CaptureFactory(error=PermissionError("denied")))
        with pytest.raises(PermissionDenied):
            source.open_device()
        assert not source.is_open

    def test_unopened_capture_maps_to_device_unavailable(self) -> None:
        capture = FakeCapture(opened=False)
        source = AcquisitionSource(capture_factory=CaptureFactory(capture))
        with pytest.raises(DeviceUnavailable):
            source.open_device()
        assert capture.released
        assert not source.is_open

    def test_close_releases_device_and_is_idempotent(self) -> None:
        capture = FakeCapture()
        source = AcquisitionSource(capture_factory=CaptureFactory(capture))
        source.open_device()

        source.close()
        source.close()

        assert capture.released
        assert source._grabber_thread is None
        with pytest.raises(FrameNotReady):
            source.current_frame()

    def test_context_manager_releases_on_error(self) -> None:
        capture = FakeCapture()
        with pytest.raises(RuntimeError):
            with AcquisitionSource(capture_factory=CaptureFactory(capture)) as source:
                source.open_device()
                raise RuntimeError("operator left")
        assert capture.released

    def test_freeze_keeps_still_and_releases_device(self) -> None:
        capture = FakeCapture()
        source = AcquisitionSource(capture_factory=CaptureFactory(capture))
        source.open_device()
        pixels = np.full((48, 64, 3), 7, dtype=np.uint8)

        source.freeze(Frame(pixels=pixels, kind=FrameKind.LIVE))

        assert capture.released
        assert source.kind == FrameKind.STILL
        frozen = source.current_frame()
        assert frozen.kind == FrameKind.STILL
        assert int(frozen.pixels[0, 0, 0]) == 7


class TestImageAsset:
    def test_load_image(self, png_bytes: bytes) -> None:
        source = AcquisitionSource(capture_factory=CaptureFactory())
        kind = source.load_asset(png_bytes, "image/png", "subject.png")

        assert kind == FrameKind.STILL
        frame = source.current_frame()
        assert (frame.width, frame.height) == (1600, 900)
        # Pillow RGB (200, 30, 30) arrives as BGR
        assert frame.pixels[0, 0].tolist() == [30, 30, 200]

    def test_missing_content_type_is_treated_as_image(self, png_bytes: bytes) -> None:
        source = AcquisitionSource(capture_factory=CaptureFactory())
        assert source.load_asset(png_bytes, "") == FrameKind.STILL

    def test_undecodable_image_raises_value_error(self) -> None:
        source = AcquisitionSource(capture_factory=CaptureFactory())
        with pytest.raises(ValueError):
            source.load_asset(b"not an image", "image/jpeg")
        assert not source.is_open


class TestVideoAsset:
    def make_source(self, fake_clock, frame_count: int = 20) -> tuple[AcquisitionSource, CaptureFactory]:
        factory = CaptureFactory(FakeCapture(fps=10.0, frame_count=frame_count))
        return AcquisitionSource(capture_factory=factory, clock=fake_clock), factory

    def test_video_written_to_temp_blob_and_released(self, fake_clock) -> None:
        source, factory = self.make_source(fake_clock)
        assert source.load_asset(b"\x00" * 16, "video/mp4", "clip.mov") == FrameKind.VIDEO

        blob = factory.opened_with[0]
        assert blob.endswith(".mov")
        assert os.path.exists(blob)

        source.close()
        assert not os.path.exists(blob)
        assert factory.capture.released

    def test_new_asset_supersedes_old_blob(self, fake_clock, png_bytes: bytes) -> None:
        source, factory = self.make_source(fake_clock)
        source.load_asset(b"\x00", "video/mp4", "clip.mp4")
        blob = factory.opened_with[0]

        source.load_asset(png_bytes, "image/png")

        assert not os.path.exists(blob)
        assert source.kind == FrameKind.STILL

    def test_playing_video_follows_clock(self, fake_clock) -> None:
        source, _ = self.make_source(fake_clock)
        source.load_asset(b"\x00", "video/mp4")

        fake_clock.now = 0.5
        frame = source.current_frame()
        assert frame.kind == FrameKind.VIDEO
        assert int(frame.pixels[0, 0, 0]) == 5
        source.close()

    def test_paused_video_is_not_ready_unless_allowed(self, fake_clock) -> None:
        source, _ = self.make_source(fake_clock)
        source.load_asset(b"\x00", "video/mp4")
        fake_clock.now = 1.0
        source.pause()
        fake_clock.now = 5.0

        with pytest.raises(FrameNotReady):
            source.current_frame()
        frame = source.current_frame(allow_paused=True)
        assert int(frame.pixels[0, 0, 0]) == 10
        source.close()

    def test_ended_video_counts_as_paused(self, fake_clock) -> None:
        source, _ = self.make_source(fake_clock, frame_count=20)
        source.load_asset(b"\x00", "video/mp4")
        fake_clock.now = 3.0

        assert source.is_paused
        with pytest.raises(FrameNotReady):
            source.current_frame()
        assert int(source.current_frame(allow_paused=True).pixels[0, 0, 0]) == 19

        source.play()
        assert not source.is_paused
        assert source.position_seconds == 0.0
        source.close()

    def test_play_while_playing_keeps_position(self, fake_clock) -> None:
        source, _ = self.make_source(fake_clock)
        source.load_asset(b"\x00", "video/mp4")
        fake_clock.now = 0.7

        source.play()

        assert source.position_seconds == pytest.approx(0.7)
        source.close()

    def test_seek(self, fake_clock) -> None:
        source, _ = self.make_source(fake_clock)
        source.load_asset(b"\x00", "video/mp4")
        source.pause()
        source.seek(1.2)

        assert int(source.current_frame(allow_paused=True).pixels[0, 0, 0]) == 12
        source.close()

    def test_unreadable_video_cleans_up(self, fake_clock) -> None:
        factory = CaptureFactory(FakeCapture(opened=False))
        source = AcquisitionSource(capture_factory=factory, clock=fake_clock)
        with pytest.raises(ValueError):
            source.load_asset(b"\x00", "video/mp4")
        assert not os.path.exists(factory.opened_with[0])


def test_grabber_thread_stops_on_close() -> None:
    source = AcquisitionSource(capture_factory=CaptureFactory())
    source.open_device()
    thread = source._grabber_thread
    time.sleep(0.05)
    source.close()
    assert not thread.is_alive()
