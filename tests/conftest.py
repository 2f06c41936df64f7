"""Shared fixtures: fake OpenCV captures, sample assets and canned analysis results."""

from __future__ import annotations

import asyncio
import io
from typing import Any

import cv2
import numpy as np
import pytest
from PIL import Image

from core.types import AnalysisResult, Deduction, Evidence, ScanData


class FakeCapture:
    """Stands in for cv2.VideoCapture; every frame is filled with its frame index."""

    def __init__(self, opened: bool = True, width: int = 64, height: int = 48,
                 fps: float = 10.0, frame_count: int = 0,
                 produces_frames: bool = True) -> None:
        self.opened = opened
        self.produces_frames = produces_frames
        self.width = width
        self.height = height
        self.fps = fps
        self.frame_count = frame_count
        self.position = 0
        self.released = False
        self.props: dict[int, float] = {}

    def isOpened(self) -> bool:
        return self.opened and not self.released

    def read(self) -> tuple[bool, Any]:
        if self.released or not self.produces_frames:
            return False, None
        value = self.position % 256
        frame = np.full((self.height, self.width, 3), value, dtype=np.uint8)
        return True, frame

    def set(self, prop: int, value: float) -> bool:
        self.props[prop] = value
        if prop == cv2.CAP_PROP_POS_FRAMES:
            self.position = int(value)
        return True

    def get(self, prop: int) -> float:
        if prop == cv2.CAP_PROP_FPS:
            return self.fps
        if prop == cv2.CAP_PROP_FRAME_COUNT:
            return float(self.frame_count)
        return 0.0

    def release(self) -> None:
        self.released = True


class CaptureFactory:
    """Records what was opened and hands out a prepared FakeCapture."""

    def __init__(self, capture: FakeCapture | None = None, error: Exception | None = None) -> None:
        self.capture = capture or FakeCapture()
        self.error = error
        self.opened_with: list[Any] = []

    def __call__(self, source: Any) -> FakeCapture:
        self.opened_with.append(source)
        if self.error:
            raise self.error
        return self.capture


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def make_deduction(confidence: float, title: str = "Tan line on wrist", evidence=None) -> Deduction:
    return Deduction(
        title=title,
        detail="Recently removed a watch.",
        confidence=confidence,
        logic_steps=["Pale band of skin", "Sharp edges suggest a strap"],
        evidence=evidence if evidence is not None else [Evidence(500, 250, 100, 50, "left wrist")],
    )


def make_result(confidences=(0.9,), memory=(), session_id: str = "CASE-TEST01") -> AnalysisResult:
    return AnalysisResult(
        session_id=session_id,
        scan_data=ScanData(attention_score=0.7, posture_score=0.4, intent_prediction="Waiting for someone"),
        deductions=[make_deduction(c, title=f"Deduction {i}") for i, c in enumerate(confidences)],
        final_assessment="The subject has travelled from abroad.",
        session_memory=list(memory),
    )


def wait_for(predicate, timeout: float = 2.0):
    """Poll a predicate from async tests without blocking the loop."""

    async def _wait() -> None:
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return _wait()


@pytest.fixture
def png_bytes() -> bytes:
    buffered = io.BytesIO()
    Image.new("RGB", (1600, 900), (200, 30, 30)).save(buffered, format="PNG")
    return buffered.getvalue()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
