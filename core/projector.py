# core/projector.py

"""
證據框投影。將 0~1000 正規化座標線性換算成相對於畫面的比例。
只有在顯示靜態素材或凍結畫面時才產生框，即時攝影機畫面上的座標沒有意義。
"""

from typing import Iterable, List

from config import EVIDENCE_COORDINATE_SCALE, EVIDENCE_LABEL_MAX_CHARS
from .types import CaptureMode, Deduction, PlacedBox, Viewport

PROJECTABLE_MODES = (CaptureMode.STATIC_IMAGE, CaptureMode.STATIC_VIDEO)


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def project(deductions: Iterable[Deduction], viewport: Viewport,
            mode: CaptureMode = CaptureMode.STATIC_IMAGE) -> List[PlacedBox]:
    """
    Deduction 列表 -> PlacedBox 列表。
    超出範圍的座標會被夾到 [0, 1]，不會拋出例外。
    比例與 viewport 大小無關；viewport 只在 PlacedBox.to_pixels 時使用。
    """
    if mode not in PROJECTABLE_MODES:
        return []

    boxes = []
    for d_idx, deduction in enumerate(deductions or ()):
        for e_idx, ev in enumerate(deduction.evidence):
            label = ev.description or deduction.title
            boxes.append(PlacedBox(
                left=_clamp(ev.x / EVIDENCE_COORDINATE_SCALE),
                top=_clamp(ev.y / EVIDENCE_COORDINATE_SCALE),
                width=_clamp(ev.width / EVIDENCE_COORDINATE_SCALE),
                height=_clamp(ev.height / EVIDENCE_COORDINATE_SCALE),
                label=label,
                short_label=label[:EVIDENCE_LABEL_MAX_CHARS],
                deduction_index=d_idx,
                evidence_index=e_idx,
            ))
    return boxes
