# services/frame_encoder.py

"""
將來源畫面編碼成可傳送的 JPEG。
- 即時攝影機與影片：最長邊縮到 MAX_FRAME_DIMENSION 以內，維持長寬比，壓縮品質偏向傳輸大小
- 靜態圖片與凍結畫面：保留原始解析度
"""

import io

import cv2
from PIL import Image

from config import MAX_FRAME_DIMENSION, LIVE_JPEG_QUALITY, STILL_JPEG_QUALITY
from core.errors import FrameNotReady
from core.types import Frame, FrameKind, FramePayload


def _scaled_size(width, height, max_dimension):
    longest = max(width, height)
    if longest <= max_dimension:
        return width, height
    scale = max_dimension / longest
    return max(1, round(width * scale)), max(1, round(height * scale))


def encode_frame(frame, max_dimension=MAX_FRAME_DIMENSION,
                 live_quality=LIVE_JPEG_QUALITY, still_quality=STILL_JPEG_QUALITY) -> FramePayload:
    """
    Frame -> FramePayload。
    畫面不存在或為空時拋出 FrameNotReady，呼叫端不應自動重試。
    """
    if frame is None or frame.pixels is None or frame.pixels.size == 0:
        raise FrameNotReady("沒有可編碼的畫面")

    bgr = frame.pixels
    if frame.kind == FrameKind.STILL:
        quality = still_quality
    else:
        quality = live_quality
        w, h = _scaled_size(frame.width, frame.height, max_dimension)
        if (w, h) != (frame.width, frame.height):
            bgr = cv2.resize(bgr, (w, h), interpolation=cv2.INTER_AREA)

    pil_img = Image.fromarray(cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB))
    buffered = io.BytesIO()
    pil_img.save(buffered, format="JPEG", quality=quality)
    return FramePayload(
        data=buffered.getvalue(),
        mime_type="image/jpeg",
        width=pil_img.width,
        height=pil_img.height,
    )
