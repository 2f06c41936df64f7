# core/acquisition.py

"""
擷取來源 (AcquisitionSource)。
同一時間只持有一種來源：
- 即時攝影機：背景執行緒持續抓取最新畫面 (沿用高流暢度版的生產者執行緒設計)
- 影片素材：寫入暫存檔後以 OpenCV 讀取，依播放時間換算目前畫面
- 靜態圖片：以 Pillow 解碼後保存在記憶體 (快門凍結的畫面也存放於此)

close() 可重複呼叫，會釋放攝影機、停止執行緒並刪除暫存檔。
本類別也是 context manager，離開範圍時一定會釋放資源。
"""

import contextlib
import io
import os
import tempfile
import threading
import time
from typing import Callable, Optional

import cv2
import numpy as np
from loguru import logger
from PIL import Image, UnidentifiedImageError

from config import CAMERA_DEVICE_INDEX, CAMERA_RESOLUTION_WIDTH, CAMERA_RESOLUTION_HEIGHT
from .errors import PermissionDenied, DeviceUnavailable, FrameNotReady
from .types import Frame, FrameKind


class AcquisitionSource:
    def __init__(self, capture_factory: Callable = cv2.VideoCapture,
                 device_index: int = CAMERA_DEVICE_INDEX,
                 clock: Callable[[], float] = time.monotonic):
        self._capture_factory = capture_factory
        self.device_index = device_index
        self._clock = clock

        # 即時攝影機
        self._device = None
        self._latest_frame: Optional[np.ndarray] = None
        self._frame_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._grabber_thread: Optional[threading.Thread] = None

        # 影片素材
        self._video = None
        self._blob_path: Optional[str] = None
        self._video_fps = 30.0
        self._video_frame_count = 0
        self._play_offset = 0.0
        self._play_started_at = 0.0
        self._paused = True

        # 靜態圖片或凍結畫面
        self._still: Optional[np.ndarray] = None

        self.kind: Optional[FrameKind] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def is_open(self) -> bool:
        return self.kind is not None

    # --- 即時攝影機 ---
    def open_device(self):
        """
        開啟攝影機並啟動抓取執行緒。
        失敗時拋出 PermissionDenied 或 DeviceUnavailable，來源維持關閉。
        """
        self.close()
        try:
            cap = self._capture_factory(self.device_index)
        except PermissionError as e:
            raise PermissionDenied(f"攝影機存取遭拒：{e}") from e

        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            raise DeviceUnavailable(f"無法開啟攝影機 (index={self.device_index})")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, CAMERA_RESOLUTION_WIDTH)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, CAMERA_RESOLUTION_HEIGHT)

        self._device = cap
        self._stop_event.clear()
        self._grabber_thread = threading.Thread(target=self._camera_loop, daemon=True)
        self._grabber_thread.start()
        self.kind = FrameKind.LIVE
        logger.info(f"攝影機已開啟 (index={self.device_index})")

    def _camera_loop(self):
        """[執行緒] 只負責從攝影機抓取畫面，並覆寫最新的一張。"""
        cap = self._device
        while not self._stop_event.is_set():
            ok, frame = cap.read()
            if not ok:
                time.sleep(0.1)
                continue
            with self._frame_lock:
                self._latest_frame = frame
            time.sleep(0.02)

    def freeze(self, frame: Frame):
        """快門：將剛擷取的畫面保留為靜態圖片，並立即釋放攝影機。"""
        pixels = frame.pixels.copy()
        self.close()
        self._still = pixels
        self.kind = FrameKind.STILL

    # --- 素材 ---
    def load_asset(self, data: bytes, content_type: str, filename: str = "") -> FrameKind:
        """
        載入單一圖片或影片。video/* 視為影片，其餘一律當作圖片。
        載入新素材前會先釋放舊的素材。
        """
        self.close()
        if (content_type or "").startswith("video/"):
            self._load_video(data, filename)
            self.kind = FrameKind.VIDEO
        else:
            self._still = _decode_image(data)
            self.kind = FrameKind.STILL
        logger.info(f"已載入素材 {filename or '(未命名)'} ({content_type}) -> {self.kind.value}")
        return self.kind

    def _load_video(self, data: bytes, filename: str):
        suffix = os.path.splitext(filename)[1] or ".mp4"
        fd, path = tempfile.mkstemp(prefix="sherlock_", suffix=suffix)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        self._blob_path = path

        cap = self._capture_factory(path)
        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            self._release_blob()
            raise ValueError(f"無法解碼影片素材：{filename}")

        self._video = cap
        self._video_fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
        self._video_frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        self._play_offset = 0.0
        self.play()

    # --- 影片播放控制 ---
    @property
    def position_seconds(self) -> float:
        if self._paused:
            return self._play_offset
        return self._play_offset + (self._clock() - self._play_started_at)

    @property
    def is_ended(self) -> bool:
        if self._video_frame_count <= 0:
            return False
        return self.position_seconds * self._video_fps >= self._video_frame_count

    @property
    def is_paused(self) -> bool:
        return self._paused or self.is_ended

    def play(self):
        if self.is_ended:
            self._play_offset = 0.0
        elif not self._paused:
            return
        self._play_started_at = self._clock()
        self._paused = False

    def pause(self):
        self._play_offset = self.position_seconds
        self._paused = True

    def seek(self, seconds: float):
        self._play_offset = max(0.0, float(seconds))
        self._play_started_at = self._clock()

    # --- 取得畫面 ---
    def current_frame(self, allow_paused: bool = False) -> Frame:
        """
        回傳目前畫面；若來源尚未就緒則拋出 FrameNotReady。
        暫停中的影片只有在 allow_paused=True (手動擷取) 時才視為就緒。
        """
        if self.kind == FrameKind.LIVE:
            with self._frame_lock:
                frame = self._latest_frame
            if frame is None:
                raise FrameNotReady("攝影機尚未產生第一張畫面")
            return Frame(pixels=frame.copy(), kind=FrameKind.LIVE)

        # close() 可能在另一條執行緒進行，先取得本地參照
        kind, video, still = self.kind, self._video, self._still
        if kind == FrameKind.VIDEO and video is not None:
            if self.is_paused and not allow_paused:
                raise FrameNotReady("影片已暫停")
            index = int(self.position_seconds * self._video_fps)
            if self._video_frame_count > 0:
                index = min(index, self._video_frame_count - 1)
            video.set(cv2.CAP_PROP_POS_FRAMES, index)
            ok, frame = video.read()
            if not ok or frame is None:
                raise FrameNotReady(f"無法讀取影片第 {index} 幀")
            return Frame(pixels=frame, kind=FrameKind.VIDEO)

        if kind == FrameKind.STILL and still is not None:
            return Frame(pixels=still, kind=FrameKind.STILL)

        raise FrameNotReady("尚未開啟任何來源")

    # --- 資源釋放 ---
    def close(self):
        """釋放所有資源。可安全地重複呼叫。"""
        self._stop_event.set()
        if self._grabber_thread:
            self._grabber_thread.join(timeout=2)
            self._grabber_thread = None
        if self._device is not None:
            self._device.release()
            self._device = None
            logger.info("攝影機已釋放")
        with self._frame_lock:
            self._latest_frame = None

        if self._video is not None:
            self._video.release()
            self._video = None
        self._release_blob()
        self._video_frame_count = 0
        self._paused = True

        self._still = None
        self.kind = None

    def _release_blob(self):
        if self._blob_path:
            with contextlib.suppress(FileNotFoundError):
                os.remove(self._blob_path)
            self._blob_path = None


def _decode_image(data: bytes) -> np.ndarray:
    """以 Pillow 解碼圖片位元組，回傳 BGR 陣列。"""
    try:
        pil_img = Image.open(io.BytesIO(data))
        pil_img = pil_img.convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"無法解碼圖片素材：{e}") from e
    return cv2.cvtColor(np.array(pil_img), cv2.COLOR_RGB2BGR)
