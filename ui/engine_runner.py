# ui/engine_runner.py

"""
讓 Streamlit (每次互動都會重跑腳本) 能驅動長駐的 CaptureScheduler。
排程器與其 asyncio 事件迴圈跑在一條背景執行緒中；
UI 執行緒只透過 submit() 下指令，並讀取最新的 SessionSnapshot。
"""

import asyncio
import threading
from typing import Optional

from loguru import logger

from core.scheduler import CaptureScheduler
from core.types import Frame, SessionSnapshot
from core.errors import FrameNotReady

COMMAND_TIMEOUT_SECONDS = 10.0


class EngineRunner:
    def __init__(self, scheduler: CaptureScheduler):
        self.scheduler = scheduler
        self._loop = asyncio.new_event_loop()
        self._thread: Optional[threading.Thread] = None
        self._snapshot_lock = threading.Lock()
        self._snapshot = scheduler.snapshot()
        scheduler.add_listener(self._on_snapshot)

    @classmethod
    def with_openai(cls, client):
        return cls(CaptureScheduler.with_openai(client))

    def _on_snapshot(self, snapshot: SessionSnapshot):
        with self._snapshot_lock:
            self._snapshot = snapshot

    @property
    def snapshot(self) -> SessionSnapshot:
        with self._snapshot_lock:
            return self._snapshot

    def start(self):
        """對外公開的方法：啟動背景事件迴圈。"""
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()
        logger.info(f"[{self.scheduler.store.session_id}] 推論引擎已啟動")

    def stop(self):
        """對外公開的方法：釋放來源並停止事件迴圈。"""
        if not self._thread:
            return
        try:
            self.submit(self.scheduler.close())
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=2)
            self._thread = None

    def submit(self, coro, timeout: float = COMMAND_TIMEOUT_SECONDS):
        """(UI呼叫) 在背景迴圈中執行一個指令並等待其回傳值。"""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout=timeout)

    def current_frame(self) -> Optional[Frame]:
        """(UI呼叫) 取得目前顯示用的畫面；來源未就緒時回傳 None。"""
        async def grab():
            try:
                return self.scheduler.source.current_frame(allow_paused=True)
            except FrameNotReady:
                return None
        return self.submit(grab())

    def set_video_paused(self, paused: bool):
        async def apply():
            if paused:
                self.scheduler.source.pause()
            else:
                self.scheduler.source.play()
        self.submit(apply())
