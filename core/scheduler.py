# core/scheduler.py

"""
擷取排程器 (CaptureScheduler)：整個推論流程的狀態機。

狀態：
    Idle -> {LiveDevice, StaticImage, StaticVideo}
    LiveDevice <-> ContinuousSurveillance
    任何狀態 -> Idle (完整重置)

所有工作都在同一個 asyncio 事件迴圈中執行，唯一真正並行的只有送往遠端分析的請求。
同一時間最多只有一個請求在途：監控計時器的 tick 遇到在途請求時直接丟棄，不排隊。
已送出的請求無法中途取消；若回來時 session 已被重置或切換模式，其結果會被丟棄。
來源的開啟、凍結與釋放可能阻塞 (等待抓取執行緒、開啟裝置)，一律交給 asyncio.to_thread 執行。
"""

import asyncio
import functools
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from config import SURVEILLANCE_INTERVAL_SECONDS, FLASH_DURATION_SECONDS
from services import llm_handler as llm
from services.frame_encoder import encode_frame
from .acquisition import AcquisitionSource
from .errors import (
    AnalysisFailed, DeviceUnavailable, FrameNotReady, MalformedResponse, PermissionDenied,
)
from .session_store import SessionStateStore
from .types import (
    AnalysisResult, CaptureMode, FrameKind, FramePayload, SessionContext, SessionSnapshot,
)

Gateway = Callable[[FramePayload, SessionContext], Awaitable[AnalysisResult]]
Listener = Callable[[SessionSnapshot], None]

MANUAL_CAPTURE_MODES = (CaptureMode.LIVE_DEVICE, CaptureMode.STATIC_IMAGE, CaptureMode.STATIC_VIDEO)

MSG_ACCESS_DENIED = "存取遭拒"
MSG_HARDWARE_ERROR = "硬體錯誤"
MSG_ANALYSIS_FAILED = "推理宮殿發生邏輯錯誤，目標的側寫過於複雜。"


class CaptureScheduler:
    def __init__(self, gateway: Gateway, source: Optional[AcquisitionSource] = None,
                 store: Optional[SessionStateStore] = None, encoder=encode_frame,
                 interval: float = SURVEILLANCE_INTERVAL_SECONDS,
                 flash_duration: float = FLASH_DURATION_SECONDS):
        self.source = source or AcquisitionSource()
        self.store = store or SessionStateStore()
        self._gateway = gateway
        self._encode = encoder
        self.interval = interval
        self.flash_duration = flash_duration

        self._listeners: List[Listener] = []
        self._timer_task: Optional[asyncio.Task] = None
        self._flash_handle: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[asyncio.Task] = None

    @classmethod
    def with_openai(cls, client, **kwargs):
        """以 OpenAI 客戶端建立排程器。"""
        return cls(gateway=functools.partial(llm.analyze_evidence, client=client), **kwargs)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # --- 呈現層介面 ---
    @property
    def mode(self) -> CaptureMode:
        return self.store.mode

    @property
    def in_flight(self) -> bool:
        return self.store.in_flight

    @property
    def pending(self) -> Optional[asyncio.Task]:
        return self._pending

    def add_listener(self, callback: Listener):
        self._listeners.append(callback)

    def snapshot(self) -> SessionSnapshot:
        return self.store.snapshot()

    def _notify(self):
        snapshot = self.store.snapshot()
        for callback in self._listeners:
            callback(snapshot)

    # --- 操作者指令 ---
    async def start_live(self) -> bool:
        """開啟攝影機。失敗時回到 Idle 並顯示可重試的錯誤。"""
        self._interrupt()
        self.store.latest_result = None
        self.store.error = None
        self.store.device_error = False
        try:
            await asyncio.to_thread(self.source.open_device)
        except (PermissionDenied, DeviceUnavailable) as e:
            logger.warning(f"攝影機初始化失敗：{e}")
            self.store.set_mode(CaptureMode.IDLE)
            self.store.error = MSG_ACCESS_DENIED if isinstance(e, PermissionDenied) else MSG_HARDWARE_ERROR
            self.store.device_error = True
            self._notify()
            return False

        self.store.set_mode(CaptureMode.LIVE_DEVICE)
        self._notify()
        return True

    async def load_asset(self, data: bytes, content_type: str, filename: str = "") -> bool:
        """載入圖片或影片素材，取代目前的來源。"""
        self._interrupt()
        self.store.latest_result = None
        self.store.error = None
        self.store.device_error = False
        try:
            kind = await asyncio.to_thread(self.source.load_asset, data, content_type, filename)
        except ValueError as e:
            logger.error(f"素材載入失敗：{e}")
            self.store.set_mode(CaptureMode.IDLE)
            self.store.error = str(e)
            self._notify()
            return False

        mode = CaptureMode.STATIC_VIDEO if kind == FrameKind.VIDEO else CaptureMode.STATIC_IMAGE
        self.store.set_mode(mode)
        self._notify()
        return True

    async def manual_capture(self) -> Optional[asyncio.Task]:
        """
        手動擷取一張畫面並送出分析，回傳分析的 Task；不合法時回傳 None。
        即時攝影機模式下，擷取後會凍結畫面並立即釋放攝影機 (快門)。
        """
        if self.store.mode not in MANUAL_CAPTURE_MODES:
            logger.debug(f"目前模式 {self.store.mode.value} 不支援手動擷取")
            return None
        if self.store.in_flight:
            logger.debug("已有分析進行中，忽略手動擷取")
            return None

        try:
            frame = self.source.current_frame(allow_paused=True)
            payload = self._encode(frame)
        except FrameNotReady as e:
            logger.debug(f"來源尚未就緒：{e}")
            return None

        # 手動模式在送出時即清除畫面上的舊結果
        self.store.latest_result = None
        self.store.error = None
        task = self._dispatch(payload, surveillance=False)

        if frame.kind != FrameKind.STILL:
            self._start_flash()
        if self.store.mode == CaptureMode.LIVE_DEVICE:
            await asyncio.to_thread(self.source.freeze, frame)
            self.store.set_mode(CaptureMode.STATIC_IMAGE, invalidate=False)

        self._notify()
        return task

    async def toggle_surveillance(self) -> bool:
        """在 LiveDevice 與 ContinuousSurveillance 之間切換，回傳切換後是否為監控中。"""
        if self.store.mode == CaptureMode.CONTINUOUS_SURVEILLANCE:
            self._interrupt()
            self.store.set_mode(CaptureMode.LIVE_DEVICE)
            self._notify()
            return False

        if self.store.mode != CaptureMode.LIVE_DEVICE:
            logger.debug(f"連續監控只能從即時攝影機啟動 (目前：{self.store.mode.value})")
            return False

        self._interrupt()
        self.store.set_mode(CaptureMode.CONTINUOUS_SURVEILLANCE)
        self._timer_task = asyncio.get_running_loop().create_task(self._surveillance_loop())
        self._notify()
        return True

    async def set_config(self, confidence_threshold=None, priority_flags=None, depth_level=None):
        self.store.update_config(
            confidence_threshold=confidence_threshold,
            priority_flags=priority_flags,
            depth_level=depth_level,
        )
        self._notify()

    async def reset(self):
        """完整重置：釋放來源，清除歷史與記憶，回到 Idle。設定會保留。"""
        self._interrupt()
        self.store.reset()
        self.store.set_mode(CaptureMode.IDLE)
        await asyncio.to_thread(self.source.close)
        logger.info(f"[{self.store.session_id}] Session 已重置")
        self._notify()

    async def close(self):
        """元件卸載：停止計時器並釋放來源；在途的請求結果不再套用。"""
        self._interrupt()
        self.store.generation += 1
        await asyncio.to_thread(self.source.close)

    # --- 監控計時器 ---
    async def _surveillance_loop(self):
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

    def tick(self) -> Optional[asyncio.Task]:
        """
        監控計時器的一次觸發。
        有請求在途時直接丟棄；來源尚未就緒時也只是略過，等下一次 tick。
        """
        if self.store.mode != CaptureMode.CONTINUOUS_SURVEILLANCE:
            return None
        if self.store.in_flight:
            logger.debug("分析進行中，丟棄本次 tick")
            return None
        try:
            frame = self.source.current_frame()
            payload = self._encode(frame)
        except FrameNotReady as e:
            logger.debug(f"略過本次 tick：{e}")
            return None
        task = self._dispatch(payload, surveillance=True)
        self._notify()
        return task

    # --- 送出與結果處理 ---
    def _dispatch(self, payload: FramePayload, surveillance: bool) -> asyncio.Task:
        self.store.in_flight = True
        task = asyncio.get_running_loop().create_task(self._run_analysis(
            payload,
            self.store.context(),
            generation=self.store.generation,
            captured_at=datetime.now(),
            surveillance=surveillance,
        ))
        self._pending = task
        return task

    async def _run_analysis(self, payload: FramePayload, context: SessionContext,
                            generation: int, captured_at: datetime,
                            surveillance: bool) -> Optional[AnalysisResult]:
        result = None
        try:
            result = await self._gateway(payload, context)
            if generation != self.store.generation:
                logger.info(f"[{context.session_id}] Session 已重置或切換模式，丟棄過期的分析結果")
                result = None
            else:
                self.store.apply_result(result, captured_at)
        except (AnalysisFailed, MalformedResponse) as e:
            self._record_failure(e, generation, surveillance)
        except Exception as e:
            logger.exception(f"分析過程發生未預期的錯誤：{e}")
            result = None
            self._record_failure(e, generation, surveillance)
        finally:
            self.store.in_flight = False
            if self._pending is asyncio.current_task():
                self._pending = None
            self._notify()
        return result

    def _record_failure(self, error: Exception, generation: int, surveillance: bool):
        """失敗處理依模式而定：過期或監控中的失敗只記錄，手動擷取的失敗顯示給操作者。"""
        if generation != self.store.generation:
            logger.debug(f"過期請求失敗，忽略：{error}")
        elif surveillance:
            logger.debug(f"監控分析失敗，略過：{error}")
        else:
            logger.error(f"手動分析失敗：{error}")
            self.store.error = MSG_ANALYSIS_FAILED

    # --- 視覺回饋與計時器 ---
    def _start_flash(self):
        self._cancel_flash()
        self.store.flash = True
        self._flash_handle = asyncio.get_running_loop().call_later(self.flash_duration, self._end_flash)

    def _end_flash(self):
        self._flash_handle = None
        self.store.flash = False
        self._notify()

    def _cancel_flash(self):
        if self._flash_handle:
            self._flash_handle.cancel()
            self._flash_handle = None
        self.store.flash = False

    def _interrupt(self):
        """切換模式、載入素材或重置時，取消閃光與監控計時器。"""
        self._cancel_flash()
        if self._timer_task:
            self._timer_task.cancel()
            self._timer_task = None
