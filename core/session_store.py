# core/session_store.py

"""
Session 狀態儲存區 (SessionStateStore)。
保存單次執行期間所有衍生狀態：滾動記憶、事件歷史、擷取模式、進行中旗標。
所有修改都在同一個事件迴圈中進行，因此不需要鎖。

generation 計數器用來判斷「過期結果」：
每次操作者切換模式或重置時遞增，已送出的分析若回來時 generation 已改變，
其結果會被丟棄，不會寫入任何狀態。
"""

import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from loguru import logger

from config import (
    SESSION_ID_PREFIX, MEMORY_LIMIT, HISTORY_LIMIT,
    DEFAULT_CONFIDENCE_THRESHOLD, DEFAULT_PRIORITY_FLAGS, DEFAULT_DEPTH_LEVEL,
)
from .types import (
    AnalysisConfig, AnalysisResult, CaptureMode, DepthLevel, HistoryEntry,
    SessionContext, SessionSnapshot,
)


def new_session_id() -> str:
    """產生形如 CASE-1A2B3C 的 session 識別碼。"""
    return f"{SESSION_ID_PREFIX}-{uuid.uuid4().hex[:6].upper()}"


class SessionStateStore:
    def __init__(self, config: Optional[AnalysisConfig] = None,
                 memory_limit: int = MEMORY_LIMIT, history_limit: int = HISTORY_LIMIT):
        self.session_id = new_session_id()
        self.config = config or AnalysisConfig(
            confidence_threshold=DEFAULT_CONFIDENCE_THRESHOLD,
            priority_flags=tuple(DEFAULT_PRIORITY_FLAGS),
            depth_level=DepthLevel(DEFAULT_DEPTH_LEVEL),
        )
        self.memory_limit = memory_limit
        self.history_limit = history_limit

        self.memory: List[str] = []
        self.history: List[HistoryEntry] = []
        self.latest_result: Optional[AnalysisResult] = None
        self.mode = CaptureMode.IDLE
        self.in_flight = False
        self.error: Optional[str] = None
        self.device_error = False
        self.flash = False
        self.generation = 0

    # --- 結果合併 ---
    def apply_result(self, result: AnalysisResult, captured_at: Optional[datetime] = None):
        """
        將一次分析結果合併進 session。
        - 記憶：集合語意，依到達順序加入新事實，只保留最後 N 條
        - 歷史：每筆推論加上擷取時間後放到最前面，只保留最新 M 筆
        """
        captured_at = captured_at or datetime.now()
        threshold = self.config.confidence_threshold

        self._merge_memory(result.session_memory)

        admitted = [d for d in result.deductions if d.confidence >= threshold]
        for deduction in admitted:
            self.history.insert(0, HistoryEntry(deduction=deduction, captured_at=captured_at))
        del self.history[self.history_limit:]

        self.latest_result = result
        self.error = None
        logger.debug(
            f"[{self.session_id}] 合併結果：{len(admitted)} 筆推論，"
            f"記憶 {len(self.memory)} 條，歷史 {len(self.history)} 筆"
        )

    def _merge_memory(self, facts: Iterable[str]):
        for fact in facts or ():
            if fact and fact not in self.memory:
                self.memory.append(fact)
        if len(self.memory) > self.memory_limit:
            del self.memory[:len(self.memory) - self.memory_limit]

    # --- 狀態轉換 ---
    def reset(self):
        """清除歷史與記憶，但保留設定與 session 識別碼。"""
        self.history.clear()
        self.memory.clear()
        self.latest_result = None
        self.error = None
        self.device_error = False
        self.flash = False
        self.generation += 1

    def set_mode(self, mode: CaptureMode, invalidate: bool = True):
        """
        切換擷取模式。invalidate=False 只用於快門凍結
        (LiveDevice -> StaticImage)，此時剛送出的分析仍屬於目前的畫面。
        """
        if mode != self.mode:
            logger.info(f"[{self.session_id}] 模式切換：{self.mode.value} -> {mode.value}")
        self.mode = mode
        if invalidate:
            self.generation += 1

    def update_config(self, confidence_threshold: Optional[float] = None,
                      priority_flags: Optional[Iterable[str]] = None,
                      depth_level=None):
        threshold = self.config.confidence_threshold if confidence_threshold is None else float(confidence_threshold)
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"信心門檻必須介於 0 與 1 之間：{threshold}")

        flags = self.config.priority_flags
        if priority_flags is not None:
            # 保留順序並去除重複
            flags = tuple(dict.fromkeys(priority_flags))

        depth = self.config.depth_level if depth_level is None else DepthLevel(depth_level)

        self.config = AnalysisConfig(
            confidence_threshold=threshold,
            priority_flags=flags,
            depth_level=depth,
        )

    # --- 對外提供的唯讀視圖 ---
    def context(self) -> SessionContext:
        return SessionContext(
            session_id=self.session_id,
            memory=tuple(self.memory),
            config=self.config,
        )

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            mode=self.mode,
            latest_result=self.latest_result,
            history=tuple(self.history),
            memory_size=len(self.memory),
            in_flight=self.in_flight,
            error=self.error,
            device_error=self.device_error,
            flash=self.flash,
            config=self.config,
        )
