# core/types.py
"""
本檔案定義了整個專案中可以共用的數據結構。
使用 dataclasses 可以讓結構更清晰，並提供自動的初始化等方法
這有助於減少因為打錯字典鍵 (key) 而造成的錯誤。
"""

import base64
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple
import numpy as np


class CaptureMode(str, Enum):
    """擷取模式，同一時間只會有一個處於啟用狀態。"""
    IDLE = "idle"
    LIVE_DEVICE = "live_device"
    STATIC_IMAGE = "static_image"
    STATIC_VIDEO = "static_video"
    CONTINUOUS_SURVEILLANCE = "continuous_surveillance"


class DepthLevel(str, Enum):
    FAST = "fast"
    STANDARD = "standard"
    EXHAUSTIVE = "exhaustive"


class FrameKind(str, Enum):
    """畫面來源。靜態圖片 (含凍結畫面) 以原始解析度編碼，其餘會先縮圖。"""
    LIVE = "live"
    VIDEO = "video"
    STILL = "still"


@dataclass
class Frame:
    """來源提供的一張原始畫面 (BGR)。"""
    pixels: np.ndarray
    kind: FrameKind

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass(frozen=True)
class FramePayload:
    """
    編碼後、準備送往遠端分析的影像。
    每次擷取產生一次，交給 Analysis Gateway 後即丟棄。
    """
    data: bytes
    mime_type: str
    width: int
    height: int

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


@dataclass
class AnalysisConfig:
    """操作者可調整的分析參數。"""
    confidence_threshold: float = 0.6
    priority_flags: Tuple[str, ...] = ()
    depth_level: DepthLevel = DepthLevel.STANDARD


@dataclass(frozen=True)
class SessionContext:
    """每次呼叫遠端分析時附帶的 session 資訊。"""
    session_id: str
    memory: Tuple[str, ...]
    config: AnalysisConfig


@dataclass(frozen=True)
class Evidence:
    """
    一個證據框。座標位於 0~1000 的正規化空間，
    只屬於產生它的那筆推論，建立後不再修改。
    """
    x: float
    y: float
    width: float
    height: float
    description: str = ""


@dataclass(frozen=True)
class GroundingSource:
    title: str
    uri: str


@dataclass
class Deduction:
    title: str
    detail: str
    confidence: float
    logic_steps: List[str] = field(default_factory=list)
    evidence: List[Evidence] = field(default_factory=list)
    grounding: List[GroundingSource] = field(default_factory=list)


@dataclass
class ScanData:
    gender: str = ""
    age_range: str = ""
    environment: str = ""
    attention_score: float = 0.0
    posture_score: float = 0.0
    stance: str = ""
    balance: str = ""
    intent_prediction: str = ""
    behavioral_flags: List[str] = field(default_factory=list)


@dataclass
class AnalysisResult:
    """
    單次遠端分析的結果。
    deductions 已經過本地信心門檻過濾。
    """
    session_id: str
    scan_data: ScanData
    deductions: List[Deduction]
    final_assessment: str
    session_memory: List[str] = field(default_factory=list)
    token_usage: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class HistoryEntry:
    """事件歷史中的一筆推論，附帶擷取時間。"""
    deduction: Deduction
    captured_at: datetime


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int


@dataclass(frozen=True)
class PlacedBox:
    """
    投影到畫面上的證據框，座標為相對於畫面的比例 (0~1)。
    """
    left: float
    top: float
    width: float
    height: float
    label: str
    short_label: str
    deduction_index: int
    evidence_index: int

    def to_pixels(self, viewport: Viewport) -> Tuple[int, int, int, int]:
        """換算為 (x1, y1, x2, y2) 像素座標，方便用 OpenCV 繪製。"""
        x1 = int(round(self.left * viewport.width))
        y1 = int(round(self.top * viewport.height))
        x2 = int(round(min(1.0, self.left + self.width) * viewport.width))
        y2 = int(round(min(1.0, self.top + self.height) * viewport.height))
        return x1, y1, x2, y2


@dataclass(frozen=True)
class SessionSnapshot:
    """
    每次狀態改變時交給呈現層的快照。
    呈現層只讀取這個物件，不直接碰觸 store 內部狀態。
    """
    session_id: str
    mode: CaptureMode
    latest_result: Optional[AnalysisResult]
    history: Tuple[HistoryEntry, ...]
    memory_size: int
    in_flight: bool
    error: Optional[str]
    device_error: bool
    flash: bool
    config: AnalysisConfig
