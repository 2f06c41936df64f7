# core/errors.py
"""
擷取與推論流程中會用到的例外類別。
- 裝置取得失敗：PermissionDenied / DeviceUnavailable (可由操作者重試)
- 來源尚未產生畫面：FrameNotReady (監控模式下直接略過該次 tick)
- 遠端分析：MalformedResponse (回應無法解析) / AnalysisFailed (傳輸或服務錯誤)
"""


class SherlockError(Exception):
    """所有核心例外的基底類別。"""


class PermissionDenied(SherlockError):
    """使用者或系統拒絕存取攝影機。"""


class DeviceUnavailable(SherlockError):
    """攝影機不存在、被占用或無法開啟。"""


class FrameNotReady(SherlockError):
    """來源尚未產生第一張畫面，或影片處於暫停狀態。"""


class MalformedResponse(SherlockError):
    """遠端分析服務的回應無法解析成預期的結構。"""


class AnalysisFailed(SherlockError):
    """呼叫遠端分析服務時發生傳輸或服務端錯誤。"""
