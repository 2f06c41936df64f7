# config.py

"""
本檔案為專案的設定檔。
集中管理所有硬式編碼的常數、路徑與 API 金鑰，方便維護與調整。
"""

import os
from dotenv import load_dotenv

# --- 安全性設定 ---
load_dotenv()
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")


# --- LLM 模型設定 ---
LLM_MODEL_ANALYSIS = os.getenv("LLM_MODEL_ANALYSIS", "gpt-4o-mini")
# 需搭配支援網路搜尋的模型，開啟後回應中的 url_citation 會附加到推論上
ENABLE_WEB_SEARCH = os.getenv("ENABLE_WEB_SEARCH", "0") == "1"
LLM_MAX_TOKENS = 2000
LLM_TIMEOUT_SECONDS = 60.0
DEFAULT_GROUNDING_TITLE = "Research Source"
DEFAULT_GROUNDING_URI = "#"


# --- Session 設定 ---
SESSION_ID_PREFIX = "CASE"
MEMORY_LIMIT = 10     # 滾動記憶最多保留幾條
HISTORY_LIMIT = 50    # 事件歷史最多保留幾筆推論

DEFAULT_CONFIDENCE_THRESHOLD = 0.6
DEFAULT_PRIORITY_FLAGS = ("DECEPTION", "AFFLUENCE")
DEFAULT_DEPTH_LEVEL = "standard"
PRIORITY_OPTIONS = (
    "DECEPTION", "AGITATION", "AFFLUENCE", "FATIGUE", "CRIMINAL_INTENT",
    "PROFESSIONALISM", "DOMINANCE", "INSECURITY", "SUBSTANCE_USE", "ATHLETICISM",
)


# --- 流程與效能控制設定 ---
SURVEILLANCE_INTERVAL_SECONDS = 2.5
FLASH_DURATION_SECONDS = 0.1


# --- 攝影機與編碼設定 ---
CAMERA_DEVICE_INDEX = int(os.getenv("CAMERA_DEVICE_INDEX", "0"))
CAMERA_FACING_MODE = "user"
CAMERA_RESOLUTION_WIDTH = 1280
CAMERA_RESOLUTION_HEIGHT = 720
# 即時畫面與影片送出前的最長邊上限 (px)
MAX_FRAME_DIMENSION = 1024
LIVE_JPEG_QUALITY = 80
STILL_JPEG_QUALITY = 90

# 證據框座標空間 (0~1000) 與標籤顯示長度
EVIDENCE_COORDINATE_SCALE = 1000
EVIDENCE_LABEL_MAX_CHARS = 20
