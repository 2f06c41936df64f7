# app.py

import streamlit as st

# 導入設定檔、服務模組、UI 模組與工具
import config
from services import llm_handler
from ui import live_view
from ui.engine_runner import EngineRunner
from utils import state_manager

# --- 1. 頁面設定 (只應被呼叫一次) ---
st.set_page_config(
    page_title="Sherlock OS 演繹推理引擎",
    page_icon="🔎",
    layout="wide",
    initial_sidebar_state="expanded"
)

# --- 2. 初始化與快取資源 ---
@st.cache_resource
def load_client():
    """OpenAI 客戶端在所有瀏覽器 session 間共用。"""
    return llm_handler.get_openai_client(config.OPENAI_API_KEY)

state_manager.initialize_state()
client = load_client()

if not client:
    st.error("⚠️ 偵測不到 OpenAI API 金鑰！", icon="🚨")
    st.markdown("""
        請確認您的專案根目錄下有名為 `.env` 的檔案，且內容包含：
        ```
        OPENAI_API_KEY="sk-..."
        ```
        修改後請重新整理頁面。
    """)
    st.stop()

runner = state_manager.get_runner(lambda: EngineRunner.with_openai(client))
current = runner.snapshot.config

# --- 3. 側邊欄：偵查參數 ---
with st.sidebar:
    st.header("⚙️ 偵查參數")

    threshold = st.slider("邏輯門檻 (信心)", 0.0, 1.0, float(current.confidence_threshold), 0.05)
    priority_flags = st.multiselect("優先特徵", config.PRIORITY_OPTIONS, default=list(current.priority_flags))
    depth_level = st.radio(
        "推理深度", ["fast", "standard", "exhaustive"],
        index=["fast", "standard", "exhaustive"].index(current.depth_level.value),
        horizontal=True,
    )
    st.caption("exhaustive 會盡可能挖掘細節，例如布料磨損或品牌標誌。")

    if (threshold, tuple(priority_flags), depth_level) != (
        current.confidence_threshold, current.priority_flags, current.depth_level.value
    ):
        runner.submit(runner.scheduler.set_config(threshold, priority_flags, depth_level))

# --- 4. 主頁面 ---
st.title("🔎 Sherlock OS")
live_view.display(runner)
