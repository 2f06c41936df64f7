# utils/state_manager.py

"""
本模組專門用於管理 Streamlit 的 session_state。
各函式預設操作 st.session_state，也可傳入任何 dict 形式的狀態 (方便測試)。
"""

import atexit

import streamlit as st


def initialize_state(state=st.session_state):
    """
    初始化應用程式會用到的 session_state。
    此函式應在主程式 app.py 的最開始被呼叫一次。
    """
    states = {
        "runner": None,         # 用於存放 EngineRunner 的實例
        "asset_token": None,    # 最後一次載入的上傳檔案 file_id，避免每次重跑都重新載入
        "uploader_nonce": 0,    # 上傳元件的 key 後綴；清除畫面時遞增以清空元件
    }

    for key, default_value in states.items():
        if key not in state:
            state[key] = default_value


def get_runner(factory, state=st.session_state):
    """
    取得 (必要時建立並啟動) 目前瀏覽器 session 的推論引擎。
    新建的引擎會登記在行程結束時停止，確保攝影機與事件迴圈被釋放。
    """
    if state["runner"] is None:
        runner = factory()
        runner.start()
        atexit.register(runner.stop)
        state["runner"] = runner
    return state["runner"]


def uploader_key(state=st.session_state) -> str:
    return f"asset_uploader_{state['uploader_nonce']}"


def claim_upload(file_id, state=st.session_state) -> bool:
    """上傳元件中的檔案是否為尚未載入的新檔案；是的話記下它。"""
    if file_id is None or state["asset_token"] == file_id:
        return False
    state["asset_token"] = file_id
    return True


def clear_upload(state=st.session_state):
    """清除畫面後，讓上傳元件以新的 key 重建 (清空已選的檔案)，並忘記最後一次載入的素材。"""
    state["uploader_nonce"] += 1
    state["asset_token"] = None
