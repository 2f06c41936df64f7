# ui/live_view.py
"""
偵查畫面：左側為攝影機 / 素材畫面與證據框，右側為控制按鈕、推論與事件歷史。
畫面上的所有資訊都來自 EngineRunner 的最新 SessionSnapshot；
結果在背景送達時，刷新迴圈會重畫推論與歷史，必要時觸發 st.rerun() 更新控制列。
"""
import time

import cv2
import streamlit as st

from core.projector import project
from core.types import CaptureMode, Viewport
from ui.engine_runner import EngineRunner
from utils import state_manager

LIVE_MODES = (CaptureMode.LIVE_DEVICE, CaptureMode.CONTINUOUS_SURVEILLANCE)
STREAMING_MODES = LIVE_MODES + (CaptureMode.STATIC_VIDEO,)
STATUS_LABELS = {
    CaptureMode.IDLE: "待命",
    CaptureMode.LIVE_DEVICE: "即時畫面",
    CaptureMode.STATIC_IMAGE: "靜態證物",
    CaptureMode.STATIC_VIDEO: "影片證物",
    CaptureMode.CONTINUOUS_SURVEILLANCE: "🔴 連續監控中",
}


def _draw_evidence(frame_bgr, snapshot):
    """在畫面上畫出目前推論的證據框。即時畫面不畫。"""
    result = snapshot.latest_result
    if result is None:
        return frame_bgr
    h, w = frame_bgr.shape[:2]
    viewport = Viewport(width=w, height=h)
    for box in project(result.deductions, viewport, snapshot.mode):
        x1, y1, x2, y2 = box.to_pixels(viewport)
        cv2.rectangle(frame_bgr, (x1, y1), (x2, y2), (250, 190, 56), 2)
        cv2.putText(frame_bgr, box.short_label.upper(), (x1 + 2, max(12, y1 - 6)),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.45, (250, 220, 180), 1)
    return frame_bgr


def _render_frame(frame_slot, runner: EngineRunner, snapshot):
    frame = runner.current_frame()
    if frame is None:
        frame_slot.info("等待畫面中...")
        return
    bgr = _draw_evidence(frame.pixels.copy(), snapshot)
    frame_slot.image(cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB), channels="RGB")


def _render_analysis(snapshot):
    result = snapshot.latest_result
    if snapshot.error:
        st.error(snapshot.error)
    if result is None:
        st.caption("等待案件證據..." if not snapshot.in_flight else "推理中...")
        return

    scan = result.scan_data
    c1, c2 = st.columns(2)
    c1.metric("專注度", f"{round(scan.attention_score * 100)}%")
    c2.metric("姿態", f"{round(scan.posture_score * 100)}%")
    st.write(f"**意圖預測：** {scan.intent_prediction or '---'}")
    st.write(f"**環境：** {scan.environment or '--'}　**站姿：** {scan.stance or '--'}")
    if scan.behavioral_flags:
        st.write(" ".join(f"`{f}`" for f in scan.behavioral_flags))
    st.info(f"“{result.final_assessment}”")

    for i, d in enumerate(result.deductions):
        with st.expander(f"{d.title} ({d.confidence:.0%})", expanded=(i == 0)):
            st.write(d.detail)
            for step in d.logic_steps:
                st.markdown(f"&nbsp;&nbsp;&nbsp;- {step}")
            for g in d.grounding:
                st.markdown(f"[外部來源] [{g.title}]({g.uri})")


def _render_history(snapshot):
    st.subheader(f"📜 事件歷史 ({len(snapshot.history)})")
    st.caption(f"滾動記憶：{snapshot.memory_size} 條")
    for entry in snapshot.history:
        st.markdown(
            f"`{entry.captured_at.strftime('%H:%M:%S')}` **{entry.deduction.title}** "
            f"({entry.deduction.confidence:.0%})"
        )


def _render_panels(analysis_slot, history_slot, snapshot):
    with analysis_slot.container():
        _render_analysis(snapshot)
    with history_slot.container():
        _render_history(snapshot)


def controls_outdated(drawn, current) -> bool:
    """
    控制列是依 drawn 畫出的。模式、鏡頭錯誤或「凍結並推論」的可用狀態改變時，
    需要重跑整個腳本才能更新按鈕。監控中的在途狀態每個 tick 都會變動，不列入。
    """
    if current.mode != drawn.mode or current.device_error != drawn.device_error:
        return True
    if current.mode == CaptureMode.CONTINUOUS_SURVEILLANCE:
        return False
    return current.in_flight != drawn.in_flight


def display(runner: EngineRunner, fps_display: int = 15):
    """
    主執行緒函式。
    負責繪製 UI、把操作轉成排程器指令，並持續依最新的 snapshot 刷新畫面、推論與歷史。
    """
    lcol, rcol = st.columns([2, 1])
    snapshot = runner.snapshot
    scheduler = runner.scheduler

    with rcol:
        st.subheader("控制")
        st.caption(f"案件：`{snapshot.session_id}`　狀態：{STATUS_LABELS[snapshot.mode]}")

        if st.button("開啟即時鏡頭" if not snapshot.device_error else "重試鏡頭", use_container_width=True):
            runner.submit(scheduler.start_live())

        up = st.file_uploader("載入證物 (圖片或影片)", type=["jpg", "jpeg", "png", "webp", "mp4", "mov", "avi"],
                              key=state_manager.uploader_key())
        if up is not None and state_manager.claim_upload(up.file_id):
            runner.submit(scheduler.load_asset(up.getvalue(), up.type or "", up.name))

        if snapshot.mode == CaptureMode.STATIC_VIDEO:
            paused = st.toggle("暫停影片", value=False)
            runner.set_video_paused(paused)

        if st.button("凍結並推論", use_container_width=True, disabled=snapshot.in_flight):
            runner.submit(scheduler.manual_capture())

        cctv = st.toggle("連續監控", value=snapshot.mode == CaptureMode.CONTINUOUS_SURVEILLANCE,
                         disabled=snapshot.mode not in LIVE_MODES)
        if cctv != (snapshot.mode == CaptureMode.CONTINUOUS_SURVEILLANCE):
            runner.submit(scheduler.toggle_surveillance())

        if st.button("清除畫面", use_container_width=True):
            runner.submit(scheduler.reset())
            state_manager.clear_upload()
            st.rerun()

        st.divider()
        st.subheader("🔎 推論")
        analysis_slot = st.empty()
        st.divider()
        history_slot = st.empty()

    with lcol:
        st.subheader("📹 證物畫面")
        frame_slot = st.empty()

    # 上面的指令可能已改變狀態，控制列以此刻的 snapshot 為準
    drawn = runner.snapshot
    if controls_outdated(snapshot, drawn):
        st.rerun()

    if drawn.mode == CaptureMode.IDLE:
        _render_panels(analysis_slot, history_slot, drawn)
        frame_slot.info("請開啟即時鏡頭或載入證物以開始偵查。")
        return

    # --- 刷新迴圈：串流模式每一輪重畫畫面；推論與歷史只在 snapshot 更新時重畫 ---
    streaming = drawn.mode in STREAMING_MODES
    shown = None
    while True:
        current = runner.snapshot
        if controls_outdated(drawn, current):
            st.rerun()
        if current is not shown:
            _render_panels(analysis_slot, history_slot, current)
            if not streaming:
                _render_frame(frame_slot, runner, current)
            shown = current
        if streaming:
            _render_frame(frame_slot, runner, current)
        elif not current.in_flight:
            return
        time.sleep(1.0 / fps_display)
