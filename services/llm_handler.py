# services/llm_handler.py

"""
遠端視覺分析 (Analysis Gateway)。
將編碼後的畫面與 session 資訊送往 OpenAI，並把回應解析成 AnalysisResult。
本模組不保存任何跨呼叫的狀態，也不做任何重試；重試由排程器 (或操作者) 決定。
"""

import json
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from config import (
    LLM_MODEL_ANALYSIS, LLM_MAX_TOKENS, LLM_TIMEOUT_SECONDS, ENABLE_WEB_SEARCH,
    DEFAULT_GROUNDING_TITLE, DEFAULT_GROUNDING_URI,
)
from core.errors import AnalysisFailed, MalformedResponse
from core.types import (
    AnalysisResult, Deduction, DepthLevel, Evidence, FramePayload, GroundingSource,
    ScanData, SessionContext,
)
from utils.prompt_loader import render_prompt

REQUIRED_FIELDS = ("session_id", "scan_data", "deductions", "final_assessment")

DEPTH_INSTRUCTIONS = {
    DepthLevel.FAST: "Perform a rapid scan. Focus on the most obvious and high-impact clues.",
    DepthLevel.STANDARD: "Perform a standard Sherlockian analysis.",
    DepthLevel.EXHAUSTIVE: "Perform an exhaustive analysis. Notice even the smallest scuffs or fabric pills.",
}


def get_openai_client(api_key):
    """根據 API Key 初始化並返回異步的 OpenAI 客戶端物件。"""
    if not api_key:
        return None
    try:
        return AsyncOpenAI(
            api_key=api_key,
            timeout=httpx.Timeout(LLM_TIMEOUT_SECONDS, connect=5.0),
            max_retries=0,
        )
    except OpenAIError as e:
        logger.error(f"初始化 OpenAI Client 失敗: {e}")
        return None


def build_user_prompt(context: SessionContext) -> str:
    """依 session 設定組出給模型的指示；設定只影響指示內容，不影響本地過濾。"""
    config = context.config
    priority_instruction = ""
    if config.priority_flags:
        priority_instruction = (
            "IMPORTANT: Prioritize looking for and flagging these behaviors/traits: "
            f"{', '.join(config.priority_flags)}."
        )
    threshold_instruction = (
        f"Only include deductions where you are confident (confidence > {config.confidence_threshold})."
    )
    return render_prompt(
        "analyze_evidence", "user",
        session_id=context.session_id,
        memory=", ".join(context.memory),
        priority_instruction=priority_instruction,
        threshold_instruction=threshold_instruction,
        depth_instruction=DEPTH_INSTRUCTIONS[config.depth_level],
    )


async def analyze_evidence(payload: FramePayload, context: SessionContext,
                           client: Optional[AsyncOpenAI], model=LLM_MODEL_ANALYSIS,
                           web_search=ENABLE_WEB_SEARCH) -> AnalysisResult:
    """
    (非同步) 分析一張畫面。
    - 傳輸或服務錯誤 -> AnalysisFailed
    - 回應無法解析 -> MalformedResponse
    - 信心低於門檻的推論一律在本地丟棄
    - 若回應帶有網路引用，附加到每一筆保留下來的推論
    """
    if client is None:
        raise AnalysisFailed("未設定 OPENAI_API_KEY，無法進行分析")

    request: Dict[str, Any] = dict(
        model=model,
        response_format={"type": "json_object"},
        messages=[
            {"role": "system", "content": render_prompt("analyze_evidence", "system")},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": build_user_prompt(context)},
                    {"type": "image_url", "image_url": {"url": payload.data_url()}},
                ],
            },
        ],
        max_tokens=LLM_MAX_TOKENS,
    )
    if web_search:
        request["web_search_options"] = {}

    try:
        resp = await client.chat.completions.create(**request)
    except (OpenAIError, httpx.HTTPError) as e:
        raise AnalysisFailed(f"遠端分析失敗：{e}") from e

    if not resp.choices:
        raise MalformedResponse("回應中沒有任何 choices")
    message = resp.choices[0].message

    result = parse_analysis(message.content or "{}")
    result.deductions = [
        d for d in result.deductions if d.confidence >= context.config.confidence_threshold
    ]

    citations = extract_citations(message)
    if citations:
        for d in result.deductions:
            d.grounding = list(citations)

    usage = getattr(resp, "usage", None)
    if usage:
        result.token_usage = {
            "prompt_tokens": usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "total_tokens": usage.total_tokens,
        }
    return result


def extract_citations(message) -> List[GroundingSource]:
    """從 url_citation 註記中取出網路引用。"""
    sources = []
    for annotation in getattr(message, "annotations", None) or []:
        if getattr(annotation, "type", None) != "url_citation":
            continue
        cite = getattr(annotation, "url_citation", None)
        sources.append(GroundingSource(
            title=getattr(cite, "title", None) or DEFAULT_GROUNDING_TITLE,
            uri=getattr(cite, "url", None) or DEFAULT_GROUNDING_URI,
        ))
    return sources


# --- 回應解析 ---
def parse_analysis(text: str) -> AnalysisResult:
    """將模型輸出的 JSON 文字轉為 AnalysisResult，任何結構問題都視為 MalformedResponse。"""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, RecursionError) as e:
        raise MalformedResponse(f"回應不是合法的 JSON：{e}") from e
    if not isinstance(data, dict):
        raise MalformedResponse("回應必須是 JSON 物件")

    missing = [key for key in REQUIRED_FIELDS if key not in data]
    if missing:
        raise MalformedResponse(f"回應缺少必要欄位：{', '.join(missing)}")

    try:
        return AnalysisResult(
            session_id=str(data["session_id"]),
            scan_data=_parse_scan_data(data["scan_data"]),
            deductions=[_parse_deduction(d) for d in _as_list(data["deductions"])],
            final_assessment=str(data["final_assessment"]),
            session_memory=[str(m) for m in _as_list(data.get("session_memory") or [])],
        )
    except (TypeError, ValueError, OverflowError, KeyError, AttributeError) as e:
        raise MalformedResponse(f"回應結構不符：{e}") from e


def _as_list(value) -> list:
    if not isinstance(value, list):
        raise TypeError(f"預期為陣列，實際為 {type(value).__name__}")
    return value


def _unit_interval(value, name: str) -> float:
    number = float(value)
    if not 0.0 <= number <= 1.0:
        raise ValueError(f"{name} 必須介於 0 與 1 之間，實際為 {value}")
    return number


def _parse_scan_data(raw: dict) -> ScanData:
    if not isinstance(raw, dict):
        raise TypeError("scan_data 必須是物件")
    return ScanData(
        gender=str(raw.get("gender", "")),
        age_range=str(raw.get("age_range", "")),
        environment=str(raw.get("environment", "")),
        attention_score=_unit_interval(raw.get("attention_score", 0.0), "attention_score"),
        posture_score=_unit_interval(raw.get("posture_score", 0.0), "posture_score"),
        stance=str(raw.get("stance", "")),
        balance=str(raw.get("balance", "")),
        intent_prediction=str(raw.get("intent_prediction", "")),
        behavioral_flags=[str(f) for f in _as_list(raw.get("behavioral_flags") or [])],
    )


def _parse_deduction(raw: dict) -> Deduction:
    return Deduction(
        title=str(raw["title"]),
        detail=str(raw.get("detail", "")),
        confidence=_unit_interval(raw["confidence"], "confidence"),
        logic_steps=[str(s) for s in _as_list(raw.get("logic_steps") or [])],
        evidence=[
            Evidence(
                x=float(ev["x"]),
                y=float(ev["y"]),
                width=float(ev["width"]),
                height=float(ev["height"]),
                description=str(ev.get("description", "")),
            )
            for ev in _as_list(raw.get("evidence") or [])
        ],
    )
