# utils/prompt_loader.py

"""
prompts/<功能>/<system|user>.txt 模板的讀取與填值。
模板以 str.format 的欄位語法撰寫，字面大括號需寫成 {{ }}。
"""

import os
from functools import lru_cache

PROMPTS_DIR = os.path.normpath(os.path.join(os.path.dirname(os.path.abspath(__file__)), os.pardir, "prompts"))
PROMPT_ROLES = ("system", "user")


def template_path(feature: str, role: str) -> str:
    if role not in PROMPT_ROLES:
        raise ValueError(f"未知的 prompt 角色：{role}")
    return os.path.join(PROMPTS_DIR, feature, f"{role}.txt")


@lru_cache(maxsize=None)
def read_template(feature: str, role: str) -> str:
    path = template_path(feature, role)
    try:
        with open(path, encoding="utf-8") as f:
            return f.read().strip()
    except FileNotFoundError as e:
        raise FileNotFoundError(f"找不到 Prompt 模板：{path}") from e


def render_prompt(feature: str, role: str = "user", **fields) -> str:
    """填入欄位後回傳完整 prompt；模板需要但未提供的欄位會以 KeyError 指出。"""
    try:
        return read_template(feature, role).format(**fields).strip()
    except KeyError as e:
        raise KeyError(f"Prompt 模板 {feature}/{role} 缺少欄位：{e.args[0]}") from e
