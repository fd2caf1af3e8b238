"""Prompt builders for the two-phase poem analysis."""

from typing import Any

from divination.models import SelectedCard


def build_analysis_prompt(cards: list[SelectedCard]) -> str:
    """Phase 1: overall reading of three trigrams, answered as {title, analysis}."""
    trigram_lines = "\n".join(
        f"卦象{label}: {card.name} ({card.id})" for label, card in zip("一二三", cards)
    )
    return f"""你是一位精通易經八卦的台灣解讀者。請根據使用者抽到的以下三個卦象，進行整體的卦象分析和解讀，除非卦象顯示險惡需要提醒，請盡量往支持和鼓舞的方向判斷。

{trigram_lines}

回應要求：
* 僅返回一個格式完全正確的 JSON 物件，不要在前後添加任何文字、註釋或 Markdown 標記。
* JSON 物件包含兩個鍵："title"（字串，對這三個卦象組合的簡短標題）和 "analysis"（字串，詳細分析，使用台灣正體中文）。
* 分析內容需考慮三個卦象之間的關聯和變化。

示例：
{{
  "title": "乾艮離卦象組合的啟示",
  "analysis": "此組合代表了從天行健（乾）到山止於行（艮），再到文明之光（離）的過程……"
}}"""


def build_matching_prompt(title: str, analysis: str, brief_meanings: list[dict[str, Any]]) -> str:
    """Phase 2: pick 1-3 poems matching the reading, answered as {matchReason, matchedFortunes}."""
    listing = "\n".join(
        f"{item['index']}. 第{item['poemNumber']}籤：{item['meaning']}" for item in brief_meanings
    )
    return f"""你是一位精通易經八卦和媽祖靈籤的台灣解籤師。請根據以下卦象分析結果，從媽祖靈籤簡意列表中找出最匹配的 1 到 3 支籤詩。

卦象分析標題: {title}
卦象分析內容: {analysis}

媽祖靈籤簡意列表（格式：索引. 第N籤：簡意）：
{listing}

回應要求：
* 僅返回一個格式完全正確的 JSON 物件，不要在前後添加任何文字、註釋或 Markdown 標記。
* JSON 物件包含兩個鍵："matchReason"（字串，整體匹配理由，使用台灣正體中文）和 "matchedFortunes"（陣列）。
* "matchedFortunes" 中每個物件包含："index"（數字，列表索引）、"poemNumber"（數字，籤詩編號）、"reasonForMatch"（字串）、"matchScore"（1-10 整數）。
* 依匹配度由高到低排序；若沒有匹配的籤詩，"matchedFortunes" 為空陣列。

示例：
{{
  "matchReason": "根據卦象分析中……",
  "matchedFortunes": [
    {{ "index": 5, "poemNumber": 6, "reasonForMatch": "此籤描述的轉機……", "matchScore": 9 }}
  ]
}}"""
