"""
Test doubles and sample data shared across test modules.
"""

from typing import Any

from divination.ai.errors import ProviderNotConfigured
from divination.ai.providers.base import LLMResponse, Prompt

SAMPLE_POEMS: list[dict[str, Any]] = [
    {
        "poemNumber": 1,
        "briefMeaning": "開運大吉，凡事順遂",
        "poemText1": "日出便見風雲散",
        "poemText2": "光明清淨照世間",
        "poemText3": "一向前途通大道",
        "poemText4": "萬事清吉保平安",
    },
    {
        "poemNumber": 2,
        "briefMeaning": "守舊待時，不宜躁進",
        "poemText1": "於今此景正當時",
        "poemText2": "看看欲吐百花魁",
        "poemText3": "若能遇得春色到",
        "poemText4": "一洒清吉脫塵埃",
    },
    {
        "poemNumber": 23,
        "briefMeaning": "先難後易，終得圓滿",
        "poemText1": "欲去長江水闊茫",
        "poemText2": "前途未遂運未通",
        "poemText3": "如今絲綸常在手",
        "poemText4": "只恐魚水不相逢",
    },
]


class FakeLLMProvider:
    """Returns queued texts (or raises queued exceptions) in order."""

    def __init__(self, *outputs: str | Exception, name: str = "gemini") -> None:
        self.name = name
        self.outputs = list(outputs)
        self.calls: list[tuple[Prompt, str]] = []
        self.closed = False

    async def generate(self, prompt: Prompt, purpose: str = "general") -> LLMResponse:
        self.calls.append((prompt, purpose))
        output = self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        return LLMResponse(text=output, model="fake-model", tokens_used=10)

    async def close(self) -> None:
        self.closed = True


class FakeImageProvider:
    """Returns a fixed data URL, or raises when unconfigured."""

    def __init__(self, configured: bool = True) -> None:
        self.configured = configured
        self.prompts: list[str] = []
        self.closed = False

    async def generate_image(self, prompt: str, style_preset: str | None = None, options: dict | None = None) -> str:
        self.prompts.append(prompt)
        if not self.configured:
            raise ProviderNotConfigured("Stability AI API key is not configured", "image")
        return "data:image/webp;base64,AAAA"

    async def close(self) -> None:
        self.closed = True
