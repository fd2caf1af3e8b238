"""Two-phase poem analysis.

Phase 1 asks the model for an overall reading of the three trigrams.
Phase 2 asks it to match that reading against the poem library's short
meanings. The best match is resolved locally by list index, then by
poem number.
"""

import logging
from typing import Any

from divination.ai.errors import AIServiceError
from divination.ai.router import LLMRouter
from divination.models import DivinationResult, GeminiAnalysis, SelectedCard
from divination.oracle.poems import FortunePoem, PoemLibrary
from divination.oracle.prompts import build_analysis_prompt, build_matching_prompt
from divination.oracle.sessions import SessionStore

logger = logging.getLogger(__name__)

_CHINESE_DIGITS = "零一二三四五六七八九十"


class PoemsUnavailable(RuntimeError):
    """Poem data was not loaded at startup."""


class UnexpectedAnalysisShape(AIServiceError):
    """Model returned valid JSON without the fields a phase needs."""


def number_to_chinese(num: Any) -> str:
    """Render 0-99 in Chinese numerals; other values are returned as text."""
    if not isinstance(num, int) or isinstance(num, bool):
        return str(num) if num is not None else ""
    if num < 0 or num >= 100:
        return str(num)
    if num <= 10:
        return _CHINESE_DIGITS[num]
    if num < 20:
        return "十" + _CHINESE_DIGITS[num - 10]
    tens, ones = divmod(num, 10)
    if ones == 0:
        return _CHINESE_DIGITS[tens] + "十"
    return _CHINESE_DIGITS[tens] + "十" + _CHINESE_DIGITS[ones]


def poem_image_url(poem: FortunePoem) -> str:
    """Relative URL of the pre-rendered poem image."""
    return f"assets/outputs/poem_{poem.poemNumber:02d}.png"


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


class DivinationService:
    """Trigram analysis and poem matching."""

    def __init__(self, router: LLMRouter, library: PoemLibrary, sessions: SessionStore) -> None:
        self.router = router
        self.library = library
        self.sessions = sessions

    async def _analyze_trigrams(self, cards: list[SelectedCard], session_id: str) -> dict[str, Any]:
        purpose = f"lingShi-phase1-analysis-{session_id}"
        result = await self.router.generate_json(build_analysis_prompt(cards), purpose)
        if not (_non_empty_str(result.get("title")) and _non_empty_str(result.get("analysis"))):
            logger.error(f"[{purpose}] analysis is missing title/analysis: keys={sorted(result)}")
            raise UnexpectedAnalysisShape("AI trigram analysis returned an unexpected format", purpose)
        return result

    async def _match_poems(self, title: str, analysis: str, session_id: str) -> dict[str, Any]:
        purpose = f"lingShi-phase2-matching-{session_id}"
        prompt = build_matching_prompt(title, analysis, self.library.brief_meanings())
        result = await self.router.generate_json(prompt, purpose)
        if not _non_empty_str(result.get("matchReason")) or not isinstance(result.get("matchedFortunes"), list):
            logger.error(f"[{purpose}] matching is missing matchReason/matchedFortunes: keys={sorted(result)}")
            raise UnexpectedAnalysisShape("AI poem matching returned an unexpected format", purpose)
        return result

    def resolve_best_match(self, matched_fortunes: list[Any]) -> FortunePoem | None:
        """Look up the top-ranked match, by index first and poem number second."""
        if not matched_fortunes:
            logger.warning("AI did not match any poem")
            return None
        best = matched_fortunes[0]
        if not isinstance(best, dict):
            logger.error(f"Best match is not an object: {best!r}")
            return None

        poem = self.library.by_index(best.get("index"))
        if poem is not None:
            return poem
        poem = self.library.by_number(best.get("poemNumber"))
        if poem is None:
            logger.error(f"Best match does not resolve to a local poem: {best!r}")
        return poem

    async def analyze(self, cards: list[SelectedCard], session_id: str) -> DivinationResult:
        """Run both phases and store the result.

        Args:
            cards: Exactly three validated cards
            session_id: ID for this analysis

        Returns:
            DivinationResult; ``canSave`` is True only when a poem matched

        Raises:
            PoemsUnavailable: If no poem data is loaded
            AIServiceError: If a generation call fails or returns unusable output
        """
        if not self.library.loaded:
            raise PoemsUnavailable("Fortune poem data is not loaded")

        card_names = "、".join(card.name for card in cards)
        logger.info(f"Analyzing cards [{card_names}] (session {session_id})")

        phase1 = await self._analyze_trigrams(cards, session_id)
        phase2 = await self._match_poems(phase1["title"], phase1["analysis"], session_id)

        analysis = GeminiAnalysis(
            title=phase1["title"],
            analysis=phase1["analysis"],
            matchReason=phase2["matchReason"],
            matchedFortunes=[f for f in phase2["matchedFortunes"] if isinstance(f, dict)],
        )

        poem = self.resolve_best_match(phase2["matchedFortunes"])
        matched_poem: dict[str, Any] | None = None
        image_url: str | None = None
        if poem is not None:
            matched_poem = poem.model_dump()
            matched_poem["poemNumberChinese"] = number_to_chinese(poem.poemNumber)
            image_url = poem_image_url(poem)
            logger.info(f"Matched poem #{poem.poemNumber} (session {session_id})")

        result = DivinationResult(
            sessionId=session_id,
            canSave=poem is not None,
            geminiAnalysis=analysis,
            matchedPoem=matched_poem,
            finalImageUrl=image_url,
            selectedCardNames=card_names,
        )
        self.sessions.save(result)
        return result
