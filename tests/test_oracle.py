import json
from datetime import datetime, timedelta, timezone

import pytest
import yaml

from divination.ai.errors import AIServiceError, StructuredOutputError
from divination.ai.router import LLMRouter
from divination.models import DivinationResult, GeminiAnalysis, SelectedCard
from divination.oracle.error_handler import AI_SERVICE_MESSAGE, ApiErrorHandler
from divination.oracle.poems import PoemDataError, PoemLibrary, load_poems
from divination.oracle.service import (
    DivinationService,
    PoemsUnavailable,
    UnexpectedAnalysisShape,
    number_to_chinese,
)
from divination.oracle.sessions import SessionStore
from tests.helpers import SAMPLE_POEMS, FakeLLMProvider

PHASE1 = '{"title": "乾艮離", "analysis": "由剛健而止，終見光明。"}'


def phase2(index=2, poem_number=23):
    return json.dumps(
        {
            "matchReason": "先難後易",
            "matchedFortunes": [
                {"index": index, "poemNumber": poem_number, "reasonForMatch": "轉機", "matchScore": 9}
            ],
        },
        ensure_ascii=False,
    )


def make_service(provider, library, max_attempts=1):
    return DivinationService(LLMRouter(provider, max_attempts=max_attempts), library, SessionStore())


class TestPoemLoading:
    """Poem data files"""

    def test_load_json(self, poem_file):
        """Should load and validate a JSON poem list"""
        poems = load_poems(poem_file)
        assert [p.poemNumber for p in poems] == [1, 2, 23]

    def test_load_yaml(self, tmp_path):
        """Should load YAML files by suffix"""
        path = tmp_path / "poems.yaml"
        path.write_text(yaml.safe_dump(SAMPLE_POEMS, allow_unicode=True), encoding="utf-8")
        assert len(load_poems(path)) == 3

    def test_missing_file(self, tmp_path):
        """Should raise PoemDataError for unreadable files"""
        with pytest.raises(PoemDataError):
            load_poems(tmp_path / "missing.json")

    @pytest.mark.parametrize("content", ["[]", "{}", '[{"poemNumber": 1}]', "not json"])
    def test_invalid_content(self, tmp_path, content):
        """Should reject empty, non-list and incomplete data"""
        path = tmp_path / "poems.json"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(PoemDataError):
            load_poems(path)

    def test_library_from_bad_path_is_empty(self, tmp_path):
        """Should fail soft with an unloaded library"""
        library = PoemLibrary.from_path(tmp_path / "missing.json")
        assert not library.loaded
        assert len(library) == 0

    def test_library_lookups(self, poem_library):
        """Should look poems up by index and by number"""
        assert poem_library.by_index(2).poemNumber == 23
        assert poem_library.by_index(3) is None
        assert poem_library.by_index(True) is None
        assert poem_library.by_number(2).poemNumber == 2
        assert poem_library.by_number("2") is None
        assert poem_library.brief_meanings()[0] == {"index": 0, "poemNumber": 1, "meaning": "開運大吉，凡事順遂"}


class TestNumberToChinese:
    """Chinese numerals for poem numbers"""

    @pytest.mark.parametrize(
        "num,expected",
        [(0, "零"), (7, "七"), (10, "十"), (13, "十三"), (20, "二十"), (23, "二十三"), (99, "九十九")],
    )
    def test_numbers(self, num, expected):
        """Should render 0-99 in Chinese"""
        assert number_to_chinese(num) == expected

    @pytest.mark.parametrize("num,expected", [(100, "100"), (-1, "-1"), ("x", "x"), (None, "")])
    def test_out_of_range(self, num, expected):
        """Should fall back to plain text"""
        assert number_to_chinese(num) == expected


class TestDivinationService:
    """Two-phase analysis"""

    @pytest.fixture
    def selected(self, cards):
        return [SelectedCard.model_validate(c) for c in cards]

    @pytest.mark.asyncio
    async def test_analyze_matches_poem_by_index(self, poem_library, selected):
        """Should merge both phases and resolve the poem by index"""
        provider = FakeLLMProvider(PHASE1, f"```json\n{phase2()}\n```")
        service = make_service(provider, poem_library)

        result = await service.analyze(selected, "s1")

        assert result.canSave is True
        assert result.geminiAnalysis.title == "乾艮離"
        assert result.geminiAnalysis.matchReason == "先難後易"
        assert result.matchedPoem["poemNumber"] == 23
        assert result.matchedPoem["poemNumberChinese"] == "二十三"
        assert result.finalImageUrl == "assets/outputs/poem_23.png"
        assert result.selectedCardNames == "乾、艮、離"
        assert [purpose for _, purpose in provider.calls] == [
            "lingShi-phase1-analysis-s1",
            "lingShi-phase2-matching-s1",
        ]
        assert "第23籤：先難後易，終得圓滿" in provider.calls[1][0]
        assert service.sessions.get("s1").result == result

    @pytest.mark.asyncio
    async def test_falls_back_to_poem_number(self, poem_library, selected):
        """Should use poemNumber when the index is out of range"""
        provider = FakeLLMProvider(PHASE1, phase2(index=99, poem_number=2))
        result = await make_service(provider, poem_library).analyze(selected, "s2")

        assert result.matchedPoem["poemNumber"] == 2
        assert result.finalImageUrl == "assets/outputs/poem_02.png"

    @pytest.mark.asyncio
    async def test_no_match(self, poem_library, selected):
        """Should return the analysis without a poem when nothing matched"""
        provider = FakeLLMProvider(PHASE1, '{"matchReason": "無", "matchedFortunes": []}')
        result = await make_service(provider, poem_library).analyze(selected, "s3")

        assert result.canSave is False
        assert result.matchedPoem is None
        assert result.finalImageUrl is None

    @pytest.mark.asyncio
    async def test_unresolvable_match(self, poem_library, selected):
        """Should leave the poem empty when neither index nor number resolve"""
        provider = FakeLLMProvider(PHASE1, phase2(index=99, poem_number=99))
        result = await make_service(provider, poem_library).analyze(selected, "s4")

        assert result.matchedPoem is None
        assert result.canSave is False

    @pytest.mark.asyncio
    async def test_phase1_missing_fields(self, poem_library, selected):
        """Should reject an analysis without title and analysis"""
        provider = FakeLLMProvider('{"title": "only title"}')
        with pytest.raises(UnexpectedAnalysisShape):
            await make_service(provider, poem_library).analyze(selected, "s5")

    @pytest.mark.asyncio
    async def test_phase2_requires_list(self, poem_library, selected):
        """Should reject matchedFortunes that is not a list"""
        provider = FakeLLMProvider(PHASE1, '{"matchReason": "r", "matchedFortunes": "none"}')
        with pytest.raises(UnexpectedAnalysisShape):
            await make_service(provider, poem_library).analyze(selected, "s6")

    @pytest.mark.asyncio
    async def test_unparseable_output(self, poem_library, selected):
        """Should surface StructuredOutputError from the router"""
        provider = FakeLLMProvider("The trigrams speak of change.")
        with pytest.raises(StructuredOutputError):
            await make_service(provider, poem_library).analyze(selected, "s7")

    @pytest.mark.asyncio
    async def test_requires_poems(self, selected):
        """Should refuse to analyze without poem data"""
        provider = FakeLLMProvider(PHASE1)
        with pytest.raises(PoemsUnavailable):
            await make_service(provider, PoemLibrary()).analyze(selected, "s8")
        assert provider.calls == []


class TestSessionStore:
    """In-memory result store"""

    def _result(self, session_id):
        return DivinationResult(
            sessionId=session_id,
            canSave=False,
            geminiAnalysis=GeminiAnalysis(title="t", analysis="a", matchReason="r"),
            selectedCardNames="乾",
        )

    def test_save_and_get(self):
        """Should return saved sessions"""
        store = SessionStore(ttl_hours=24)
        store.save(self._result("a"))
        assert store.get("a").result.sessionId == "a"
        assert store.get("missing") is None

    def test_expired_sessions_are_purged(self):
        """Should drop sessions past their TTL"""
        store = SessionStore(ttl_hours=1)
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        store.save(self._result("old"), now=start)

        assert store.get("old", now=start + timedelta(minutes=59)) is not None
        assert store.get("old", now=start + timedelta(hours=1)) is None
        assert len(store) == 0


class TestApiErrorHandler:
    """Client-facing error payloads"""

    def test_ai_errors_are_opaque(self):
        """Should hide AI error details behind a generic message"""
        payload = ApiErrorHandler().handle_error("ep", AIServiceError("Gemini leaked {raw text}", "p"))

        assert payload["success"] is False
        assert payload["error"] == AI_SERVICE_MESSAGE
        assert len(payload["errorId"]) == 8
        assert "errorDetails" not in payload

    def test_other_errors_quote_error_id(self):
        """Should reference the error ID for unexpected failures"""
        payload = ApiErrorHandler().handle_error("ep", RuntimeError("disk full"))

        assert payload["errorId"] in payload["error"]
        assert "disk full" not in payload["error"]

    def test_details_in_debug_mode(self):
        """Should include the raw message when enabled"""
        payload = ApiErrorHandler(include_details=True).handle_error("ep", RuntimeError("disk full"))
        assert payload["errorDetails"] == "disk full"
