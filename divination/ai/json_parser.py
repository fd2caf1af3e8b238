"""Staged JSON recovery for LLM output.

Models are asked to "return JSON" but wrap it in prose or markdown fences,
leak raw control characters into strings, use single quotes, or leave
trailing commas. The cascade below tries increasingly aggressive repairs
and stops at the first candidate that parses:

    1. strip ```json fences
    2. direct parse
    3. outermost {...} span (fallback candidate only)
    4. control-character normalization
    5. single-quote and trailing-comma repair
    6. closing-brace padding (opt-in, lossy)

Every stage returns a ``Parsed`` or ``Failed`` result; only the last
failure is surfaced, as ``RecoveryFailure``.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Literal

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```json\s*|\s*```$", re.IGNORECASE)
_CONTROL_CHAR_RE = re.compile(r"[\u0000-\u001f\u007f-\u009f]")
_UNESCAPED_SINGLE_QUOTE_RE = re.compile(r"(?<!\\)'")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

_ELLIPSIS = "..."

_CONTROL_ESCAPES = {
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\b": "\\b",
    "\f": "\\f",
}

ControlCharStrategy = Literal["escape", "space"]


class RecoveryStage(IntEnum):
    """Ordered recovery stages."""

    FENCE_STRIP = 1
    DIRECT = 2
    EXTRACT = 3
    CONTROL_CHARS = 4
    AGGRESSIVE = 5
    BRACE_PADDING = 6


@dataclass(frozen=True)
class Parsed:
    """A stage produced a value."""

    stage: RecoveryStage
    value: Any
    candidate: str


@dataclass(frozen=True)
class Failed:
    """A stage could not produce a value."""

    stage: RecoveryStage
    reason: str
    candidate: str
    position: int | None = None


StageResult = Parsed | Failed


@dataclass(frozen=True)
class RecoveryOptions:
    """Strategy choices for the cascade.

    Attributes:
        control_chars: "escape" turns newline, carriage return, tab, backspace
            and form-feed into their two-character escapes and deletes other
            control characters; "space" replaces every control character
            with a space (lossy legacy behavior).
        pad_braces: append missing closing braces after quote repair. Lossy:
            it can make truncated output parse with content missing.
        preview_length: size of the text previews carried by failures.
    """

    control_chars: ControlCharStrategy = "escape"
    pad_braces: bool = False
    preview_length: int = 200


DEFAULT_OPTIONS = RecoveryOptions()


class RecoveryFailure(Exception):
    """All recovery stages failed for a piece of generator output."""

    def __init__(
        self,
        purpose: str,
        message: str,
        raw_preview: str,
        cleaned_preview: str,
        position: int | None = None,
        context: str | None = None,
    ) -> None:
        self.purpose = purpose
        self.message = message
        self.raw_preview = raw_preview
        self.cleaned_preview = cleaned_preview
        self.position = position
        self.context = context
        super().__init__(f"Unable to recover JSON ({purpose or 'unlabeled'}): {message}")


class ShapeMismatch(RecoveryFailure):
    """Output parsed, but not into the object the caller required."""


def preview(text: str, limit: int = DEFAULT_OPTIONS.preview_length) -> str:
    """Truncate text to at most limit characters, ending a cut with an ellipsis."""
    if len(text) <= limit:
        return text
    if limit <= len(_ELLIPSIS):
        return text[:limit]
    return text[: limit - len(_ELLIPSIS)] + _ELLIPSIS


def strip_fences(text: str) -> str:
    """Remove a leading ```json marker and a trailing ``` fence."""
    return _FENCE_RE.sub("", text.strip()).strip()


def try_parse(candidate: str, stage: RecoveryStage) -> StageResult:
    """Attempt a strict JSON parse of candidate."""
    try:
        return Parsed(stage=stage, value=json.loads(candidate), candidate=candidate)
    except json.JSONDecodeError as e:
        return Failed(stage=stage, reason=str(e), candidate=candidate, position=e.pos)
    except (ValueError, RecursionError) as e:
        return Failed(stage=stage, reason=str(e) or type(e).__name__, candidate=candidate)


def extract_object_span(text: str) -> str | None:
    """Return the text from the first "{" to the last "}", trimmed.

    Greedy rather than balanced: correct when the object is the only
    top-level JSON entity in the text. Linear in the length of text.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        return None
    return text[start : end + 1].strip() or None


def normalize_control_chars(text: str, strategy: ControlCharStrategy = "escape") -> str:
    """Rewrite control characters (U+0000-U+001F, U+007F-U+009F)."""
    if strategy == "space":
        return _CONTROL_CHAR_RE.sub(" ", text)
    return _CONTROL_CHAR_RE.sub(lambda m: _CONTROL_ESCAPES.get(m.group(0), ""), text)


def repair_quotes_and_commas(text: str) -> str:
    """Swap unescaped single quotes for double quotes and drop trailing commas.

    Unsafe for apostrophes inside double-quoted values; last resort only.
    """
    repaired = _UNESCAPED_SINGLE_QUOTE_RE.sub('"', text)
    return _TRAILING_COMMA_RE.sub(r"\1", repaired)


def pad_unclosed_braces(text: str) -> str:
    """Append one "}" per unmatched "{" (lossy)."""
    missing = text.count("{") - text.count("}")
    if missing <= 0:
        return text
    return text + "}" * missing


def _error_context(candidate: str, position: int | None, radius: int = 20) -> str | None:
    """Snippet around the failing offset, or None if it can't be computed."""
    try:
        if position is None:
            return None
        start = max(0, position - radius)
        end = min(len(candidate), position + radius)
        return candidate[start:end]
    except Exception:
        logger.debug("Could not build error context", exc_info=True)
        return None


def _stages(text: str, options: RecoveryOptions):
    """Yield stage results in order. Later stages build on earlier cleanups."""
    baseline = strip_fences(text)
    yield try_parse(baseline, RecoveryStage.DIRECT)

    span = extract_object_span(baseline)
    if span is not None:
        yield try_parse(span, RecoveryStage.EXTRACT)
    else:
        yield Failed(stage=RecoveryStage.EXTRACT, reason="no {...} span found", candidate=baseline)

    # The unclipped baseline continues; the span may have cut valid content.
    normalized = normalize_control_chars(baseline, options.control_chars)
    yield try_parse(normalized, RecoveryStage.CONTROL_CHARS)

    aggressive = repair_quotes_and_commas(normalized)
    yield try_parse(aggressive, RecoveryStage.AGGRESSIVE)

    if options.pad_braces:
        padded = pad_unclosed_braces(aggressive)
        if padded != aggressive:
            yield try_parse(padded, RecoveryStage.BRACE_PADDING)


def recover_structured_value(
    text: str,
    purpose: str = "",
    options: RecoveryOptions | None = None,
) -> Any:
    """Parse JSON out of raw generator output.

    Args:
        text: Full text returned by a generation call
        purpose: Label used only in logs and in the failure
        options: Strategy choices; defaults to ``DEFAULT_OPTIONS``

    Returns:
        The parsed value (object, array or scalar)

    Raises:
        RecoveryFailure: If no stage produced a parseable candidate
    """
    options = options or DEFAULT_OPTIONS
    if text is None:
        text = ""

    last = Failed(stage=RecoveryStage.DIRECT, reason="empty input", candidate="")
    for result in _stages(text, options):
        if isinstance(result, Parsed):
            if result.stage > RecoveryStage.DIRECT:
                logger.info(f"[{purpose}] JSON recovered at stage {result.stage.name}")
            else:
                logger.debug(f"[{purpose}] JSON parsed directly")
            return result.value
        logger.debug(f"[{purpose}] stage {result.stage.name} failed: {result.reason}")
        last = result

    failure = RecoveryFailure(
        purpose=purpose,
        message=last.reason,
        raw_preview=preview(text, options.preview_length),
        cleaned_preview=preview(last.candidate, options.preview_length),
        position=last.position,
        context=_error_context(last.candidate, last.position),
    )
    logger.error(
        f"[{purpose}] all JSON recovery stages failed: {failure.message}; "
        f"raw={failure.raw_preview!r} cleaned={failure.cleaned_preview!r}"
    )
    raise failure


def require_object(value: Any, purpose: str = "", options: RecoveryOptions | None = None) -> dict[str, Any]:
    """Return value if it is a JSON object, else raise ShapeMismatch."""
    if isinstance(value, dict):
        return value
    limit = (options or DEFAULT_OPTIONS).preview_length
    rendered = preview(repr(value), limit)
    raise ShapeMismatch(
        purpose=purpose,
        message=f"expected a JSON object, got {type(value).__name__}",
        raw_preview=rendered,
        cleaned_preview=rendered,
    )


def extract_json(
    text: str,
    purpose: str = "",
    options: RecoveryOptions | None = None,
) -> dict[str, Any] | None:
    """Recover a JSON object from text, or None. Never raises.

    Args:
        text: LLM response text
        purpose: Diagnostic label
        options: Strategy choices

    Returns:
        Parsed JSON dict or None if recovery fails or the result isn't an object
    """
    try:
        return require_object(recover_structured_value(text, purpose, options), purpose, options)
    except RecoveryFailure:
        return None
