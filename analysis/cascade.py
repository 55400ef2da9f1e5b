import logging
import re
from collections.abc import Sequence
from typing import Any

from core.config import AnalyticsField
from core.errors import CompletionError, ExtractionError
from core.types import AnalysisRecord, CompletionRequest, Role, Session, Turn
from llm.client import CompletionClient
from llm.extract import parse_json_from_text, sanitize_content
from llm.prompts import analysis_instruction, build_analysis_prompt, with_reminder

logger = logging.getLogger(__name__)

ANALYSIS_MAX_TOKENS = 250

# Lead-ins analysts like to prepend to a value ("From the answers: ...")
VALUE_PREFIXES = [
    re.compile(r"^Пользователь[^:]*:\s*", re.IGNORECASE),
    re.compile(r"^Из ответов[^:]*:\s*", re.IGNORECASE),
    re.compile(r"^В диалоге[^:]*:\s*", re.IGNORECASE),
    re.compile(r"^Критичные функции[^:]*:\s*", re.IGNORECASE),
    re.compile(r"^Основные риски[^:]*:\s*", re.IGNORECASE),
    re.compile(r"^The user[^:]*:\s*", re.IGNORECASE),
    re.compile(r"^From the (?:answers|interview)[^:]*:\s*", re.IGNORECASE),
]
_QUOTED = [re.compile(r'"([^"]{3,160})"'), re.compile(r"«([^»]{3,160})»")]
_SENTENCE_BREAK = re.compile(r"\.(?:\s+|$)")


def _coerce(key: str, value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str | int | float):
        return str(value)
    raise ExtractionError(f"Invalid analysis payload: {key} must be a string, got {type(value).__name__}")


def parse_analysis_record(content: str, keys: Sequence[str]) -> dict[str, str]:
    """Strict parse: a JSON object whose configured keys hold scalars.

    Unknown keys are dropped, missing keys default to "".
    """
    try:
        parsed = parse_json_from_text(sanitize_content(content))
    except ExtractionError as e:
        raise ExtractionError(f"Failed to parse analysis JSON: {e.message}") from e
    if not isinstance(parsed, dict):
        raise ExtractionError(f"Invalid analysis payload: expected an object, got {type(parsed).__name__}")
    return {key: _coerce(key, parsed.get(key)) for key in keys}


def parse_loose_record(content: str, keys: Sequence[str]) -> dict[str, str]:
    """Scan ``key: value`` lines (separators - – — : =).

    The key must open its line, optionally after a bullet or quote, and end on a
    word boundary so ``metric`` never matches ``value_metric``.
    """
    text = sanitize_content(content)
    row = {}
    for key in keys:
        pattern = rf"^[\s\"'*-]*{re.escape(key)}\b[\"'*]*\s*[-–—:=]\s*(.+)$"
        match = re.search(pattern, text, re.IGNORECASE | re.MULTILINE)
        row[key] = match.group(1).strip() if match else ""
    return row


def has_any_value(row: dict[str, str]) -> bool:
    return any(value.strip() for value in row.values())


def sanitize_value(value: str) -> str:
    """Trim analyst lead-ins and trailing sentences; keeps decimals and inline colons."""
    cleaned = re.sub(r"\s+", " ", value).strip()
    for pattern in VALUE_PREFIXES:
        cleaned = pattern.sub("", cleaned)
    if "->" in cleaned:
        cleaned = cleaned.split("->")[-1].strip()
    first = _SENTENCE_BREAK.split(cleaned, maxsplit=1)[0].strip()
    if first:
        cleaned = first
    for pattern in _QUOTED:
        match = pattern.search(cleaned)
        if match:
            cleaned = match.group(1).strip()
            break
    return cleaned


class FallbackCascade:
    """Turns one transcript into one AnalysisRecord, whatever the models do.

    Models are tried in order. Per model: strict parse, then one reminder
    request, then a loose ``key: value`` scan. When every model fails the
    record is returned with every field empty.
    """

    def __init__(
        self,
        client: CompletionClient,
        fields: Sequence[AnalyticsField],
        primary_model: str,
        fallback_models: Sequence[str] = (),
        lang: str = "ru",
        attempts: int = 3,
    ):
        self.client = client
        self.fields = list(fields)
        self.keys = [f.key for f in self.fields]
        self.primary_model = primary_model
        self.models = [primary_model, *(m for m in fallback_models if m != primary_model)]
        self.lang = lang
        self.attempts = attempts

    async def analyze(self, session: Session) -> AnalysisRecord:
        prompt = build_analysis_prompt(self.fields, session, self.lang)
        for model in self.models:
            try:
                values = await self._try_model(model, prompt)
            except CompletionError as e:
                logger.warning("Analyzer request failed for %s: %s", model, e.message)
                continue
            if values is None:
                continue
            if model != self.primary_model:
                logger.info("Analyzer fallback model used for %s: %s", session.persona_id, model)
            return AnalysisRecord(
                persona_id=session.persona_id,
                segment_id=session.segment_id,
                values={key: sanitize_value(values.get(key, "")) for key in self.keys},
                model=model,
            )

        logger.warning("Analyzer response missing after all fallbacks for %s, writing empty row.", session.persona_id)
        return AnalysisRecord(
            persona_id=session.persona_id,
            segment_id=session.segment_id,
            values={key: "" for key in self.keys},
        )

    async def _try_model(self, model: str, prompt: str) -> dict[str, str] | None:
        content = await self._request(model, prompt, self.attempts)
        if not content:
            logger.warning("Analyzer response missing for %s, trying fallback.", model)
            return None
        try:
            return parse_analysis_record(content, self.keys)
        except ExtractionError as e:
            logger.warning("Analyzer parse failed for %s, retrying once: %s", model, e.message)

        loose_candidates = []
        try:
            retry_content = await self._request(model, with_reminder(prompt), 1)
        except CompletionError as e:
            logger.warning("Analyzer retry request failed for %s: %s", model, e.message)
            retry_content = ""
        if retry_content:
            try:
                return parse_analysis_record(retry_content, self.keys)
            except ExtractionError as e:
                logger.warning("Analyzer retry parse failed for %s: %s", model, e.message)
            loose_candidates.append(retry_content)
        else:
            logger.warning("Analyzer retry response missing for %s.", model)
        loose_candidates.append(content)

        for text in loose_candidates:
            row = parse_loose_record(text, self.keys)
            if has_any_value(row):
                logger.warning("Analyzer fallback parse used for %s.", model)
                return row
        return None

    async def _request(self, model: str, prompt: str, attempts: int) -> str:
        request = CompletionRequest(
            model=model,
            turns=(Turn(Role.SYSTEM, prompt), Turn(Role.USER, analysis_instruction(self.lang))),
            temperature=0,
            max_tokens=ANALYSIS_MAX_TOKENS,
        )
        for attempt in range(1, attempts + 1):
            result = await self.client.complete(request)
            if result.text:
                return result.text
            logger.warning("Analyzer response missing content for %s (attempt %d/%d).", model, attempt, attempts)
        return ""
