import asyncio
import logging
import re
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from core.config import Config, InterviewerMode, Segment
from core.errors import AppError, ContentMissingError
from core.types import CompletionRequest, Persona, Role, Session, Turn
from llm.client import CompletionClient, Sleep
from llm.extract import sanitize_content
from llm.prompts import (
    INTERVIEWER_RETRY,
    RESPONDENT_RETRY,
    build_interviewer_system,
    build_respondent_system,
    interviewer_instruction,
)

logger = logging.getLogger(__name__)

INTERVIEWER_MAX_TOKENS = 120
RESPONDENT_MAX_TOKENS = 160


def segment_notes_for(segment: Segment | None) -> list[str]:
    if segment is None:
        return []
    notes = []
    if segment.tooling:
        notes.append(f"Preferred tools: {', '.join(segment.tooling)}")
    if segment.pain_points:
        notes.append(f"Common pain points: {', '.join(segment.pain_points)}")
    if segment.cadence:
        notes.append(f"Typical cadence: {segment.cadence}")
    return notes


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_session_id(persona_id: str, started_at: str) -> str:
    return re.sub(r"[^\w-]", "-", f"{persona_id}-{started_at}") + f"-{uuid.uuid4().hex[:6]}"


class SessionRunner:
    """Runs one scripted interview for one persona.

    Each script step produces an interviewer turn (role user) followed by a
    respondent turn (role assistant). Interviewer failures fall back to the
    literal script line; respondent failures end the session with an error.
    """

    def __init__(
        self,
        client: CompletionClient,
        persona: Persona,
        config: Config,
        respondent_prompt: str,
        interviewer_prompt: str,
        interviewer_mode: InterviewerMode | None = None,
        segment_notes: Sequence[str] = (),
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.persona = persona
        self.config = config
        self.script = list(config.interview_flow.script)
        self.mode = interviewer_mode or config.interview_flow.interviewer_mode
        self.retries = config.retries
        self._sleep = sleep
        lang = config.settings.lang
        self.respondent_system = build_respondent_system(
            respondent_prompt,
            config.interview_flow.context,
            lang,
            persona,
            segment_notes,
        )
        self.interviewer_system = build_interviewer_system(interviewer_prompt, lang, self.script)

    async def run(self) -> Session:
        started_at = _utc_now()
        turns: list[Turn] = []
        total = len(self.script)

        for index, step in enumerate(self.script, start=1):
            logger.info(
                "Interview %s (%s) question %d/%d.",
                self.persona.id,
                self.persona.segment_id,
                index,
                total,
            )
            question = await self._interviewer_turn(step, turns)
            turns.append(Turn(Role.USER, question))

            answer = await self._request_content(
                label="respondent",
                model=self.config.models.respondent,
                turns=[Turn(Role.SYSTEM, self.respondent_system), *turns],
                max_tokens=RESPONDENT_MAX_TOKENS,
                retry_prompt=RESPONDENT_RETRY,
                max_attempts=self.retries.respondent_attempts,
                delay_s=self.retries.respondent_delay_s,
            )
            turns.append(Turn(Role.ASSISTANT, answer))

        logger.info("Interview completed for persona %s (%s).", self.persona.id, self.persona.segment_id)
        return Session(
            id=make_session_id(self.persona.id, started_at),
            project=self.config.meta.project_name,
            persona_id=self.persona.id,
            segment_id=self.persona.segment_id,
            started_at=started_at,
            ended_at=_utc_now(),
            turns=tuple(turns),
        )

    async def _interviewer_turn(self, step: str, turns: list[Turn]) -> str:
        if self.mode != InterviewerMode.LLM:
            return step
        try:
            return await self._request_content(
                label="interviewer",
                model=self.config.models.interviewer,
                turns=[
                    Turn(Role.SYSTEM, self.interviewer_system),
                    *turns,
                    Turn(Role.USER, interviewer_instruction(step)),
                ],
                max_tokens=INTERVIEWER_MAX_TOKENS,
                retry_prompt=INTERVIEWER_RETRY,
                max_attempts=self.retries.interviewer_attempts,
                delay_s=self.retries.interviewer_delay_s,
            )
        except AppError as e:
            logger.warning("Interviewer fallback to script for %s: %s", self.persona.id, e.message)
            return step

    async def _request_content(
        self,
        label: str,
        model: str,
        turns: list[Turn],
        max_tokens: int,
        retry_prompt: str,
        max_attempts: int,
        delay_s: float,
    ) -> str:
        """Ask until the sanitized answer is non-empty; linear delay between attempts."""
        for attempt in range(1, max_attempts + 1):
            attempt_turns = turns if attempt == 1 else [*turns, Turn(Role.USER, retry_prompt)]
            result = await self.client.complete(
                CompletionRequest(model=model, turns=tuple(attempt_turns), max_tokens=max_tokens)
            )
            cleaned = sanitize_content(result.text)
            if cleaned:
                return cleaned
            logger.warning("%s response missing content (attempt %d/%d).", label, attempt, max_attempts)
            if attempt < max_attempts:
                await self._sleep(delay_s * attempt)
        raise ContentMissingError(label, max_attempts)
