import asyncio
import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Protocol

from core.config import Config, InterviewerMode
from core.types import Persona, Session
from interview.session import SessionRunner, segment_notes_for
from interview.store import SessionStore
from llm.client import CompletionClient
from llm.prompts import load_prompt

logger = logging.getLogger(__name__)


class Runner(Protocol):
    async def run(self) -> Session: ...


RunnerFactory = Callable[[Persona], Runner]


class BatchScheduler:
    """Runs pending personas through session runners under a concurrency cap.

    Personas whose session already exists in the store are skipped, so an
    interrupted batch can simply be started again. Each session is persisted
    before its slot is released. The first failure stops admission of new
    personas; sessions already running are allowed to finish and are kept,
    then that first error is raised.
    """

    def __init__(self, store: SessionStore, runner_factory: RunnerFactory):
        self.store = store
        self.runner_factory = runner_factory

    async def run_batch(self, personas: Sequence[Persona], concurrency: int) -> list[Session]:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        completed = await self.store.completed_persona_ids()
        pending: list[Persona] = []
        seen: set[str] = set()
        for persona in personas:
            if persona.id in completed or persona.id in seen:
                continue
            seen.add(persona.id)
            pending.append(persona)

        logger.info("Simulating %d interviews (skipping %d).", len(pending), len(personas) - len(pending))

        semaphore = asyncio.Semaphore(concurrency)
        sessions: list[Session] = []
        errors: list[BaseException] = []

        async def run_one(persona: Persona) -> None:
            async with semaphore:
                if errors:
                    return
                try:
                    session = await self.runner_factory(persona).run()
                    await self.store.write(session)
                except Exception as e:
                    logger.error("Interview failed for persona %s: %s", persona.id, e)
                    errors.append(e)
                    return
                sessions.append(session)

        await asyncio.gather(*(run_one(p) for p in pending))

        if errors:
            raise errors[0]
        logger.info("Simulation finished: %d interviews saved.", len(sessions))
        return sessions


async def simulate_interviews(
    config: Config,
    client: CompletionClient,
    store: SessionStore,
    personas: Sequence[Persona],
    prompts_dir: str | Path | None = None,
    interviewer_mode: InterviewerMode | None = None,
) -> list[Session]:
    prompts_dir = prompts_dir or config.paths.prompts_dir
    respondent_prompt = load_prompt(prompts_dir, "respondent")
    interviewer_prompt = load_prompt(prompts_dir, "interviewer")
    segments = {s.id: s for s in config.segments}

    def make_runner(persona: Persona) -> SessionRunner:
        return SessionRunner(
            client=client,
            persona=persona,
            config=config,
            respondent_prompt=respondent_prompt,
            interviewer_prompt=interviewer_prompt,
            interviewer_mode=interviewer_mode,
            segment_notes=segment_notes_for(segments.get(persona.segment_id)),
        )

    scheduler = BatchScheduler(store, make_runner)
    return await scheduler.run_batch(personas, config.settings.concurrency)
