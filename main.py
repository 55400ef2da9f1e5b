import asyncio
import logging
import re
import unicodedata
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx
import typer

from analysis import analyze_sessions, generate_advice
from core.config import Config, InterviewerMode, load_config
from core.errors import AppError
from core.logger import setup_logging
from core.progress import ProgressRelay, ProgressTracker
from interview import JsonSessionStore, generate_personas, load_personas, simulate_interviews
from interview.personas import PERSONAS_FILE
from llm.client import CompletionClient

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="custdev-sim",
    help="Synthetic customer development interviews: personas, interviews, analysis.",
    add_completion=False,
)


def slugify(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")


def build_run_label(run_name: str | None, tags: list[str], now: datetime | None = None) -> str:
    """``<UTC timestamp>__<run name>__<tags>``, empty parts omitted."""
    now = now or datetime.now(timezone.utc)
    parts = [now.strftime("%Y-%m-%d_%H-%M-%SZ")]
    name = slugify(run_name or "")
    if name:
        parts.append(name)
    tag_slug = "-".join(t for t in (slugify(tag) for tag in tags) if t)
    if tag_slug:
        parts.append(tag_slug)
    return "__".join(parts)


def estimate_requests(
    config: Config,
    mode: InterviewerMode,
    generate: bool,
    simulate: bool,
    analyze: bool,
    advise: bool = False,
) -> int:
    """Successful completions a clean run needs; the progress bar total."""
    iterations = config.settings.iterations
    per_step = 2 if mode == InterviewerMode.LLM else 1
    total = 1 if generate else 0
    if simulate:
        total += iterations * len(config.interview_flow.script) * per_step
    if analyze:
        total += iterations
    if advise:
        total += 1
    return total


async def run_pipeline(
    config: Config,
    output_dir: Path,
    generate: bool,
    simulate: bool,
    analyze: bool,
    advise: bool,
    interviewer_mode: InterviewerMode,
    check_key: bool,
    advice_model: str | None = None,
) -> None:
    relay = ProgressRelay()
    client = CompletionClient(config.llm, progress=relay)
    try:
        if check_key:
            try:
                status = await client.key_status()
                logger.info("Key status: %s", status.get("data", status))
            except httpx.HTTPError as e:
                logger.warning("Key status check failed: %s", e)

        tracker = ProgressTracker(estimate_requests(config, interviewer_mode, generate, simulate, analyze, advise))
        relay.attach(tracker)

        store = JsonSessionStore(output_dir)
        personas = []
        if generate:
            personas = await generate_personas(config, client, output_dir)
        elif simulate:
            personas = await load_personas(output_dir)

        if simulate:
            await simulate_interviews(config, client, store, personas, interviewer_mode=interviewer_mode)
        if analyze:
            await analyze_sessions(config, client, store, output_dir)
        if advise:
            await generate_advice(config, client, output_dir, model=advice_model)

        tracker.complete()
        logger.info("Run finished: %s (%d requests)", output_dir, relay.count)
    finally:
        relay.detach()
        await client.close()


@app.command()
def run(
    config_path: Path = typer.Option(Path("config/default.toml"), "--config", "-c", help="Project TOML file"),
    skip_generate: bool = typer.Option(False, "--skip-generate", help="Reuse personas.json"),
    skip_simulate: bool = typer.Option(False, "--skip-simulate", help="Do not run interviews"),
    skip_analyze: bool = typer.Option(False, "--skip-analyze", help="Do not analyze sessions"),
    skip_advice: bool = typer.Option(False, "--skip-advice", help="Skip post-run optimization advice"),
    advice_model: Optional[str] = typer.Option(None, "--advice-model", help="Model for optimization advice"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Base output directory"),
    run_name: Optional[str] = typer.Option(None, "--run-name", help="Human label for the run directory"),
    tags: list[str] = typer.Option([], "--tag", help="Run tag, repeatable"),
    interviewer_mode: Optional[InterviewerMode] = typer.Option(None, "--interviewer-mode"),
    lang: Optional[str] = typer.Option(None, "--lang", help="Override settings.lang"),
    check_key: bool = typer.Option(False, "--check-key", help="Log API key usage before the run"),
    resume: Optional[Path] = typer.Option(None, "--resume", help="Continue an existing run directory"),
) -> None:
    """Generate personas, simulate interviews, analyze them and ask for advice."""
    setup_logging()
    try:
        config = load_config(str(config_path))
    except AppError as e:
        logger.error("Fatal error: %s", e.message)
        raise typer.Exit(1) from e

    if lang is not None and lang.strip():
        config.settings.lang = lang.strip()
    mode = interviewer_mode or config.interview_flow.interviewer_mode

    if resume is not None:
        output_dir = resume
        if not skip_generate and (resume / PERSONAS_FILE).is_file():
            logger.info("Resuming %s with existing personas.", resume)
            skip_generate = True
    else:
        output_dir = (output or Path(config.paths.output_dir)) / build_run_label(run_name, tags)

    advise = not skip_advice
    if advise and skip_analyze:
        logger.warning("Advice skipped because the analyze stage was skipped.")
        advise = False

    setup_logging(output_dir)
    logger.info("Project %s, output %s, interviewer mode %s", config.meta.project_name, output_dir, mode.value)

    try:
        asyncio.run(
            run_pipeline(
                config,
                output_dir,
                generate=not skip_generate,
                simulate=not skip_simulate,
                analyze=not skip_analyze,
                advise=advise,
                interviewer_mode=mode,
                check_key=check_key,
                advice_model=advice_model,
            )
        )
    except AppError as e:
        logger.error("Fatal error: %s", e.message)
        raise typer.Exit(1) from e


if __name__ == "__main__":
    app()
