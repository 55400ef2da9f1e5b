import json
import logging
from pathlib import Path
from typing import Any

import aiofiles

from core.config import Config
from core.errors import ConfigurationError, ContentMissingError
from core.types import CompletionRequest, Role, Turn
from llm.client import CompletionClient

logger = logging.getLogger(__name__)

DEFAULT_ADVICE_MODEL = "deepseek/deepseek-r1-0528:free"
ADVICE_FILE = "advice.md"
ADVICE_MAX_TOKENS = 500
PREVIEW_LINES = 12


def run_parameters(config: Config) -> dict[str, Any]:
    return {
        "meta": config.meta.model_dump(),
        "settings": config.settings.model_dump(),
        "segments": [s.model_dump(exclude_none=True) for s in config.segments],
        "interview_flow": config.interview_flow.model_dump(mode="json"),
        "analytics_schema": [f.model_dump() for f in config.analytics_schema],
        "models": config.models.model_dump(exclude_none=True),
    }


def build_advice_prompt(config: Config, summary: Any, analysis_preview: str) -> str:
    lang = config.settings.lang
    if lang.lower().startswith("ru"):
        intro = [
            "Ты консультант по CustDev. Оцени результаты и предложи улучшения.",
            "Ответ должен быть кратким, структурированным, на русском.",
            "Дай 5-10 конкретных изменений в параметрах запуска "
            "(сегменты, веса, вопросы, схема аналитики, итерации, режим интервьюера, модели).",
            "Если видно слабые места (мало сигналов, шум), укажи их.",
        ]
        labels = ("Параметры запуска:", "Summary.json:", "Фрагмент analysis.csv:")
    else:
        intro = [
            "You are a CustDev consultant. Review the results and propose improvements.",
            f"Respond concisely and in {lang}.",
            "Provide 5-10 concrete changes to run parameters "
            "(segments, weights, questions, analytics schema, iterations, interviewer mode, models).",
            "If you see weak signals or noise, call them out.",
        ]
        labels = ("Run parameters:", "Summary.json:", "Analysis.csv excerpt:")

    return "\n".join(
        [
            *intro,
            "",
            labels[0],
            json.dumps(run_parameters(config), ensure_ascii=False, indent=2),
            "",
            labels[1],
            json.dumps(summary, ensure_ascii=False, indent=2),
            "",
            labels[2],
            analysis_preview,
        ]
    )


async def _read_text(path: Path) -> str:
    if not path.is_file():
        raise ConfigurationError(f"{path.name} not found in {path.parent}; run the analyze stage first.")
    async with aiofiles.open(path, encoding="utf-8") as f:
        return await f.read()


async def generate_advice(
    config: Config,
    client: CompletionClient,
    output_dir: str | Path,
    model: str | None = None,
) -> Path:
    """Ask a consultant model for run improvements based on summary.json and analysis.csv; writes advice.md."""
    output_dir = Path(output_dir)
    summary = json.loads(await _read_text(output_dir / "summary.json"))
    preview = "\n".join((await _read_text(output_dir / "analysis.csv")).splitlines()[:PREVIEW_LINES])
    model = model or config.models.advisor or DEFAULT_ADVICE_MODEL

    logger.info("Requesting optimization advice from %s...", model)
    result = await client.complete(
        CompletionRequest(
            model=model,
            turns=(Turn(Role.SYSTEM, build_advice_prompt(config, summary, preview)),),
            temperature=0.2,
            max_tokens=ADVICE_MAX_TOKENS,
        )
    )
    if not result.text:
        raise ContentMissingError("advice", 1)

    path = output_dir / ADVICE_FILE
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(result.text)
    logger.info("Advice saved to %s", path)
    return path
