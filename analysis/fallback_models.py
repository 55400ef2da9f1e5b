import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_MODELS: tuple[str, ...] = (
    "mistralai/mistral-7b-instruct:free",
    "deepseek/deepseek-r1-0528:free",
    "meta-llama/llama-3.1-8b-instruct:free",
    "google/gemma-2-9b-it:free",
    "qwen/qwen-2.5-7b-instruct:free",
)

_MODEL_LIST = TypeAdapter(list[str])


class FallbackModelsFile(BaseModel):
    models: list[str] = Field(min_length=1)


@dataclass(frozen=True)
class FallbackModels:
    models: tuple[str, ...]
    source: str  # "file" or "default"


def normalize_models(models: Iterable[str], primary_model: str | None = None) -> tuple[str, ...]:
    """Trim, drop blanks and the primary model, de-duplicate case-insensitively."""
    seen: set[str] = set()
    normalized = []
    for model in models:
        trimmed = model.strip()
        if not trimmed or trimmed == primary_model:
            continue
        key = trimmed.lower()
        if key in seen:
            continue
        seen.add(key)
        normalized.append(trimmed)
    return tuple(normalized)


def _parse_models(raw: str) -> Sequence[str]:
    data = json.loads(raw)
    if isinstance(data, list):
        models = _MODEL_LIST.validate_python(data)
        if not models:
            raise ValueError("fallback model list is empty")
        return models
    return FallbackModelsFile.model_validate(data).models


def load_fallback_models(path: str | Path, primary_model: str | None = None) -> FallbackModels:
    """Read a JSON list or {"models": [...]}; any problem falls back to DEFAULT_FALLBACK_MODELS."""
    try:
        models = _parse_models(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return FallbackModels(normalize_models(DEFAULT_FALLBACK_MODELS, primary_model), "default")
    except (OSError, ValueError, ValidationError) as e:
        logger.warning("Ignoring fallback models file %s: %s", path, e)
        return FallbackModels(normalize_models(DEFAULT_FALLBACK_MODELS, primary_model), "default")
    return FallbackModels(normalize_models(models, primary_model), "file")
