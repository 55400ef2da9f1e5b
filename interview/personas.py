import json
import logging
import math
import os
import re
from collections.abc import Sequence
from datetime import date
from pathlib import Path
from typing import Any

import aiofiles
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from core.config import Config, Segment
from core.errors import ConfigurationError, ExtractionError
from core.types import CompletionRequest, Persona, Role, Turn
from llm.client import CompletionClient
from llm.extract import parse_json_from_text
from llm.prompts import build_generator_prompt, load_prompt

logger = logging.getLogger(__name__)

PERSONAS_FILE = "personas.json"
_WRAPPER_KEYS = ("personas", "data", "items", "results")


class PersonaPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    segment_id: str = Field(alias="segmentId")
    name: str = Field(min_length=1)
    age: int = Field(gt=0)
    occupation: str = Field(min_length=1)
    bio: str = Field(min_length=1)
    hidden_traits: list[str] = Field(alias="hiddenTraits", min_length=1)

    @field_validator("id", "segment_id", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("hidden_traits", mode="before")
    @classmethod
    def _split_traits(cls, value: Any) -> Any:
        items = re.split(r"[,;]\s*", value) if isinstance(value, str) else value
        if isinstance(items, list):
            return [str(item).strip() for item in items if str(item).strip()]
        return items

    def to_persona(self) -> Persona:
        return Persona(
            id=self.id,
            segment_id=self.segment_id,
            name=self.name,
            age=self.age,
            occupation=self.occupation,
            bio=self.bio,
            hidden_traits=tuple(self.hidden_traits),
        )


_PERSONA_LIST = TypeAdapter(list[PersonaPayload])


def allocate_counts_by_weight(segments: Sequence[Segment], total: int) -> dict[str, int]:
    """Split ``total`` across segments proportionally to weight (largest remainder)."""
    weight_sum = sum(s.weight for s in segments)
    if weight_sum <= 0:
        raise ConfigurationError("Segment weights must sum to a positive value.")

    exact = {s.id: s.weight / weight_sum * total for s in segments}
    counts = {sid: math.floor(value) for sid, value in exact.items()}
    remaining = total - sum(counts.values())
    by_remainder = sorted(exact, key=lambda sid: exact[sid] - counts[sid], reverse=True)
    for sid in by_remainder[:remaining]:
        counts[sid] += 1
    return counts


def format_segment_plan(segments: Sequence[Segment], counts: dict[str, int]) -> str:
    lines = []
    for s in segments:
        line = f"- {s.id} ({s.name}): {counts.get(s.id, 0)} personas; traits: {', '.join(s.traits)}"
        if s.tooling:
            line += f"; tools: {', '.join(s.tooling)}"
        if s.pain_points:
            line += f"; pain points: {', '.join(s.pain_points)}"
        if s.cadence:
            line += f"; cadence: {s.cadence}"
        lines.append(line)
    return "\n".join(lines)


def _unwrap(parsed: Any) -> Any:
    if not isinstance(parsed, dict):
        return parsed
    for key in _WRAPPER_KEYS:
        if isinstance(parsed.get(key), list):
            return parsed[key]
    arrays = [v for v in parsed.values() if isinstance(v, list)]
    if len(arrays) == 1:
        return arrays[0]
    return parsed


def parse_personas(content: str) -> list[Persona]:
    try:
        parsed = parse_json_from_text(content)
    except ExtractionError as e:
        raise ExtractionError(f"Failed to parse persona JSON: {e.message}") from e

    try:
        payloads = _PERSONA_LIST.validate_python(_unwrap(parsed))
    except ValidationError as e:
        raise ExtractionError(f"Invalid persona payload: {e}") from e
    if not payloads:
        raise ExtractionError("Invalid persona payload: no personas returned")
    return [p.to_persona() for p in payloads]


async def generate_personas(
    config: Config,
    client: CompletionClient,
    output_dir: str | Path,
    template: str | None = None,
) -> list[Persona]:
    counts = allocate_counts_by_weight(config.segments, config.settings.iterations)
    template = template if template is not None else load_prompt(config.paths.prompts_dir, "generator")
    prompt = build_generator_prompt(
        template,
        config,
        format_segment_plan(config.segments, counts),
        date.today().isoformat(),
    )

    logger.info("Generating personas...")
    result = await client.complete(
        CompletionRequest(
            model=config.models.generator,
            turns=(Turn(Role.SYSTEM, prompt),),
            temperature=0.8,
        )
    )
    if not result.text:
        raise ExtractionError("LLM response did not include any content.")

    personas = parse_personas(result.text)
    os.makedirs(output_dir, exist_ok=True)
    path = Path(output_dir) / PERSONAS_FILE
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(json.dumps([p.to_dict() for p in personas], ensure_ascii=False, indent=2))
    logger.info("Saved %d personas to %s", len(personas), path)
    return personas


async def load_personas(output_dir: str | Path) -> list[Persona]:
    path = Path(output_dir) / PERSONAS_FILE
    if not path.is_file():
        raise ConfigurationError(f"No {PERSONAS_FILE} in {output_dir}; run without --skip-generate first.")
    async with aiofiles.open(path, encoding="utf-8") as f:
        raw = json.loads(await f.read())
    try:
        return [p.to_persona() for p in _PERSONA_LIST.validate_python(raw)]
    except ValidationError as e:
        raise ExtractionError(f"Invalid personas file {path}: {e}") from e
