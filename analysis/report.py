import csv
import io
import json
import logging
import os
import re
from collections import Counter
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import aiofiles

from analysis.cascade import FallbackCascade
from analysis.fallback_models import load_fallback_models
from core.config import Config
from core.types import AnalysisRecord
from interview.store import SessionStore
from llm.client import CompletionClient

logger = logging.getLogger(__name__)


def split_items(value: str) -> list[str]:
    return [item.strip() for item in re.split(r"[,;]\s*", value) if item.strip()]


def top_items(records: Sequence[AnalysisRecord], key: str, limit: int = 3) -> list[str]:
    """Most frequent comma/semicolon separated items, case-insensitive, first spelling wins."""
    counts: Counter[str] = Counter()
    labels: dict[str, str] = {}
    for record in records:
        for item in split_items(record.values.get(key, "")):
            normalized = item.lower()
            counts[normalized] += 1
            labels.setdefault(normalized, item)
    return [labels[k] for k, _ in counts.most_common(limit)]


def build_summary(records: Sequence[AnalysisRecord], config: Config) -> dict[str, Any]:
    by_segment: dict[str, list[AnalysisRecord]] = {}
    for record in records:
        by_segment.setdefault(record.segment_id, []).append(record)

    per_segment = {
        segment_id: {
            "count": len(rows),
            "top_values": {key: top_items(rows, key) for key in config.field_keys},
        }
        for segment_id, rows in by_segment.items()
    }
    resolved_by = Counter(r.model or "unresolved" for r in records)
    return {
        "project": config.meta.project_name,
        "total_sessions": len(records),
        "segments": {s.id: len(by_segment.get(s.id, [])) for s in config.segments},
        "per_segment": per_segment,
        "resolved_by": dict(resolved_by),
    }


async def write_analysis_csv(output_dir: str | Path, records: Sequence[AnalysisRecord], keys: Sequence[str]) -> Path:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=["personaId", "segmentId", *keys], extrasaction="ignore")
    writer.writeheader()
    for record in records:
        writer.writerow(record.as_row())
    os.makedirs(output_dir, exist_ok=True)
    path = Path(output_dir) / "analysis.csv"
    async with aiofiles.open(path, "w", encoding="utf-8", newline="") as f:
        await f.write(buffer.getvalue())
    return path


async def write_summary(output_dir: str | Path, summary: dict[str, Any]) -> Path:
    os.makedirs(output_dir, exist_ok=True)
    path = Path(output_dir) / "summary.json"
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(json.dumps(summary, ensure_ascii=False, indent=2))
    return path


async def analyze_sessions(
    config: Config,
    client: CompletionClient,
    store: SessionStore,
    output_dir: str | Path,
) -> list[AnalysisRecord]:
    """Analyze every stored session, one record each, then write analysis.csv and summary.json."""
    sessions = await store.load_all()
    logger.info("Analyzing %d sessions...", len(sessions))

    fallback = load_fallback_models(config.paths.fallback_models_file, config.models.analyzer)
    if fallback.models:
        logger.info("Analyzer fallback models (%s): %s", fallback.source, ", ".join(fallback.models))

    cascade = FallbackCascade(
        client=client,
        fields=config.analytics_schema,
        primary_model=config.models.analyzer,
        fallback_models=fallback.models,
        lang=config.settings.lang,
        attempts=config.retries.analysis_attempts,
    )
    records = [await cascade.analyze(session) for session in sessions]

    csv_path = await write_analysis_csv(output_dir, records, config.field_keys)
    summary_path = await write_summary(output_dir, build_summary(records, config))
    logger.info("Analysis complete. CSV saved to %s", csv_path)
    logger.info("Summary saved to %s", summary_path)
    return records
