import json

import pytest

from analysis.advice import ADVICE_FILE, DEFAULT_ADVICE_MODEL, build_advice_prompt, generate_advice
from core.errors import ConfigurationError, ContentMissingError
from tests.fakes import FakeCompletionClient

SUMMARY = {"project": "Habit tracker for remote teams", "total_sessions": 2}
CSV_LINES = ["personaId,segmentId,main_pain"] + [f"p-{i:03d},team-lead,meetings" for i in range(1, 21)]


@pytest.fixture
def run_dir(tmp_path):
    (tmp_path / "summary.json").write_text(json.dumps(SUMMARY), encoding="utf-8")
    (tmp_path / "analysis.csv").write_text("\n".join(CSV_LINES) + "\n", encoding="utf-8")
    return tmp_path


@pytest.mark.asyncio
async def test_generate_advice_writes_file(config, run_dir):
    client = FakeCompletionClient(lambda request: "  1. Add a pricing question.  ")
    path = await generate_advice(config, client, run_dir)

    assert path == run_dir / ADVICE_FILE
    assert path.read_text(encoding="utf-8") == "1. Add a pricing question."
    request = client.requests[0]
    assert request.model == config.models.advisor
    assert request.temperature == 0.2
    assert request.max_tokens == 500

    prompt = request.turns[0].content
    assert "Run parameters:" in prompt
    assert '"total_sessions": 2' in prompt
    assert "p-011,team-lead,meetings" in prompt
    assert "p-012,team-lead,meetings" not in prompt
    assert "Tell me about the last time you tried to build a new work habit." in prompt


@pytest.mark.asyncio
async def test_model_override_and_default(config, run_dir):
    client = FakeCompletionClient(lambda request: "advice")
    await generate_advice(config, client, run_dir, model="custom/model")
    config.models.advisor = None
    await generate_advice(config, client, run_dir)
    assert [r.model for r in client.requests] == ["custom/model", DEFAULT_ADVICE_MODEL]


@pytest.mark.asyncio
async def test_empty_advice_raises(config, run_dir):
    client = FakeCompletionClient(lambda request: "")
    with pytest.raises(ContentMissingError):
        await generate_advice(config, client, run_dir)
    assert not (run_dir / ADVICE_FILE).exists()


@pytest.mark.asyncio
async def test_missing_analysis_outputs(config, tmp_path):
    client = FakeCompletionClient(lambda request: "advice")
    with pytest.raises(ConfigurationError, match="summary.json"):
        await generate_advice(config, client, tmp_path)
    assert client.requests == []


def test_russian_prompt(config):
    config.settings.lang = "ru"
    prompt = build_advice_prompt(config, SUMMARY, "personaId,segmentId")
    assert prompt.startswith("Ты консультант по CustDev.")
    assert "Фрагмент analysis.csv:" in prompt
    assert "Summary.json:" in prompt
