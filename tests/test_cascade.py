import json

import pytest

from analysis.cascade import (
    FallbackCascade,
    has_any_value,
    parse_analysis_record,
    parse_loose_record,
    sanitize_value,
)
from core.errors import CompletionError, ExtractionError
from llm.prompts import ANALYSIS_REMINDER
from tests.fakes import FakeCompletionClient, make_session

KEYS = ["main_pain", "current_tools", "willingness_to_pay"]


def make_cascade(config, client, fallbacks=("fallback-a", "fallback-b")):
    return FallbackCascade(
        client=client,
        fields=config.analytics_schema,
        primary_model="primary",
        fallback_models=fallbacks,
        lang="en",
        attempts=3,
    )


def payload(**values):
    return json.dumps({key: values.get(key, "") for key in KEYS})


@pytest.mark.asyncio
async def test_primary_json_resolves_immediately(config):
    client = FakeCompletionClient(lambda r: payload(main_pain="status meetings", current_tools="Slack, Jira"))
    record = await make_cascade(config, client).analyze(make_session())

    assert record.model == "primary"
    assert record.values == {"main_pain": "status meetings", "current_tools": "Slack, Jira", "willingness_to_pay": ""}
    assert len(client.requests) == 1
    request = client.requests[0]
    assert request.temperature == 0
    assert request.max_tokens == 250


@pytest.mark.asyncio
async def test_prose_primary_then_fallback_json(config):
    def reply(request):
        if request.model == "primary":
            return "I'm sorry, I can't produce that."
        return payload(main_pain="context switching", willingness_to_pay="maybe")

    client = FakeCompletionClient(reply)
    record = await make_cascade(config, client).analyze(make_session())

    assert record.model == "fallback-a"
    assert record.values["main_pain"] == "context switching"
    assert record.values["willingness_to_pay"] == "maybe"
    assert [r.model for r in client.requests] == ["primary", "primary", "fallback-a"]


@pytest.mark.asyncio
async def test_reminder_request_parses(config):
    client = FakeCompletionClient(["Here are my thoughts.", payload(main_pain="onboarding")])
    record = await make_cascade(config, client).analyze(make_session())

    assert record.model == "primary"
    assert record.values["main_pain"] == "onboarding"
    first_prompt = client.requests[0].turns[0].content
    second_prompt = client.requests[1].turns[0].content
    assert not first_prompt.endswith(ANALYSIS_REMINDER)
    assert second_prompt.endswith(ANALYSIS_REMINDER)


@pytest.mark.asyncio
async def test_loose_parse_on_reminder_output(config):
    text = "main_pain: status meetings\ncurrent_tools - Slack, Jira\nnothing else"
    client = FakeCompletionClient(lambda r: text)
    record = await make_cascade(config, client).analyze(make_session())

    assert record.model == "primary"
    assert record.values == {"main_pain": "status meetings", "current_tools": "Slack, Jira", "willingness_to_pay": ""}
    assert len(client.requests) == 2


@pytest.mark.asyncio
async def test_loose_parse_falls_back_to_first_output(config):
    client = FakeCompletionClient(["willingness_to_pay = yes", ""])
    record = await make_cascade(config, client).analyze(make_session())
    assert record.model == "primary"
    assert record.values["willingness_to_pay"] == "yes"


@pytest.mark.asyncio
async def test_empty_content_moves_to_next_model(config):
    def reply(request):
        return "" if request.model == "primary" else payload(main_pain="pricing")

    client = FakeCompletionClient(reply)
    record = await make_cascade(config, client).analyze(make_session())

    assert record.model == "fallback-a"
    assert [r.model for r in client.requests].count("primary") == 3


@pytest.mark.asyncio
async def test_completion_error_moves_to_next_model(config):
    def reply(request):
        if request.model == "primary":
            return CompletionError("model not found", status=404)
        return payload(main_pain="pricing")

    client = FakeCompletionClient(reply)
    record = await make_cascade(config, client).analyze(make_session())
    assert record.model == "fallback-a"


@pytest.mark.asyncio
async def test_all_models_fail_gives_empty_record(config):
    client = FakeCompletionClient(lambda r: CompletionError("overloaded", status=503))
    session = make_session("p-042", "engineer")
    record = await make_cascade(config, client).analyze(session)

    assert record.model is None
    assert record.persona_id == "p-042"
    assert record.segment_id == "engineer"
    assert record.values == {key: "" for key in KEYS}
    assert [r.model for r in client.requests] == ["primary", "fallback-a", "fallback-b"]


@pytest.mark.asyncio
async def test_primary_not_repeated_in_fallbacks(config):
    client = FakeCompletionClient(lambda r: CompletionError("down", status=500))
    await make_cascade(config, client, fallbacks=("primary", "other")).analyze(make_session())
    assert [r.model for r in client.requests] == ["primary", "other"]


@pytest.mark.asyncio
async def test_analysis_prompt_contents(config):
    client = FakeCompletionClient(lambda r: payload())
    await make_cascade(config, client).analyze(make_session())

    prompt = client.requests[0].turns[0].content
    assert '"main_pain": ""' in prompt
    assert "- current_tools: Tools the respondent uses today, comma separated" in prompt
    assert "USER: Which tools do you use to plan your day?" in prompt
    assert "ASSISTANT: Mostly Slack reminders and a paper notebook." in prompt
    assert "language: en" in prompt


def test_strict_parse_drops_unknown_keys_and_nulls():
    content = '```json\n{"main_pain": "pricing", "extra": "x", "current_tools": null, "willingness_to_pay": true}\n```'
    assert parse_analysis_record(content, KEYS) == {
        "main_pain": "pricing",
        "current_tools": "",
        "willingness_to_pay": "true",
    }


def test_strict_parse_rejects_non_scalar():
    with pytest.raises(ExtractionError, match="current_tools"):
        parse_analysis_record('{"main_pain": "x", "current_tools": ["Slack"]}', KEYS)


def test_strict_parse_rejects_array():
    with pytest.raises(ExtractionError, match="expected an object"):
        parse_analysis_record('[{"main_pain": "x"}]', KEYS)


def test_loose_parse_separators():
    text = "MAIN_PAIN — slow onboarding\ncurrent_tools – Notion\nwillingness_to_pay: no"
    assert parse_loose_record(text, KEYS) == {
        "main_pain": "slow onboarding",
        "current_tools": "Notion",
        "willingness_to_pay": "no",
    }
    assert not has_any_value(parse_loose_record("nothing useful", KEYS))


def test_sanitize_value():
    assert sanitize_value("From the answers: slow onboarding") == "slow onboarding"
    assert sanitize_value("maybe -> yes") == "yes"
    assert sanitize_value("Too many tools. The rest is fine") == "Too many tools"
    assert sanitize_value('He said "hates meetings" twice') == "hates meetings"
    assert sanitize_value("  plain   value ") == "plain value"


@pytest.mark.asyncio
async def test_strict_values_keep_decimals_and_colons(config):
    reply = payload(main_pain="Too many tools: Slack, Jira", willingness_to_pay="$9.99 per month")
    client = FakeCompletionClient(lambda r: reply)
    record = await make_cascade(config, client).analyze(make_session())

    assert record.values["willingness_to_pay"] == "$9.99 per month"
    assert record.values["main_pain"] == "Too many tools: Slack, Jira"


def test_sanitize_value_keeps_numbers():
    assert sanitize_value("2.5 hours a week. Mostly on Fridays") == "2.5 hours a week"
    assert sanitize_value("v1.2 release notes.") == "v1.2 release notes"
    assert sanitize_value("Priority: high") == "Priority: high"


def test_loose_parse_requires_whole_key_at_line_start():
    text = "value_metric: hours saved\nnotes: the metric - unclear"
    assert parse_loose_record(text, ["metric", "value_metric"]) == {"metric": "", "value_metric": "hours saved"}


def test_loose_parse_accepts_bullets_and_quotes():
    text = '- **main_pain**: onboarding\n"current_tools" = Notion'
    row = parse_loose_record(text, KEYS)
    assert row["main_pain"] == "onboarding"
    assert row["current_tools"] == "Notion"
