import pytest

from core.config import Config, InterviewerMode, LLMConfig, TurnRetryConfig, load_config
from core.errors import ConfigurationError


def test_load_default_config(config):
    assert isinstance(config, Config)
    assert config.meta.project_name == "Habit tracker for remote teams"
    assert config.settings.concurrency == 3


def test_config_defaults():
    llm = LLMConfig()
    assert llm.base_url == "https://openrouter.ai/api/v1"
    assert llm.api_key_env == "OPENROUTER_API_KEY"
    assert llm.max_retries == 6
    assert llm.initial_backoff_s == 2.0

    retries = TurnRetryConfig()
    assert retries.interviewer_attempts == 3
    assert retries.respondent_attempts == 5
    assert retries.analysis_attempts == 3


def test_config_segments_and_schema(config):
    assert [s.id for s in config.segments] == ["team-lead", "freelancer", "engineer"]
    assert config.segments[0].tooling == ["Slack", "Jira"]
    assert config.segments[2].pain_points is None
    assert config.field_keys == ["main_pain", "current_tools", "willingness_to_pay"]


def test_config_interview_flow(config):
    assert config.interview_flow.interviewer_mode == InterviewerMode.SCRIPT
    assert len(config.interview_flow.script) == 4


def test_temp_config(temp_config):
    assert temp_config.meta.project_name == "Meal kits"
    assert temp_config.interview_flow.interviewer_mode == InterviewerMode.LLM
    assert temp_config.retries.respondent_attempts == 2
    assert temp_config.retries.interviewer_attempts == 3
    assert temp_config.paths.output_dir == "output"


def test_blank_lang_defaults_to_ru(temp_config):
    assert temp_config.settings.lang == "ru"


def test_invalid_toml_raises(tmp_path):
    path = tmp_path / "broken.toml"
    path.write_text("[meta\nproject_name = ")
    with pytest.raises(ConfigurationError, match="Invalid TOML"):
        load_config(str(path))


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigurationError, match="Cannot read config"):
        load_config(str(tmp_path / "nope.toml"))


def test_schema_violation_raises(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text('[meta]\nproject_name = "x"\ndescription = "y"\n')
    with pytest.raises(ConfigurationError, match="validation failed"):
        load_config(str(path))


def test_empty_script_step_rejected(config):
    data = config.model_dump()
    data["interview_flow"]["script"] = ["Ask this", "   "]
    with pytest.raises(ValueError):
        Config(**data)


def test_empty_script_rejected(config):
    data = config.model_dump()
    data["interview_flow"]["script"] = []
    with pytest.raises(ValueError):
        Config(**data)
