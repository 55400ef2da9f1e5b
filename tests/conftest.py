from pathlib import Path

import pytest

from core.config import Config, load_config

DEFAULT_CONFIG = Path(__file__).resolve().parent.parent / "config" / "default.toml"


@pytest.fixture
def config() -> Config:
    """Load default config for tests."""
    return load_config(str(DEFAULT_CONFIG))


@pytest.fixture
def temp_config(tmp_path):
    """Create a temp config TOML for isolated tests."""
    toml_content = """
[meta]
project_name = "Meal kits"
description = "Weekly meal kit delivery for busy parents."

[settings]
iterations = 4
concurrency = 2
lang = ""

[models]
generator = "gen-model"
interviewer = "interviewer-model"
respondent = "respondent-model"
analyzer = "analyzer-model"

[[segments]]
id = "parents"
name = "Busy parents"
weight = 1.0
traits = ["two kids"]

[interview_flow]
context = "Talk about cooking at home."
interviewer_mode = "llm"
script = ["How often do you cook?", "What stops you?"]

[[analytics_schema]]
key = "pain"
description = "Main pain"

[retries]
respondent_attempts = 2
"""
    config_path = tmp_path / "test.toml"
    config_path.write_text(toml_content)
    return load_config(str(config_path))
