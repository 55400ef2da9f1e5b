from enum import StrEnum

import tomli
from pydantic import BaseModel, Field, ValidationError, field_validator

from core.errors import ConfigurationError


class InterviewerMode(StrEnum):
    SCRIPT = "script"
    LLM = "llm"


class LLMConfig(BaseModel):
    base_url: str = "https://openrouter.ai/api/v1"
    api_key_env: str = "OPENROUTER_API_KEY"
    referer_env: str = "OPENROUTER_REFERER"
    title_env: str = "OPENROUTER_TITLE"
    timeout_s: float = 60.0
    max_retries: int = Field(default=6, ge=0)
    initial_backoff_s: float = Field(default=2.0, ge=0)


class TurnRetryConfig(BaseModel):
    interviewer_attempts: int = Field(default=3, ge=1)
    interviewer_delay_s: float = 1.0
    respondent_attempts: int = Field(default=5, ge=1)
    respondent_delay_s: float = 1.0
    analysis_attempts: int = Field(default=3, ge=1)


class ProjectMeta(BaseModel):
    project_name: str = Field(min_length=1)
    description: str = Field(min_length=1)


class RunSettings(BaseModel):
    iterations: int = Field(default=10, gt=0)
    concurrency: int = Field(default=3, gt=0)
    lang: str = "ru"

    @field_validator("lang", mode="before")
    @classmethod
    def _default_lang(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "ru"
        return value.strip() if isinstance(value, str) else value


class ModelsConfig(BaseModel):
    generator: str = Field(min_length=1)
    interviewer: str = Field(min_length=1)
    respondent: str = Field(min_length=1)
    analyzer: str = Field(min_length=1)
    advisor: str | None = None


class Segment(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    weight: float = Field(ge=0, le=1)
    traits: list[str] = []
    tooling: list[str] | None = None
    pain_points: list[str] | None = None
    cadence: str | None = None


class InterviewFlow(BaseModel):
    context: str = Field(min_length=1)
    script: list[str] = Field(min_length=1)
    interviewer_mode: InterviewerMode = InterviewerMode.SCRIPT

    @field_validator("script")
    @classmethod
    def _non_empty_steps(cls, steps: list[str]) -> list[str]:
        if any(not step.strip() for step in steps):
            raise ValueError("script steps must be non-empty")
        return steps


class AnalyticsField(BaseModel):
    key: str = Field(min_length=1)
    description: str = Field(min_length=1)


class PathsConfig(BaseModel):
    output_dir: str = "output"
    prompts_dir: str = "input"
    fallback_models_file: str = "config/fallback-models.json"


class Config(BaseModel):
    llm: LLMConfig = LLMConfig()
    retries: TurnRetryConfig = TurnRetryConfig()
    paths: PathsConfig = PathsConfig()
    meta: ProjectMeta
    settings: RunSettings = RunSettings()
    models: ModelsConfig
    segments: list[Segment] = Field(min_length=1)
    interview_flow: InterviewFlow
    analytics_schema: list[AnalyticsField] = Field(min_length=1)

    @property
    def field_keys(self) -> list[str]:
        return [field.key for field in self.analytics_schema]


def load_config(path: str = "config/default.toml") -> Config:
    """Load config from TOML file, validate with Pydantic.

    Raises ConfigurationError for unreadable TOML or schema violations.
    """
    try:
        with open(path, "rb") as f:
            data = tomli.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config {path}: {e}") from e
    except tomli.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e
    try:
        return Config(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Config validation failed for {path}:\n{e}", {"path": path}) from e
