from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str

    def as_message(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class CompletionRequest:
    model: str
    turns: tuple[Turn, ...]
    temperature: float | None = None
    max_tokens: int | None = None

    def to_messages(self) -> list[dict[str, str]]:
        return [t.as_message() for t in self.turns]


@dataclass(frozen=True)
class Candidate:
    content: str | None
    reasoning: str | None = None  # some backends put the whole answer here

    @property
    def text(self) -> str:
        content = (self.content or "").strip()
        if content:
            return content
        return (self.reasoning or "").strip()


@dataclass(frozen=True)
class CompletionResult:
    candidates: tuple[Candidate, ...]

    @property
    def text(self) -> str:
        return self.candidates[0].text if self.candidates else ""


@dataclass(frozen=True)
class Persona:
    id: str
    segment_id: str
    name: str
    age: int
    occupation: str
    bio: str
    hidden_traits: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "segmentId": self.segment_id,
            "name": self.name,
            "age": self.age,
            "occupation": self.occupation,
            "bio": self.bio,
            "hiddenTraits": list(self.hidden_traits),
        }


@dataclass(frozen=True)
class Session:
    id: str
    project: str
    persona_id: str
    segment_id: str
    started_at: str
    ended_at: str
    turns: tuple[Turn, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectName": self.project,
            "personaId": self.persona_id,
            "segmentId": self.segment_id,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "messages": [t.as_message() for t in self.turns],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        return cls(
            id=str(data["id"]),
            project=str(data.get("projectName", "")),
            persona_id=str(data["personaId"]),
            segment_id=str(data.get("segmentId", "")),
            started_at=str(data.get("startedAt", "")),
            ended_at=str(data.get("endedAt", "")),
            turns=tuple(Turn(role=Role(m["role"]), content=m["content"]) for m in data["messages"]),
        )


@dataclass
class AnalysisRecord:
    persona_id: str
    segment_id: str
    values: dict[str, str] = field(default_factory=dict)
    model: str | None = None  # model that produced the values, None when nothing resolved

    def as_row(self) -> dict[str, str]:
        return {"personaId": self.persona_id, "segmentId": self.segment_id, **self.values}
