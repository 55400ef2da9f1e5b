import json
from collections.abc import Sequence
from pathlib import Path

from core.config import AnalyticsField, Config
from core.types import Persona, Session

RESPONDENT_PROMPT = """You are a real person taking part in a customer development interview.
Stay in character for the whole conversation.

Rules:
- Answer from your own experience, 1-3 sentences.
- Never mention that you are an AI or that this is a simulation.
- Let your hidden traits shape your answers without naming them."""

INTERVIEWER_PROMPT = """You are an experienced customer development interviewer.
You follow a fixed script but phrase each question naturally, building on what the respondent already said.

Rules:
- Ask exactly one question per turn.
- Keep the meaning of the scripted question.
- No commentary, no summaries, no greetings after the first question."""

GENERATOR_PROMPT = """You create realistic synthetic respondents for customer development interviews.
Each persona must feel like a specific person, with a concrete occupation and a short biography."""

INTERVIEWER_RETRY = "Ask the next question in one sentence. No commentary."
RESPONDENT_RETRY = "Please answer directly in 1-3 sentences."
ANALYSIS_REMINDER = "REMINDER: Respond ONLY with JSON matching the template. No extra text."

PROMPT_FILES = {
    "respondent": ("prompt-respondent.txt", RESPONDENT_PROMPT),
    "interviewer": ("prompt-interviewer.txt", INTERVIEWER_PROMPT),
    "generator": ("prompt-generator.txt", GENERATOR_PROMPT),
}


def load_prompt(prompts_dir: str | Path, name: str) -> str:
    """Read input/prompt-<name>.txt, falling back to the built-in template."""
    file_name, default = PROMPT_FILES[name]
    path = Path(prompts_dir) / file_name
    if path.is_file():
        return path.read_text(encoding="utf-8")
    return default


def build_respondent_system(
    template: str,
    context: str,
    lang: str,
    persona: Persona,
    segment_notes: Sequence[str] = (),
) -> str:
    parts = [
        template.strip(),
        "",
        context.strip(),
        "",
        f"Language: {lang}",
        "Respond only in this language.",
        f"Persona: {persona.name}",
        f"Bio: {persona.bio}",
        f"Hidden traits: {', '.join(persona.hidden_traits)}",
    ]
    if segment_notes:
        parts.append("Segment hints:")
        parts.extend(segment_notes)
    return "\n".join(parts)


def build_interviewer_system(template: str, lang: str, script: Sequence[str]) -> str:
    parts = [
        template.strip(),
        "",
        f"Language: {lang}",
        "Ask the next question in this language only.",
        "Script steps:",
    ]
    parts.extend(f"{i}. {step}" for i, step in enumerate(script, start=1))
    return "\n".join(parts)


def interviewer_instruction(step: str) -> str:
    return f"Next question from the script: {step}"


def build_json_template(fields: Sequence[AnalyticsField]) -> str:
    return json.dumps({f.key: "" for f in fields}, indent=2, ensure_ascii=False)


def build_analysis_prompt(fields: Sequence[AnalyticsField], session: Session, lang: str) -> str:
    """Analyst prompt: instructions, the literal JSON template, field descriptions, then the transcript."""
    field_lines = "\n".join(f"- {f.key}: {f.description}" for f in fields)
    transcript = "\n".join(f"{t.role.value.upper()}: {t.content}" for t in session.turns)
    return "\n".join(
        [
            "You are an analyst. Extract the following fields into a JSON object.",
            "Return ONLY valid JSON with string values for each key.",
            "If a field is unknown, return an empty string.",
            "Keep values concise (2-8 words). Use comma-separated lists for multiple items.",
            "Do not include markdown, tags, code fences, or extra commentary.",
            f"All values must be written in the language: {lang}.",
            "Keys must match the template exactly.",
            "If JSON is not possible, output plain text with one line per field in the form:",
            "key: value",
            "Use this exact JSON template and fill in values:",
            build_json_template(fields),
            "",
            "Fields:",
            field_lines,
            "",
            "Transcript:",
            transcript,
        ]
    )


def with_reminder(prompt: str) -> str:
    return f"{prompt}\n\n{ANALYSIS_REMINDER}"


def analysis_instruction(lang: str) -> str:
    if lang.lower().startswith("ru"):
        return "Верни только JSON по шаблону. Без комментариев."
    return f"Return only JSON in {lang}. No extra commentary."


def build_generator_prompt(template: str, config: Config, segment_plan: str, today: str) -> str:
    return "\n".join(
        [
            template.strip(),
            "",
            f"Project: {config.meta.project_name}",
            f"Description: {config.meta.description}",
            f"Date: {today}",
            f"Language: {config.settings.lang}",
            "Write all persona text fields in the specified language.",
            "",
            "Generate personas strictly as JSON array of objects with fields:",
            "id, segmentId, name, age, occupation, bio, hiddenTraits.",
            'Use string IDs like "p-001" and segmentId must match the segment id.',
            "hiddenTraits must be an array of strings.",
            "",
            "Segments and counts:",
            segment_plan,
        ]
    )
