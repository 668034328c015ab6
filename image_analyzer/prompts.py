"""Assemble the instructions sent to the vision model."""

from __future__ import annotations

from collections.abc import Sequence

from .config import AppConfig, ToneOption
from .fields import OutputFieldSpec

TONE_PROMPTS: dict[ToneOption, str] = {
    ToneOption.NEUTRAL: "Use a balanced and objective tone.",
    ToneOption.PROFESSIONAL: "Use a formal, business-appropriate tone.",
    ToneOption.CASUAL: "Use a friendly, conversational tone.",
    ToneOption.CREATIVE: "Use an imaginative, expressive tone.",
    ToneOption.TECHNICAL: "Use a detailed, precise, and technical tone.",
    ToneOption.MARKETING: "Use a persuasive, engaging, marketing-focused tone.",
}

FIELD_HEADER = "Generate the following fields:"
EMPTY_FIELDS_INSTRUCTION = (
    "Leave any field that was not requested as an empty string or an empty array."
)
USER_PROMPT = "Analyze this image and extract structured metadata for all requested fields."


def tone_directive(config: AppConfig) -> str:
    if config.tone == ToneOption.CUSTOM:
        return (config.custom_tone or "").strip()
    return TONE_PROMPTS[config.tone]


def field_lines(config: AppConfig) -> list[str]:
    """One ``- name: instruction`` line per enabled field, in canonical order."""
    return [f"- {spec.name}: {config.instruction_for(spec.name)}" for spec in config.active_fields()]


def build_directive(config: AppConfig) -> str:
    """Return the system directive for ``config``.

    Sections are the base system message, the tone, the requested fields and
    a closing instruction, separated by blank lines. Empty sections are
    skipped. The output depends only on ``config``.
    """
    sections = [
        config.system_message.strip(),
        tone_directive(config),
        "\n".join([FIELD_HEADER, *field_lines(config)]),
        EMPTY_FIELDS_INSTRUCTION,
    ]
    return "\n\n".join(section for section in sections if section)


def build_user_prompt(fields: Sequence[OutputFieldSpec]) -> str:
    """Return the user-turn text asking for a JSON object with every field key."""
    keys = ", ".join(
        f'"{spec.name}" ({"array of strings" if spec.is_list else "string"})' for spec in fields
    )
    return (
        f"{USER_PROMPT} Respond with a single JSON object with exactly these keys: {keys}. "
        "Never wrap the JSON in backticks or add commentary."
    )
