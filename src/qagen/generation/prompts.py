"""Prompt templates for question generation."""

from __future__ import annotations

import re

DEFAULT_QA_THEME = "it may cover several topics"

AGENT_QA_PROMPT = """I will give you a piece of text. About {{theme}}, study it and organise \
what you learned as follows:
1. Ask at most 25 questions.
2. Answer every question.
3. Answers must be detailed and complete; they may contain plain text, links, code, \
tables, formulas and other markdown elements.
4. Return the questions and answers in this format:

Q1: question.
A1: answer.
Q2:
A2:
...

My text: \"\"\"{{text}}\"\"\""""

_VARIABLE = re.compile(r"\{\{(\w+)\}\}")


def replace_variable(template: str, variables: dict[str, str]) -> str:
    """Substitute ``{{name}}`` placeholders; unknown placeholders stay as-is."""

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in variables:
            return variables[name]
        return match.group(0)

    return _VARIABLE.sub(_substitute, template)


def build_qa_prompt(*, text: str, custom_prompt: str | None, theme: str | None = None) -> str:
    """Job's custom template with the text substituted, or the default agent prompt."""

    if custom_prompt:
        return replace_variable(custom_prompt, {"text": text})
    return replace_variable(
        AGENT_QA_PROMPT,
        {"theme": theme or DEFAULT_QA_THEME, "text": text},
    )
