"""Consolidated statements for groups of near-duplicate responses.

Classes:
    GroupResponse: Id and text of one group member.
    ConsolidationInput: A similarity group with the texts of its members.
    ConsolidationOutput: Synthesized statement plus the audit trail of what it replaced.

Functions:
    format_combined_responses(responses): Render "id: text | id: text" audit strings.
    filter_eligible_groups(groups): Keep groups with at least two members.
    synthesize_statement(generator, texts): Ask the text generator for one neutral statement.
    consolidate_groups(generator, groups): Synthesize every eligible group concurrently.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

from conversation_analysis.core.errors import ProviderError
from conversation_analysis.services.openai_client import TextGenerator

_LOGGER = logging.getLogger(__name__)

PROMPT_VERSION = "v1.0"
SYNTHESIS_TEMPERATURE = 0.3

SYNTHESIS_SYSTEM_PROMPT = (
    "You consolidate similar participant responses while preserving every distinct point. "
    "You never add new information or opinions."
)

SYNTHESIS_PROMPT = """You are consolidating similar participant responses into a single statement.

These responses all express similar ideas:
{responses}

Write one consolidated statement that:
1. Preserves ALL distinct points made across the responses
2. Uses clear, neutral language
3. Does NOT add new information, opinions, or interpretations
4. Keeps the original sentiment and meaning
5. Is concise but complete (1-3 sentences)

Respond in JSON format:
{{"statement": "The consolidated statement here"}}"""


@dataclass(slots=True)
class GroupResponse:
    id: UUID
    text: str


@dataclass(slots=True)
class ConsolidationInput:
    group_id: UUID
    cluster_index: int
    representative_id: UUID
    responses: list[GroupResponse]


@dataclass(slots=True)
class ConsolidationOutput:
    group_id: UUID
    statement: str
    combined_response_ids: list[UUID]
    combined_responses: str
    used_fallback: bool = False


def format_combined_responses(responses: Sequence[GroupResponse]) -> str:
    return " | ".join(f"{response.id}: {response.text}" for response in responses)


def filter_eligible_groups(groups: Sequence[ConsolidationInput]) -> list[ConsolidationInput]:
    return [group for group in groups if len(group.responses) >= 2]


def _build_output(group: ConsolidationInput, statement: str, *, used_fallback: bool = False) -> ConsolidationOutput:
    return ConsolidationOutput(
        group_id=group.group_id,
        statement=statement,
        combined_response_ids=[response.id for response in group.responses],
        combined_responses=format_combined_responses(group.responses),
        used_fallback=used_fallback,
    )


def _parse_statement(content: str) -> str:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ProviderError(f"Synthesis output is not JSON: {content[:80]!r}") from exc
    statement = data.get("statement") if isinstance(data, dict) else None
    if not isinstance(statement, str) or not statement.strip():
        raise ProviderError("Synthesis output has no statement")
    return statement.strip()


async def synthesize_statement(
    generator: TextGenerator,
    texts: Sequence[str],
    *,
    temperature: float = SYNTHESIS_TEMPERATURE,
) -> str:
    """Return one statement covering ``texts``.

    Zero texts yield an empty string and a single text is returned unchanged without a
    provider call. Provider failures and malformed output raise ProviderError.
    """

    if not texts:
        return ""
    if len(texts) == 1:
        return texts[0]

    numbered = "\n".join(f'{idx}. "{text}"' for idx, text in enumerate(texts, start=1))
    content = await generator.generate(
        SYNTHESIS_PROMPT.format(responses=numbered),
        system_prompt=SYNTHESIS_SYSTEM_PROMPT,
        temperature=temperature,
        json_mode=True,
    )
    return _parse_statement(content)


async def consolidate_groups(
    generator: TextGenerator,
    groups: Sequence[ConsolidationInput],
    *,
    temperature: float = SYNTHESIS_TEMPERATURE,
) -> list[ConsolidationOutput]:
    """Synthesize a statement for every eligible group, falling back per group on failure.

    Outputs keep the order of the eligible groups. A group whose synthesis fails gets its
    first member's text as the statement; other groups are unaffected.
    """

    eligible = filter_eligible_groups(groups)
    if not eligible:
        return []

    results = await asyncio.gather(
        *(
            synthesize_statement(generator, [response.text for response in group.responses], temperature=temperature)
            for group in eligible
        ),
        return_exceptions=True,
    )

    outputs: list[ConsolidationOutput] = []
    failures = 0
    for group, result in zip(eligible, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            failures += 1
            _LOGGER.warning("Synthesis failed for group %s; using first response: %s", group.group_id, result)
            outputs.append(_build_output(group, group.responses[0].text, used_fallback=True))
        else:
            outputs.append(_build_output(group, result))

    _LOGGER.info("Consolidated %d groups (%d fallbacks)", len(outputs), failures)
    return outputs
