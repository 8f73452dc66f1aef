from __future__ import annotations

import math
import re
from typing import Iterable, List, Optional

from libs.core.models import LlmModel, SectionContent, SectionPlan

MIN_SECTION_TOKENS = 256

# Three sections per artifact keeps one generation inside a single request budget.
SECTION_PLANS = {
    "prd": ["executive-summary", "problem-and-objectives", "features-and-requirements"],
    "brief": ["executive-summary", "problem-and-objectives", "features-and-requirements"],
    "spec": ["architecture-overview", "data-models-and-api", "deployment-and-security"],
    "specs": ["architecture-overview", "data-models-and-api", "deployment-and-security"],
    "stories": ["epic-overview", "user-stories", "technical-tasks"],
    "artifacts": ["documentation", "configuration", "deployment-guide"],
    "handoff": ["project-summary", "setup-guide", "next-steps"],
    "doc": ["introduction", "main-content", "conclusion"],
}
DEFAULT_SECTION_PLAN = ["content"]

_PARAGRAPH_BREAK = re.compile(r"\n\n+")


def get_section_plan(artifact_type: str, phase_id: Optional[str] = None) -> List[str]:
    return list(SECTION_PLANS.get(artifact_type, DEFAULT_SECTION_PLAN))


def plan_sections(
    model: LlmModel, section_names: List[str], safety_ratio: float = 0.5
) -> List[SectionPlan]:
    cap = max(MIN_SECTION_TOKENS, math.floor(model.max_output_tokens * safety_ratio))
    per_section = max(MIN_SECTION_TOKENS, math.floor(cap / max(1, len(section_names))))
    return [SectionPlan(name=name, max_tokens=per_section) for name in section_names]


def estimate_token_count(text: str) -> int:
    return math.ceil(len(text) / 4)


def merge_section_content(sections: Iterable[SectionContent], separator: str = "\n\n") -> str:
    return separator.join(f"## {section.name}\n\n{section.content}" for section in sections)


def split_large_section(content: str, max_tokens: int) -> List[str]:
    if estimate_token_count(content) <= max_tokens:
        return [content]

    chunks: List[str] = []
    current = ""
    current_tokens = 0
    for paragraph in _PARAGRAPH_BREAK.split(content):
        paragraph_tokens = estimate_token_count(paragraph)
        if current_tokens + paragraph_tokens > max_tokens and current:
            chunks.append(current.strip())
            current = paragraph
            current_tokens = paragraph_tokens
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph
            current_tokens += paragraph_tokens
    if current:
        chunks.append(current.strip())
    return chunks


def calculate_optimal_chunk_size(
    model: LlmModel, section_count: int, safety_ratio: float = 0.4
) -> int:
    available = model.max_output_tokens * safety_ratio
    per_section = math.floor(available / max(1, section_count))
    return min(per_section, math.floor(model.max_output_tokens * 0.8))


def validate_section_plan(plan: List[SectionPlan], model: LlmModel) -> List[SectionPlan]:
    ceiling = model.max_output_tokens - 500
    return [
        section.model_copy(update={"max_tokens": min(section.max_tokens, ceiling)})
        for section in plan
    ]
