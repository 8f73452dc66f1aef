from __future__ import annotations

import json
from typing import Sequence

from .models import SectionContent, SectionRequest

PREVIOUS_SECTION_SUMMARY_CHARS = 1200

_SECTION_GUIDELINES = (
    "Guidelines:\n"
    "- Use markdown formatting\n"
    "- Be thorough and detailed\n"
    "- Include code examples where appropriate\n"
    "- Maintain consistent style throughout\n"
    "- Focus on actionable, technical content"
)


def _previous_sections_block(sections: Sequence[SectionContent]) -> str:
    joined = "\n\n".join(f"## {section.name}\n{section.content}" for section in sections)
    return joined or "No previous sections."


def section_system_prompt(request: SectionRequest) -> str:
    instructions = (
        request.section_instructions
        or "Generate comprehensive, detailed content for this section."
    )
    return (
        f"You are an expert technical writer creating a {request.artifact_type} document.\n"
        f'Your task is to generate the "{request.section_name}" section.\n\n'
        "Context from previous sections:\n"
        f"{_previous_sections_block(request.previous_sections)}\n\n"
        "Current section requirements:\n"
        f"{instructions}\n\n"
        f"{_SECTION_GUIDELINES}"
    )


def section_user_prompt(request: SectionRequest) -> str:
    questions = ""
    if request.section_questions:
        bullets = "\n".join(f"- {question}" for question in request.section_questions)
        questions = f"Answer these questions based on the project context:\n{bullets}"
    return (
        f'Please generate the "{request.section_name}" section for this {request.artifact_type}.\n\n'
        f"Project: {request.project_context.get('title', '')}\n"
        f"Description: {request.project_context.get('description', '')}\n\n"
        f"{questions}\n\n"
        "Generate the section now:"
    )


def summarize_section(content: str, limit: int = PREVIOUS_SECTION_SUMMARY_CHARS) -> str:
    text = content.strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + " ..."


def phase_section_system_prompt(
    *,
    section_name: str,
    phase_id: str,
    project_title: str,
    project_description: str,
    section_instructions: str,
) -> str:
    return (
        "You are an expert technical writer creating project documentation.\n"
        f'Generate the "{section_name}" section for a {phase_id} document.\n\n'
        f"Project: {project_title}\n"
        f"Description: {project_description}\n\n"
        f"{section_instructions}\n\n"
        "Requirements:\n"
        "- Use markdown formatting\n"
        "- Be thorough and detailed\n"
        "- Include specific, actionable content\n"
        "- Reference the project context throughout"
    )


def phase_section_user_prompt(
    *,
    section_name: str,
    section_questions: Sequence[str],
    previous_sections: Sequence[SectionContent],
) -> str:
    parts = []
    if previous_sections:
        summaries = "\n\n".join(
            f"## {section.name}\n{summarize_section(section.content)}" for section in previous_sections
        )
        parts.append(f"Previous sections for context:\n{summaries}")
    if section_questions:
        bullets = "\n".join(f"- {question}" for question in section_questions)
        parts.append(f"Address these points:\n{bullets}")
    parts.append(f'Generate the "{section_name}" section now:')
    return "\n\n".join(parts)


def continuation_prompt(system_prompt: str, so_far: str) -> str:
    return (
        f"{system_prompt}\n\n"
        "Continue from the last sentence. Do not repeat content. Use markdown and continue "
        "exactly where you left off.\n\n"
        f"Current content:\n{so_far}"
    )


def critique_prompt(section_name: str, project_title: str, content: str) -> str:
    return (
        f'Review this "{section_name}" section for a project called "{project_title}".\n\n'
        f"Content to review:\n{content}\n\n"
        "Analyze for:\n"
        "1. Completeness - are all key points covered?\n"
        "2. Clarity - is the content clear and actionable?\n"
        "3. Consistency - does it align with the project description?\n"
        "4. Quality - is it detailed enough for a handoff document?\n\n"
        "If improvements are needed, provide the improved version.\n"
        'If the content is sufficient, respond with "APPROVED" followed by the original content.'
    )


def questions_prompt(
    *,
    phase_id: str,
    phase_title: str,
    project_title: str,
    project_description: str,
    count: int,
    minimum: int,
) -> str:
    envelope = json.dumps(
        {"questions": [{"text": "Question text?", "required": True}]}, ensure_ascii=False
    )
    return (
        "You are a product analyst preparing clarifying questions for a software project.\n"
        f"Phase: {phase_title} ({phase_id})\n"
        f"Project Title: {project_title}\n"
        f"Project Description: {project_description}\n\n"
        f"Write {count} clarifying questions (at least {minimum}) that will help produce the "
        f"{phase_title}. Mark the questions that must be answered before generation as required.\n"
        "Return ONLY a JSON object with this exact shape, no prose, no markdown:\n"
        f"{envelope}"
    )


def answer_prompt(
    *,
    project_title: str,
    project_description: str,
    question_text: str,
    previous_answers: str,
) -> str:
    previous = f"Previous answers:\n{previous_answers}\n\n" if previous_answers else ""
    return (
        "You are helping answer questions for a software project.\n\n"
        f"Project Title: {project_title}\n"
        f"Project Description: {project_description}\n\n"
        f"{previous}"
        f"Question: {question_text}\n\n"
        "Provide a clear, concise answer based on the project context. Be specific and actionable."
    )


def batch_answer_prompt(
    *,
    project_title: str,
    project_description: str,
    question_text: str,
    previous_answers: str,
) -> str:
    previous = f"Previous answers in this batch:\n{previous_answers}\n\n" if previous_answers else ""
    return (
        "You are helping answer questions for a software project.\n\n"
        f"Project Title: {project_title}\n"
        f"Project Description: {project_description}\n\n"
        f"{previous}"
        f"Question: {question_text}\n\n"
        "Provide a clear, concise answer based on the project context and maintain consistency "
        "with previous answers. Be specific and actionable."
    )
