from __future__ import annotations

import re
from typing import Dict, List, Sequence

from pydantic import BaseModel

from .models import Question

PHASE_ORDER = ["brief", "prd", "specs", "stories", "artifacts", "handoff"]

# Handoff can be generated from earlier phases alone.
ANSWER_OPTIONAL_PHASES = {"handoff"}

PHASE_TITLES: Dict[str, str] = {
    "brief": "Project Brief",
    "prd": "Product Requirements Document",
    "specs": "Technical Specifications",
    "stories": "User Stories & Tasks",
    "artifacts": "Technical Artifacts",
    "handoff": "Project Handoff",
}

ARTIFACT_TYPES: Dict[str, str] = {
    "brief": "brief",
    "prd": "prd",
    "specs": "spec",
    "stories": "stories",
    "artifacts": "artifacts",
    "handoff": "handoff",
}

SECTION_INSTRUCTIONS: Dict[str, str] = {
    "executive-summary": "Provide a concise overview of the project goals, target users, and key deliverables.",
    "problem-and-objectives": (
        "Clearly articulate the problem this project solves and define specific, measurable goals "
        "with success criteria."
    ),
    "features-and-requirements": (
        "Outline the core features, functionality required, and any technical constraints or "
        "compliance requirements."
    ),
    "architecture-overview": "Describe the high-level system architecture, design patterns, and technology choices.",
    "data-models-and-api": "Define core data structures, entities, relationships, and API contracts.",
    "deployment-and-security": (
        "Describe deployment strategy, infrastructure, authentication, authorization, and security requirements."
    ),
    "epic-overview": "Provide an overview of the main epics and how they relate to project goals.",
    "user-stories": "List user stories with acceptance criteria in proper format.",
    "technical-tasks": "Break down user stories into technical implementation tasks with dependencies.",
    "documentation": "Generate API documentation and database schema documentation.",
    "configuration": "Provide configuration files and infrastructure setup.",
    "deployment-guide": "Create step-by-step deployment instructions.",
    "project-summary": "Summarize the project structure, key files, and architecture.",
    "setup-guide": "Provide environment setup and development guide instructions.",
    "next-steps": "List recommended next steps and priorities for development.",
}

SECTION_KEYWORDS: Dict[str, List[str]] = {
    "executive-summary": ["goal", "problem", "success"],
    "problem-and-objectives": ["goal", "problem", "objective"],
    "features-and-requirements": ["feature", "requirement", "constraint"],
    "architecture-overview": ["architecture", "cloud", "infrastructure"],
    "data-models-and-api": ["data", "database", "schema", "api"],
    "deployment-and-security": ["deployment", "security", "auth"],
    "epic-overview": ["goal", "mvp", "feature"],
    "user-stories": ["user", "persona", "feature"],
    "technical-tasks": ["task", "dependency", "implementation"],
    "documentation": ["documentation", "api", "schema"],
    "configuration": ["configuration", "environment", "setup"],
    "deployment-guide": ["deployment", "release", "infrastructure"],
    "project-summary": ["summary", "architecture", "structure"],
    "setup-guide": ["setup", "environment", "install"],
    "next-steps": ["next", "roadmap", "follow-up"],
}


class StaticQuestion(BaseModel):
    text: str
    required: bool = False


class QuestionRange(BaseModel):
    min: int
    max: int


PHASE_QUESTIONS: Dict[str, List[StaticQuestion]] = {
    "brief": [
        StaticQuestion(text="What is the primary goal of this project? What problem does it solve?", required=True),
        StaticQuestion(text="Who are the target users or audience for this product?", required=True),
        StaticQuestion(text="What are the key features or functionalities you want to include?", required=True),
        StaticQuestion(
            text="Are there any specific technical constraints or requirements? (e.g., integrations, compliance)"
        ),
        StaticQuestion(text="What is your expected timeline or deadline for launch?"),
        StaticQuestion(
            text="Do you have any existing documentation, competitor analysis, or reference materials?"
        ),
        StaticQuestion(text="What defines success for this project? Key metrics or outcomes?"),
    ],
    "specs": [
        StaticQuestion(text="What architectural style do you prefer? (e.g., REST, GraphQL, gRPC)"),
        StaticQuestion(text="Do you have preferred cloud providers or infrastructure requirements?"),
        StaticQuestion(text="What are the expected scale and performance requirements?"),
        StaticQuestion(
            text="Do you need real-time features, and if so, what kind? (e.g., websockets, server-sent events)"
        ),
        StaticQuestion(text="What authentication and authorization requirements exist?"),
        StaticQuestion(text="Are there specific data models or database preferences?"),
    ],
    "stories": [
        StaticQuestion(text="What is your preferred sprint or iteration length?"),
        StaticQuestion(text="Are there features that must be in the MVP versus nice-to-have?"),
        StaticQuestion(text="Do you have any user research or personas to share?"),
        StaticQuestion(text="What edge cases or error states should be handled?"),
    ],
    "artifacts": [
        StaticQuestion(text="What additional artifacts do you need beyond the standard deliverables?"),
        StaticQuestion(text="Do you need API documentation, database schemas, or deployment guides?"),
    ],
    "handoff": [
        StaticQuestion(text="Who are the developers or team members receiving this handoff?"),
        StaticQuestion(text="Are there specific coding standards or conventions to follow?"),
        StaticQuestion(text="What environment setup or credentials need to be documented?"),
    ],
}

QUESTION_RANGES: Dict[str, QuestionRange] = {
    "brief": QuestionRange(min=5, max=8),
    "prd": QuestionRange(min=5, max=8),
    "specs": QuestionRange(min=4, max=8),
    "stories": QuestionRange(min=3, max=6),
    "artifacts": QuestionRange(min=2, max=5),
    "handoff": QuestionRange(min=2, max=5),
}

_LEADING_HEADING = re.compile(r"^#{1,6}\s+.*\n+")


def get_artifact_type_for_phase(phase_id: str) -> str:
    return ARTIFACT_TYPES.get(phase_id, "doc")


def get_phase_title(phase_id: str) -> str:
    return PHASE_TITLES.get(phase_id, "Document")


def artifact_title(phase_id: str) -> str:
    return f"{phase_id[:1].upper()}{phase_id[1:]} - {get_phase_title(phase_id)}"


def get_section_instructions(section_name: str) -> str:
    return SECTION_INSTRUCTIONS.get(
        section_name, f"Generate comprehensive content for the {section_name} section."
    )


def format_section_name(name: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in name.split("-"))


def question_range(phase_id: str) -> QuestionRange:
    return QUESTION_RANGES.get(phase_id, QUESTION_RANGES["brief"])


def static_questions(phase_id: str) -> List[Question]:
    bank = PHASE_QUESTIONS.get(phase_id) or PHASE_QUESTIONS["brief"]
    return [
        Question(
            id=f"{phase_id}-q{index}",
            text=item.text,
            answer=None,
            ai_generated=False,
            required=item.required,
        )
        for index, item in enumerate(bank, start=1)
    ]


def answered_questions(questions: Sequence[Question]) -> List[Question]:
    return [question for question in questions if question.answer]


def has_missing_required_answers(questions: Sequence[Question]) -> bool:
    return any(question.required and not (question.answer or "").strip() for question in questions)


def extract_relevant_questions(questions: Sequence[Question], section_name: str) -> List[str]:
    keywords = SECTION_KEYWORDS.get(section_name, [])
    relevant: List[str] = []
    for question in questions:
        if not question.answer:
            continue
        text = question.text.lower()
        if any(keyword in text for keyword in keywords):
            relevant.append(f"{question.text}: {question.answer}")
    return relevant


def strip_leading_heading(content: str) -> str:
    return _LEADING_HEADING.sub("", content, count=1).strip()


def collect_batch_answers(questions: Sequence[Question]) -> List[Dict[str, str]]:
    return [
        {"question_id": question.id, "answer": question.answer}
        for question in questions
        if question.ai_generated and question.answer and question.answer.strip()
    ]
