from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class ProjectRecord(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime)

    phases: Mapped[List["PhaseRecord"]] = relationship("PhaseRecord", back_populates="project")


class PhaseRecord(Base):
    __tablename__ = "phases"
    __table_args__ = (UniqueConstraint("project_id", "phase_id"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"))
    phase_id: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String)
    questions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime)

    project: Mapped[ProjectRecord] = relationship("ProjectRecord", back_populates="phases")


class ArtifactRecord(Base):
    __tablename__ = "artifacts"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), index=True)
    phase_id: Mapped[str] = mapped_column(String)
    type: Mapped[str] = mapped_column(String)
    title: Mapped[str] = mapped_column(String)
    content: Mapped[str] = mapped_column(Text)
    preview_html: Mapped[str] = mapped_column(Text)
    sections: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    stream_status: Mapped[str | None] = mapped_column(String, nullable=True)
    current_section: Mapped[str | None] = mapped_column(String, nullable=True)
    sections_completed: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime)


class UserConfigRecord(Base):
    __tablename__ = "user_configs"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    provider: Mapped[str] = mapped_column(String, default="")
    api_key_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    default_model: Mapped[str] = mapped_column(String, default="")
    use_system: Mapped[bool] = mapped_column(Boolean, default=False)
    system_key_id: Mapped[str | None] = mapped_column(String, nullable=True)
    zai_endpoint_type: Mapped[str | None] = mapped_column(String, nullable=True)
    zai_is_china: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime)


class SystemCredentialRecord(Base):
    __tablename__ = "system_credentials"

    provider: Mapped[str] = mapped_column(String, primary_key=True)
    api_key_encrypted: Mapped[str] = mapped_column(Text)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    zai_endpoint_type: Mapped[str | None] = mapped_column(String, nullable=True)
    zai_is_china: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime)


class LlmModelRecord(Base):
    __tablename__ = "llm_models"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    provider: Mapped[str] = mapped_column(String, index=True)
    context_tokens: Mapped[int] = mapped_column(Integer)
    max_output_tokens: Mapped[int] = mapped_column(Integer)
    default_max: Mapped[int] = mapped_column(Integer)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime)
