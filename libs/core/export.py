from __future__ import annotations

import io
import re
import zipfile
from typing import Iterable, List, Tuple

from .models import Artifact

EXPORT_README_PATH = "handoff/README.md"
EXPORT_README = "# Project Export\n\nExported from SpecForge.\n"

_SEPARATORS = re.compile(r"[\\/]+")


def sanitize_zip_path_segment(segment: str) -> str:
    value = segment.replace("..", "")
    value = _SEPARATORS.sub("-", value).strip("-").strip()
    return value or "untitled"


def export_entries(artifacts: Iterable[Artifact]) -> List[Tuple[str, str]]:
    entries = [
        (
            f"{sanitize_zip_path_segment(artifact.phase_id)}/{sanitize_zip_path_segment(artifact.title)}.md",
            artifact.content,
        )
        for artifact in artifacts
    ]
    entries.append((EXPORT_README_PATH, EXPORT_README))
    return entries


def build_zip(entries: Iterable[Tuple[str, str]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path, content in entries:
            archive.writestr(path, content)
    return buffer.getvalue()


def export_project_zip(artifacts: Iterable[Artifact]) -> bytes:
    return build_zip(export_entries(artifacts))
