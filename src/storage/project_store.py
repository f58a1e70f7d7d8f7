"""
Project Registry Module.

Read-only access to the configured projects, kept in a JSON file managed by
the project-management side. The sync engine only writes back the user
mappings it resolves from GitLab members.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from config import logger
from storage.models import Project


class ProjectStore:
    """
    Loads projects from the registry file on every access so that edits by
    the project-management side are picked up on the next sync cycle.
    """

    def __init__(self, projects_file: str):
        """Initialize the project registry.

        Args:
            projects_file (str): Path of the JSON file holding a list of projects.
        """
        self.projects_file = Path(projects_file)

    def _read_document(self) -> Any:
        if not self.projects_file.exists():
            return None
        try:
            with open(self.projects_file, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(
                {
                    "message": "Failed to read projects file",
                    "file": str(self.projects_file),
                    "error": str(e),
                }
            )
            return None

    @staticmethod
    def _projects_of(document: Any) -> List[dict]:
        # The file holds either a bare list or {"projects": [...]}
        if isinstance(document, dict):
            document = document.get("projects", [])
        return document if isinstance(document, list) else []

    def _load_raw(self) -> List[dict]:
        return self._projects_of(self._read_document())

    def find_all(self) -> List[Project]:
        projects = []
        for raw in self._load_raw():
            try:
                projects.append(Project.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    {
                        "message": "Skipping invalid project entry",
                        "project": raw.get("id") if isinstance(raw, dict) else None,
                        "error": str(e),
                    }
                )
        return projects

    def find_active(self) -> List[Project]:
        """Projects that are active and not deleted."""
        return [project for project in self.find_all() if project.is_enabled]

    def find_by_id(self, project_id: str) -> Optional[Project]:
        for project in self.find_all():
            if project.id == project_id:
                return project
        return None

    def update_user_mappings(self, project_id: str, mappings: Dict[str, str]) -> bool:
        """Store resolved username to display-name mappings for a project.

        The stored mappings are replaced, so renamed GitLab users pick up
        their current display name.

        Args:
            project_id (str): Project identifier.
            mappings (Dict[str, str]): Resolved mappings from GitLab.

        Returns:
            bool: True if the project exists and the file was updated.
        """
        document = self._read_document()
        raw_projects = self._projects_of(document)
        for raw in raw_projects:
            if isinstance(raw, dict) and raw.get("id") == project_id:
                raw["user_mappings"] = dict(mappings)
                break
        else:
            return False

        self.projects_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.projects_file.parent, prefix=".projects.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.projects_file)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return True
