"""
Commit Cache Storage Module.

This module handles the persistent storage of per-project commit and branch
caches. Each project owns one commit file and one branch file; every write
replaces the whole file through a temporary file and an atomic rename, so a
crash mid-write leaves the previous snapshot intact.
"""

import hashlib
import json
import os
import re
import tempfile
from pathlib import Path
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from config import logger
from errors import CacheCorrupt, CacheWriteError
from storage.models import (
    DEFAULT_REVIEW_DAYS,
    CachedCommit,
    ProjectBranchCache,
    ProjectCommitCache,
)

ModelT = TypeVar("ModelT", bound=BaseModel)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class CommitCacheStore:
    """
    Manages persistent storage of project commit and branch caches.
    Single writer per project; callers serialize access per project.
    """

    def __init__(self, data_dir: str):
        """Initialize the cache storage.

        Args:
            data_dir (str): Base directory; caches live in its ``cache`` subdirectory.
        """
        self.storage_dir = Path(data_dir) / "cache"
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _get_file_path(self, project_id: str, kind: str) -> Path:
        """Generate the cache file path for a project.

        Ids with characters unsafe in file names are sanitized and suffixed
        with a short hash of the raw id, so distinct ids never share a file.

        Args:
            project_id (str): Project identifier.
            kind (str): ``commits`` or ``branches``.

        Returns:
            Path: Complete file path.
        """
        safe_id = _UNSAFE_CHARS.sub("_", project_id)
        if safe_id != project_id:
            digest = hashlib.sha256(project_id.encode("utf-8")).hexdigest()[:8]
            safe_id = f"{safe_id}-{digest}"
        return self.storage_dir / f"{safe_id}_{kind}.json"

    def _load(self, path: Path, model: Type[ModelT]) -> Optional[ModelT]:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return model.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            raise CacheCorrupt(f"{path}: {e}") from e

    def _write_atomic(self, path: Path, data: BaseModel) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=self.storage_dir, prefix=f".{path.stem}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except Exception as e:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            logger.error(
                {"message": "Failed to write cache file", "file": str(path), "error": str(e)}
            )
            raise CacheWriteError(f"{path}: {e}") from e

    def exists(self, project_id: str) -> bool:
        return self._get_file_path(project_id, "commits").exists()

    def read(
        self, project_id: str, review_days: int = DEFAULT_REVIEW_DAYS
    ) -> ProjectCommitCache:
        """Load the commit cache of a project.

        A missing or unreadable cache yields an empty one whose last pull time
        lies one review window in the past.

        Args:
            project_id (str): Project identifier.
            review_days (int): Backfill horizon for a fresh cache.

        Returns:
            ProjectCommitCache: The stored cache or a fresh one.
        """
        path = self._get_file_path(project_id, "commits")
        try:
            cache = self._load(path, ProjectCommitCache)
        except CacheCorrupt as e:
            logger.warning(
                {
                    "message": "Corrupted commit cache, starting fresh",
                    "project": project_id,
                    "error": str(e),
                }
            )
            cache = None
        return cache or ProjectCommitCache.empty(project_id, review_days)

    def write(self, cache: ProjectCommitCache) -> None:
        """Persist the full commit cache, replacing prior content.

        Raises:
            CacheWriteError: If the snapshot could not be written.
        """
        path = self._get_file_path(cache.project_id, "commits")
        self._write_atomic(path, cache)
        logger.debug(
            {
                "message": "Commit cache saved",
                "project": cache.project_id,
                "commits": len(cache.commits),
            }
        )

    def merge(
        self,
        project_id: str,
        new_commits: List[CachedCommit],
        review_days: int = DEFAULT_REVIEW_DAYS,
    ) -> List[CachedCommit]:
        """Read, merge unknown commits at the head, and write back.

        Returns:
            List[CachedCommit]: The commits actually inserted.
        """
        cache = self.read(project_id, review_days)
        inserted = cache.merge_commits(new_commits)
        if inserted:
            self.write(cache)
        return inserted

    def read_branches(self, project_id: str) -> ProjectBranchCache:
        path = self._get_file_path(project_id, "branches")
        try:
            cache = self._load(path, ProjectBranchCache)
        except CacheCorrupt as e:
            logger.warning(
                {
                    "message": "Corrupted branch cache, starting fresh",
                    "project": project_id,
                    "error": str(e),
                }
            )
            cache = None
        return cache or ProjectBranchCache(project_id=project_id)

    def write_branches(self, cache: ProjectBranchCache) -> None:
        path = self._get_file_path(cache.project_id, "branches")
        self._write_atomic(path, cache)
