"""Collect the migration files a pull request touches."""

from __future__ import annotations

import glob
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from migration_bot.github.pull_files import PullRequestFilesClient
from migration_bot.reconcile.identity import derive_change_identity
from migration_bot.shared.settings import PullRequestRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Change:
    id: str
    database: str
    file: str
    content: str
    schema_version: str

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "database": self.database,
            "file": self.file,
            "content": self.content,
            "schemaVersion": self.schema_version,
        }


def match_migration_files(pattern: str, changed_files: Iterable[str], root: Path) -> list[str]:
    """Files under ``root`` matching ``pattern`` that the pull request changed, sorted."""

    changed = {path.replace("\\", "/") for path in changed_files}
    matched = {
        Path(path).as_posix()
        for path in glob.glob(pattern, root_dir=str(root), recursive=True)
        if (root / path).is_file()
    }
    return sorted(path for path in matched if path in changed)


def build_changes(
    files: Iterable[str],
    repo: str,
    pr_number: int,
    database: str,
    root: Path,
) -> list[Change]:
    changes: list[Change] = []
    for file in sorted(files):
        identity = derive_change_identity(repo, pr_number, file)
        changes.append(
            Change(
                id=identity.id,
                database=database,
                file=file,
                content=(root / file).read_text(encoding="utf-8", errors="replace"),
                schema_version=identity.schema_version,
            )
        )
    return changes


def collect_changes(
    files_client: PullRequestFilesClient,
    pull_request: PullRequestRef,
    pattern: str,
    database: str,
    root: Path,
) -> list[Change]:
    changed_files = files_client.list_changed_files(
        pull_request.owner, pull_request.repo, pull_request.number
    )
    matched = match_migration_files(pattern, changed_files, root)
    logger.info("Matched %d migration file(s) for pattern %s: %s", len(matched), pattern, matched)
    return build_changes(
        matched,
        repo=pull_request.repo,
        pr_number=pull_request.number,
        database=database,
        root=root,
    )
