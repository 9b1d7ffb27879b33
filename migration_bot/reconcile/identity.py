"""Deterministic change identities.

A second CI run on the same pull request must address the same remote spec without any stored
mapping, so the id is derived from the repository, the PR number, and the schema version encoded
in the migration file name (``migrations/1001_init.up.sql`` -> ``1001``).
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass

_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class ChangeIdentity:
    id: str
    schema_version: str


def schema_version_from_path(file_path: str) -> str:
    return posixpath.basename(file_path).split("_", 1)[0]


def derive_change_identity(repo: str, pr_number: int | str, file_path: str) -> ChangeIdentity:
    schema_version = schema_version_from_path(file_path)
    raw_id = f"ch-{repo}-pr{pr_number}-{schema_version}"
    return ChangeIdentity(id=_NON_ALPHANUMERIC.sub("-", raw_id), schema_version=schema_version)
