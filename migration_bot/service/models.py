"""Wire models for change-management resources.

Every model keeps unknown fields (``extra="allow"``), and ``to_wire`` dumps only the fields
that were received or assigned. A plan fetched, edited and patched back therefore carries
exactly what the service sent plus the edits.
"""

from __future__ import annotations

import base64
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

TASK_STATUS_NOT_STARTED = "NOT_STARTED"
TASK_STATUS_RUNNING = "RUNNING"
TASK_STATUS_DONE = "DONE"
TASK_STATUS_FAILED = "FAILED"
TASK_STATUS_CANCELED = "CANCELED"
TASK_STATUS_SKIPPED = "SKIPPED"

ISSUE_STATUS_DONE = "DONE"


class _Resource(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class ChangeDatabaseConfig(_Resource):
    target: str = ""
    sheet: str = ""
    type: str = "MIGRATE"
    schema_version: str = Field(default="", alias="schemaVersion")


class PlanSpec(_Resource):
    id: str = ""
    change_database_config: ChangeDatabaseConfig | None = Field(
        default=None, alias="changeDatabaseConfig"
    )


class PlanStep(_Resource):
    title: str = ""
    specs: list[PlanSpec] = Field(default_factory=list)


class Plan(_Resource):
    name: str = ""
    uid: str = ""
    title: str = ""
    description: str = ""
    steps: list[PlanStep] = Field(default_factory=list)

    def iter_specs(self) -> list[PlanSpec]:
        return [spec for step in self.steps for spec in step.specs]


class DatabaseSchemaUpdate(_Resource):
    sheet: str = ""
    schema_version: str = Field(default="", alias="schemaVersion")


class RolloutTask(_Resource):
    name: str = ""
    uid: str = ""
    title: str = ""
    spec_id: str = Field(default="", alias="specId")
    status: str = ""
    database_schema_update: DatabaseSchemaUpdate | None = Field(
        default=None, alias="databaseSchemaUpdate"
    )


class RolloutStage(_Resource):
    name: str = ""
    uid: str = ""
    title: str = ""
    environment: str = ""
    tasks: list[RolloutTask] = Field(default_factory=list)


class Rollout(_Resource):
    name: str = ""
    uid: str = ""
    plan: str = ""
    title: str = ""
    stages: list[RolloutStage] = Field(default_factory=list)

    def tasks_for_spec(self, spec_id: str) -> list[RolloutTask]:
        return [task for stage in self.stages for task in stage.tasks if task.spec_id == spec_id]


class Issue(_Resource):
    name: str = ""
    uid: str = ""
    title: str = ""
    description: str = ""
    type: str = ""
    status: str = ""
    assignee: str = ""
    plan: str = ""
    rollout: str = ""
    create_time: str = Field(default="", alias="createTime")


class Sheet(_Resource):
    name: str = ""
    title: str = ""
    content: str = ""

    def decoded_content(self) -> str:
        return decode_content(self.content)


def resource_uid(name: str) -> str:
    """``projects/example/plans/132`` -> ``132``."""

    return name.rsplit("/", 1)[-1]


def encode_content(content: str) -> str:
    return base64.b64encode(content.encode("utf-8")).decode("ascii")


def decode_content(encoded: str) -> str:
    if not encoded:
        return ""
    return base64.b64decode(encoded).decode("utf-8", errors="replace")
