"""Issue lookup, approval, creation, and rollout status checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from migration_bot.reconcile.changes import Change
from migration_bot.reconcile.reconciler import render_patch
from migration_bot.service.client import ChangeServiceClient
from migration_bot.service.errors import PreconditionError
from migration_bot.service.models import (
    ISSUE_STATUS_DONE,
    TASK_STATUS_DONE,
    ChangeDatabaseConfig,
    Issue,
    Plan,
    PlanSpec,
    PlanStep,
    Rollout,
    RolloutTask,
    resource_uid,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class IssueBundle:
    issue: Issue
    plan: Plan | None = None
    rollout: Rollout | None = None


@dataclass(frozen=True)
class StatusCheckResult:
    issue: Issue
    plan: Plan | None
    rollout: Rollout | None
    failures: list[str] = field(default_factory=list)
    details: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def _created_at(issue: Issue) -> datetime:
    raw = issue.create_time.strip()
    if not raw:
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def find_issue(client: ChangeServiceClient, title: str) -> Issue | None:
    """Return the issue titled ``title``; the most recently created one wins on duplicates."""

    issues = client.list_issues(title=title)
    if not issues:
        logger.info("No issue found for title %s", title)
        return None
    if len(issues) > 1:
        logger.warning(
            "Found multiple issues for title %s. Use the latest one: %s",
            title,
            [issue.name for issue in issues],
        )
        return max(issues, key=_created_at)
    logger.info("Issue found for title %s", title)
    return issues[0]


def get_issue_bundle(client: ChangeServiceClient, title: str) -> IssueBundle | None:
    issue = find_issue(client, title)
    if issue is None:
        return None
    plan = client.get_plan(resource_uid(issue.plan)) if issue.plan else None
    rollout = client.get_rollout(resource_uid(issue.rollout)) if issue.rollout else None
    return IssueBundle(issue=issue, plan=plan, rollout=rollout)


def search_open_issues(
    client: ChangeServiceClient, database: str, title: str | None = None
) -> list[Issue]:
    return client.search_issues(f'status="OPEN" && database={database}', query=title or None)


def approve_issue(
    client: ChangeServiceClient, issue_uid: str, comment: str = ""
) -> dict[str, Any]:
    if not issue_uid.strip():
        raise PreconditionError("issue uid is required", reason_code="issue_uid_required")
    approved = client.approve_issue(issue_uid.strip(), comment)
    logger.info("Approved issue %s", issue_uid)
    return approved


def create_issue_from_statement(
    client: ChangeServiceClient,
    database: str,
    statement: str,
    title: str,
    description: str = "",
    assignee: str = "",
) -> IssueBundle:
    """Create a one-statement issue: sheet, single-spec plan, issue, then rollout."""

    sheet = client.create_sheet(title, database, statement)
    plan_body = {
        "steps": [
            PlanStep(
                specs=[
                    PlanSpec(
                        change_database_config=ChangeDatabaseConfig(
                            target=database, sheet=sheet.name, type="MIGRATE"
                        )
                    )
                ]
            ).to_wire()
        ],
        "title": title,
        "description": "MIGRATE",
    }
    plan = client.create_plan(plan_body)
    issue = client.create_issue(
        {
            "approvers": [],
            "approvalTemplates": [],
            "subscribers": [],
            "title": title,
            "description": description,
            "type": "DATABASE_CHANGE",
            "assignee": assignee,
            "plan": plan.name,
        }
    )
    rollout = client.create_rollout(plan.name)
    return IssueBundle(issue=issue, plan=plan, rollout=rollout)


def _log_failures(failures: list[str]) -> None:
    for failure in failures:
        logger.error("%s", failure)


def _task_schema_version(task: RolloutTask) -> str:
    update = task.database_schema_update
    return update.schema_version if update is not None else ""


def check_issue_status(
    client: ChangeServiceClient, title: str, changes: list[Change]
) -> StatusCheckResult:
    """Verify the issue is done and its rollout ran exactly the pull request's migrations.

    Every problem is collected so one run reports all of them.
    """

    issue = find_issue(client, title)
    if issue is None:
        raise PreconditionError(
            f"No issue found for title {title}", reason_code="issue_not_found"
        )

    failures: list[str] = []
    if issue.status != ISSUE_STATUS_DONE:
        failures.append(f"Issue status is not DONE. Current status is {issue.status}.")

    plan = client.get_plan(resource_uid(issue.plan)) if issue.plan else None
    if not issue.rollout:
        _log_failures(failures)
        return StatusCheckResult(issue=issue, plan=plan, rollout=None, failures=failures)

    rollout = client.get_rollout(resource_uid(issue.rollout))
    statuses: dict[str, str] = {}

    for stage in rollout.stages:
        for task in stage.tasks:
            matched = next(
                (
                    change
                    for change in changes
                    if task.spec_id == change.id
                    and _task_schema_version(task) == change.schema_version
                ),
                None,
            )
            if matched is not None and task.status != TASK_STATUS_DONE:
                failures.append(
                    f"{matched.file} rollout status is not DONE. Current status is {task.status}."
                )

            sheet = task.database_schema_update.sheet if task.database_schema_update else ""
            content = client.get_sheet_content(resource_uid(sheet)) if sheet else ""
            if matched is None:
                failures.append(
                    f"Unexpected task {task.title} under stage {stage.title} "
                    f"and content {content}"
                )
            elif matched.content == content:
                statuses[matched.id] = task.status
            else:
                failures.append(
                    f"Migration mismatch for {matched.file} with task {task.title} "
                    f"under stage {stage.title}"
                )
                failures.append(render_patch(matched.content, content, matched.file))

    scheduled = {
        (task.spec_id, _task_schema_version(task))
        for stage in rollout.stages
        for task in stage.tasks
    }
    for change in changes:
        if (change.id, change.schema_version) not in scheduled:
            failures.append(f"Migration {change.file} not found in the rollout")

    details = [{**change.to_dict(), "status": statuses.get(change.id, "")} for change in changes]
    _log_failures(failures)
    return StatusCheckResult(
        issue=issue, plan=plan, rollout=rollout, failures=failures, details=details
    )
