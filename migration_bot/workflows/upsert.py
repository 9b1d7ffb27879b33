"""Create the issue for a pull request's migrations, or reconcile the one that exists."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from migration_bot.reconcile.changes import Change
from migration_bot.reconcile.reconciler import STATUS_FAILED, PlanReconciler
from migration_bot.service.client import ChangeServiceClient
from migration_bot.service.errors import MigrationBotError
from migration_bot.service.models import ChangeDatabaseConfig, Issue, PlanSpec, PlanStep
from migration_bot.workflows.issues import IssueBundle, find_issue

logger = logging.getLogger(__name__)

STATUS_CREATED = "created"


@dataclass(frozen=True)
class UpsertResult:
    status: str
    reason_code: str
    message: str = ""
    issue: Issue | None = None
    replaced_spec_ids: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status != STATUS_FAILED


def create_issue_for_changes(
    client: ChangeServiceClient,
    changes: list[Change],
    title: str,
    description: str,
    assignee: str = "",
    pull_request_url: str = "",
) -> IssueBundle:
    specs: list[PlanSpec] = []
    for change in changes:
        sheet = client.create_sheet(title, change.database, change.content)
        specs.append(
            PlanSpec(
                id=change.id,
                change_database_config=ChangeDatabaseConfig(
                    target=change.database,
                    sheet=sheet.name,
                    schema_version=change.schema_version,
                    type="MIGRATE",
                ),
            )
        )

    plan = client.create_plan(
        {
            "steps": [PlanStep(specs=specs).to_wire()],
            "title": title,
            "description": description,
            "vcsSource": {"vcsType": "GITHUB", "pullRequestUrl": pull_request_url},
        }
    )
    logger.info("Created plan %s", plan.name)
    rollout = client.create_rollout(plan.name)
    logger.info("Created rollout %s", rollout.name)
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
            "rollout": rollout.name,
        }
    )
    logger.info("Created issue %s", issue.name)
    return IssueBundle(issue=issue, plan=plan, rollout=rollout)


def upsert_issue(
    client: ChangeServiceClient,
    changes: list[Change],
    title: str,
    description: str,
    assignee: str = "",
    pull_request_url: str = "",
) -> UpsertResult:
    try:
        issue = find_issue(client, title)
        if issue is not None:
            result = PlanReconciler(client, sheet_title=title).reconcile(issue, changes)
            return UpsertResult(
                status=result.status,
                reason_code=result.reason_code,
                message=result.message,
                issue=issue,
                replaced_spec_ids=result.replaced_spec_ids,
            )

        if not changes:
            logger.info("No migration file matched; nothing to create for %s", title)
            return UpsertResult(status="noop", reason_code="no_migration_files")

        bundle = create_issue_for_changes(
            client,
            changes,
            title=title,
            description=description,
            assignee=assignee,
            pull_request_url=pull_request_url,
        )
    except MigrationBotError as exc:
        return UpsertResult(status=STATUS_FAILED, reason_code=exc.reason_code, message=str(exc))

    return UpsertResult(status=STATUS_CREATED, reason_code="issue_created", issue=bundle.issue)
