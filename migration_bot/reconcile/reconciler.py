"""Reconcile a pull request's migration files with an existing remote plan.

The remote plan only accepts in-place edits of existing specs: a spec can point at a new sheet,
but specs cannot be added or removed once the plan exists. Each run therefore

1. checks that local changes and remote specs pair up one-to-one,
2. reads every paired spec's sheet and records which ones differ from the local file,
3. refuses the whole run if any differing spec has a rollout task outside the replaceable states,
4. publishes one new sheet per differing spec and patches the plan's steps in a single call.

Nothing is written before step 4, and step 4 is skipped entirely when no content differs.
"""

from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass, field

from migration_bot.reconcile.changes import Change
from migration_bot.service.client import ChangeServiceClient
from migration_bot.service.errors import MigrationBotError, ReconcileError
from migration_bot.service.models import (
    TASK_STATUS_CANCELED,
    TASK_STATUS_FAILED,
    TASK_STATUS_NOT_STARTED,
    ChangeDatabaseConfig,
    Issue,
    Plan,
    PlanSpec,
    Rollout,
    resource_uid,
)

logger = logging.getLogger(__name__)

REPLACEABLE_TASK_STATUSES = (TASK_STATUS_NOT_STARTED, TASK_STATUS_CANCELED, TASK_STATUS_FAILED)

STATUS_UPDATED = "updated"
STATUS_NOOP = "noop"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class ReconcileResult:
    status: str
    reason_code: str
    message: str = ""
    replaced_spec_ids: tuple[str, ...] = ()
    plan: Plan | None = None

    @property
    def ok(self) -> bool:
        return self.status != STATUS_FAILED


@dataclass(frozen=True)
class SpecMatch:
    change: Change
    spec: PlanSpec


@dataclass(frozen=True)
class ParityCheck:
    ok: bool
    reason_code: str
    message: str = ""
    matches: list[SpecMatch] = field(default_factory=list)


@dataclass(frozen=True)
class ContentDrift:
    change: Change
    spec: PlanSpec
    remote_content: str


def _failed(reason_code: str, message: str) -> ReconcileResult:
    return ReconcileResult(status=STATUS_FAILED, reason_code=reason_code, message=message)


def _spec_target(spec: PlanSpec) -> str:
    return spec.change_database_config.target if spec.change_database_config else ""


def check_spec_parity(changes: list[Change], plan: Plan) -> ParityCheck:
    """Pair changes and specs one-to-one, in plan order."""

    specs = plan.iter_specs()

    for change in changes:
        same_id = [spec for spec in specs if spec.id == change.id]
        if not same_id:
            return ParityCheck(
                ok=False,
                reason_code="spec_added",
                message=(
                    "Adding a new migration file to the existing issue is not allowed: "
                    f"{change.file}"
                ),
            )
        if len(same_id) > 1:
            return ParityCheck(
                ok=False,
                reason_code="spec_ambiguous",
                message=f"Plan holds {len(same_id)} specs with id {change.id} for {change.file}",
            )

    matches: list[SpecMatch] = []
    for spec in specs:
        paired = [
            change
            for change in changes
            if change.id == spec.id and change.database == _spec_target(spec)
        ]
        if not paired:
            return ParityCheck(
                ok=False,
                reason_code="spec_removed",
                message=(
                    "Removing a migration file from the existing issue is not allowed: "
                    f"spec {spec.id} has no matching file in the pull request"
                ),
            )
        if len(paired) > 1:
            files = ", ".join(change.file for change in paired)
            return ParityCheck(
                ok=False,
                reason_code="spec_ambiguous",
                message=f"Spec {spec.id} matches several migration files: {files}",
            )
        matches.append(SpecMatch(change=paired[0], spec=spec))

    return ParityCheck(ok=True, reason_code="parity_ok", matches=matches)


def find_content_drift(client: ChangeServiceClient, matches: list[SpecMatch]) -> list[ContentDrift]:
    drifts: list[ContentDrift] = []
    for match in matches:
        config = match.spec.change_database_config
        remote_content = ""
        if config is not None and config.sheet:
            remote_content = client.get_sheet_content(resource_uid(config.sheet))
        if remote_content == match.change.content:
            continue
        logger.info("Migration file has changed %s", match.change.file)
        logger.info("%s", render_patch(remote_content, match.change.content, match.change.file))
        drifts.append(
            ContentDrift(change=match.change, spec=match.spec, remote_content=remote_content)
        )
    return drifts


def check_replaceable(
    drifts: list[ContentDrift],
    rollout: Rollout,
    allowed_statuses: tuple[str, ...] = REPLACEABLE_TASK_STATUSES,
) -> None:
    """Raise unless every task behind a changed spec is in an allowed status."""

    for drift in drifts:
        for task in rollout.tasks_for_spec(drift.change.id):
            if task.status not in allowed_statuses:
                raise ReconcileError(
                    f"Can not update migration file: {drift.change.file}. "
                    f"Task status {task.status} not in [{','.join(allowed_statuses)}].",
                    reason_code="task_not_replaceable",
                )


def render_patch(old: str, new: str, file: str) -> str:
    return "".join(
        difflib.unified_diff(
            old.splitlines(keepends=True),
            new.splitlines(keepends=True),
            fromfile=f"remote/{file}",
            tofile=f"local/{file}",
        )
    )


class PlanReconciler:
    def __init__(
        self,
        client: ChangeServiceClient,
        sheet_title: str,
        allowed_statuses: tuple[str, ...] = REPLACEABLE_TASK_STATUSES,
    ) -> None:
        self.client = client
        self.sheet_title = sheet_title
        self.allowed_statuses = allowed_statuses

    def reconcile(self, issue: Issue, changes: list[Change]) -> ReconcileResult:
        if not issue.plan:
            return _failed("plan_missing", "Missing plan from the existing issue.")
        try:
            return self._reconcile(issue, changes)
        except MigrationBotError as exc:
            return _failed(exc.reason_code, str(exc))

    def _reconcile(self, issue: Issue, changes: list[Change]) -> ReconcileResult:
        plan_uid = resource_uid(issue.plan)
        plan = self.client.get_plan(plan_uid)
        logger.info("Check existing plan %s for update", plan.name or plan_uid)

        parity = check_spec_parity(changes, plan)
        if not parity.ok:
            raise ReconcileError(parity.message, reason_code=parity.reason_code)

        drifts = find_content_drift(self.client, parity.matches)
        if not drifts:
            logger.info("Skip plan update. No migration file changed since the last time.")
            return ReconcileResult(status=STATUS_NOOP, reason_code="no_content_change", plan=plan)

        rollout = Rollout()
        if issue.rollout:
            rollout = self.client.get_rollout(resource_uid(issue.rollout))
        check_replaceable(drifts, rollout, self.allowed_statuses)

        for drift in drifts:
            sheet = self.client.create_sheet(
                self.sheet_title, drift.change.database, drift.change.content
            )
            if drift.spec.change_database_config is None:
                drift.spec.change_database_config = ChangeDatabaseConfig(
                    target=drift.change.database,
                    schema_version=drift.change.schema_version,
                )
            drift.spec.change_database_config.sheet = sheet.name

        updated = self.client.update_plan_steps(plan_uid, plan.steps)
        replaced = tuple(drift.change.id for drift in drifts)
        logger.info("Updated plan %s, replaced specs: %s", updated.name or plan_uid, list(replaced))
        return ReconcileResult(
            status=STATUS_UPDATED,
            reason_code="plan_updated",
            replaced_spec_ids=replaced,
            plan=updated,
        )
