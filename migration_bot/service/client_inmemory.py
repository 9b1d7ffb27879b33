"""In-memory change-management service for deterministic workflow tests."""

from __future__ import annotations

from typing import Any, Iterator

from migration_bot.service.errors import RemoteRejectionError
from migration_bot.service.models import (
    TASK_STATUS_NOT_STARTED,
    DatabaseSchemaUpdate,
    Issue,
    Plan,
    PlanStep,
    Rollout,
    RolloutStage,
    RolloutTask,
    Sheet,
    encode_content,
    resource_uid,
)

MUTATING_CALLS = {
    "approve_issue",
    "create_issue",
    "create_plan",
    "update_plan_steps",
    "create_rollout",
    "create_sheet",
}


class InMemoryChangeServiceClient:
    """Keeps every resource in dicts and journals each call in ``calls``."""

    def __init__(self, project_id: str = "example", page_size: int = 2) -> None:
        self.project_id = project_id
        self.page_size = max(1, page_size)
        self.calls: list[tuple[str, str]] = []
        self.issues: dict[str, Issue] = {}
        self.plans: dict[str, Plan] = {}
        self.rollouts: dict[str, Rollout] = {}
        self.sheets: dict[str, Sheet] = {}
        self.approvals: dict[str, list[str]] = {}
        self._next_uid = 100

    @property
    def mutating_calls(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    def iter_issue_pages(self) -> Iterator[list[Issue]]:
        self.calls.append(("list_issues", ""))
        ordered = [self.issues[uid].model_copy(deep=True) for uid in sorted(self.issues, key=int)]
        for start in range(0, len(ordered), self.page_size):
            yield ordered[start : start + self.page_size]
        if not ordered:
            yield []

    def list_issues(self, title: str | None = None) -> list[Issue]:
        issues: list[Issue] = []
        for page in self.iter_issue_pages():
            issues.extend(issue for issue in page if title is None or issue.title == title)
        return issues

    def search_issues(self, filter: str, query: str | None = None) -> list[Issue]:
        self.calls.append(("search_issues", filter))
        matched: list[Issue] = []
        for uid in sorted(self.issues, key=int):
            issue = self.issues[uid]
            if issue.status != "OPEN":
                continue
            if query and query not in issue.title:
                continue
            matched.append(issue.model_copy(deep=True))
        return matched

    def approve_issue(self, issue_uid: str, comment: str = "") -> dict[str, Any]:
        self.calls.append(("approve_issue", issue_uid))
        issue = self._require(self.issues, issue_uid, "issue")
        self.approvals.setdefault(issue_uid, []).append(comment)
        return issue.to_wire()

    def create_issue(self, issue: dict[str, Any]) -> Issue:
        uid = self._allocate_uid()
        self.calls.append(("create_issue", uid))
        created = Issue.model_validate(
            {
                "status": "OPEN",
                "createTime": f"2024-03-10T17:{int(uid) % 60:02d}:00Z",
                **issue,
                "name": self._name("issues", uid),
                "uid": uid,
            }
        )
        self.issues[uid] = created
        return created.model_copy(deep=True)

    def get_plan(self, plan_uid: str) -> Plan:
        self.calls.append(("get_plan", plan_uid))
        return self._require(self.plans, plan_uid, "plan").model_copy(deep=True)

    def create_plan(self, plan: dict[str, Any]) -> Plan:
        uid = self._allocate_uid()
        self.calls.append(("create_plan", uid))
        created = Plan.model_validate({**plan, "name": self._name("plans", uid), "uid": uid})
        self.plans[uid] = created
        return created.model_copy(deep=True)

    def update_plan_steps(self, plan_uid: str, steps: list[PlanStep]) -> Plan:
        self.calls.append(("update_plan_steps", plan_uid))
        plan = self._require(self.plans, plan_uid, "plan")
        existing_ids = sorted(spec.id for spec in plan.iter_specs())
        updated_ids = sorted(spec.id for step in steps for spec in step.specs)
        if set(updated_ids) - set(existing_ids):
            raise RemoteRejectionError("cannot add specs to plan", code=3, status_code=400)
        if set(existing_ids) - set(updated_ids):
            raise RemoteRejectionError("cannot remove specs from plan", code=3, status_code=400)
        plan.steps = [step.model_copy(deep=True) for step in steps]
        return plan.model_copy(deep=True)

    def create_rollout(self, plan_name: str) -> Rollout:
        plan = self._require(self.plans, resource_uid(plan_name), "plan")
        uid = self._allocate_uid()
        self.calls.append(("create_rollout", uid))
        tasks: list[RolloutTask] = []
        for index, spec in enumerate(plan.iter_specs()):
            config = spec.change_database_config
            tasks.append(
                RolloutTask(
                    name=f"{self._name('rollouts', uid)}/stages/1/tasks/{index + 1}",
                    uid=str(index + 1),
                    title=f"DDL(schema) for {config.target if config else ''}",
                    spec_id=spec.id,
                    status=TASK_STATUS_NOT_STARTED,
                    database_schema_update=DatabaseSchemaUpdate(
                        sheet=config.sheet if config else "",
                        schema_version=config.schema_version if config else "",
                    ),
                )
            )
        rollout = Rollout(
            name=self._name("rollouts", uid),
            uid=uid,
            plan=plan_name,
            title="Rollout Pipeline",
            stages=[RolloutStage(name="stages/1", uid="1", title="Prod Stage", tasks=tasks)],
        )
        self.rollouts[uid] = rollout
        return rollout.model_copy(deep=True)

    def get_rollout(self, rollout_uid: str) -> Rollout:
        self.calls.append(("get_rollout", rollout_uid))
        return self._require(self.rollouts, rollout_uid, "rollout").model_copy(deep=True)

    def create_sheet(self, title: str, database: str, content: str) -> Sheet:
        uid = self._allocate_uid()
        self.calls.append(("create_sheet", uid))
        sheet = Sheet(
            name=self._name("sheets", uid),
            title=title,
            content=encode_content(content),
            database=database,
        )
        self.sheets[uid] = sheet
        return sheet.model_copy(deep=True)

    def get_sheet_content(self, sheet_uid: str) -> str:
        self.calls.append(("get_sheet", sheet_uid))
        return self._require(self.sheets, sheet_uid, "sheet").decoded_content()

    def set_task_status(self, spec_id: str, status: str) -> None:
        for rollout in self.rollouts.values():
            for task in rollout.tasks_for_spec(spec_id):
                task.status = status

    def _require(self, store: dict[str, Any], uid: str, kind: str) -> Any:
        if uid not in store:
            raise RemoteRejectionError(f"{kind} {uid} not found", code=5, status_code=404)
        return store[uid]

    def _allocate_uid(self) -> str:
        self._next_uid += 1
        return str(self._next_uid)

    def _name(self, collection: str, uid: str) -> str:
        return f"projects/{self.project_id}/{collection}/{uid}"
