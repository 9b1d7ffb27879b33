"""migration-bot CLI: one command per CI action."""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Iterator

import requests
import typer

from migration_bot.github.pull_files import PullRequestFilesClient
from migration_bot.reconcile.changes import collect_changes, match_migration_files
from migration_bot.service.auth import login as service_login
from migration_bot.service.client import ChangeServiceClient, build_client
from migration_bot.service.errors import MigrationBotError, PreconditionError
from migration_bot.service.models import resource_uid
from migration_bot.shared.actions_log import configure_logging, write_outputs
from migration_bot.shared.settings import ActionContext, ServiceSettings, parse_extra_headers
from migration_bot.workflows.issues import (
    approve_issue as approve_issue_workflow,
    check_issue_status as check_issue_status_workflow,
    create_issue_from_statement,
    find_issue as find_issue_workflow,
    get_issue_bundle,
    search_open_issues,
)
from migration_bot.workflows.upsert import upsert_issue as upsert_issue_workflow

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="migration-bot: database migration CI actions")

URL_OPTION = typer.Option(..., "--url", envvar="INPUT_URL", help="Service base URL")
TOKEN_OPTION = typer.Option(..., "--token", envvar="INPUT_TOKEN", help="Service bearer token")
PROJECT_OPTION = typer.Option(..., "--project-id", envvar="INPUT_PROJECT-ID")
HEADERS_OPTION = typer.Option(
    "", "--headers", envvar="INPUT_HEADERS", help="Extra request headers (JSON or YAML mapping)"
)
GITHUB_TOKEN_OPTION = typer.Option(..., "--github-token", envvar="INPUT_GITHUB-TOKEN")
PATTERN_OPTION = typer.Option(..., "--pattern", envvar="INPUT_PATTERN")
TITLE_OPTION = typer.Option(..., "--title", envvar="INPUT_TITLE")


def _context() -> ActionContext:
    context = ActionContext.from_env()
    configure_logging(annotate=context.annotate)
    return context


def _client(url: str, token: str, project_id: str, headers: str) -> ChangeServiceClient:
    return build_client(_settings(url, token, project_id, headers))


def _settings(url: str, token: str, project_id: str, headers: str) -> ServiceSettings:
    return ServiceSettings(
        url=url,
        token=token,
        project_id=project_id,
        extra_headers=parse_extra_headers(headers),
    )


def _files_client(github_token: str) -> PullRequestFilesClient:
    return PullRequestFilesClient(token=github_token)


@contextlib.contextmanager
def _fail_on_error() -> Iterator[None]:
    try:
        yield
    except PreconditionError as exc:
        logger.error("%s", exc)
        raise typer.Exit(code=2) from exc
    except MigrationBotError as exc:
        logger.error("%s", exc)
        raise typer.Exit(code=1) from exc
    except requests.RequestException as exc:
        logger.error("Request failed: %s", exc)
        raise typer.Exit(code=1) from exc


@app.command()
def login(
    url: str = URL_OPTION,
    service_account: str = typer.Option(
        ..., "--service-account", envvar="INPUT_SERVICE_ACCOUNT"
    ),
    service_account_key: str = typer.Option(
        ..., "--service-account-key", envvar="INPUT_SERVICE_ACCOUNT_KEY"
    ),
) -> None:
    """Exchange a service account and key for an API token."""
    context = _context()
    with _fail_on_error():
        token = service_login(url, service_account, service_account_key)
    if context.annotate:
        typer.echo(f"::add-mask::{token}")
    write_outputs({"token": token}, context.output_path)


@app.command("find-issue")
def find_issue(
    url: str = URL_OPTION,
    token: str = TOKEN_OPTION,
    project_id: str = PROJECT_OPTION,
    title: str = TITLE_OPTION,
    headers: str = HEADERS_OPTION,
) -> None:
    """Find the latest issue with the given title and its rollout."""
    context = _context()
    with _fail_on_error():
        settings = _settings(url, token, project_id, headers)
        client = build_client(settings)
        issue = find_issue_workflow(client, title)
        if issue is None:
            return
        outputs: dict[str, Any] = {"issue": issue.to_wire()}
        if issue.rollout:
            outputs["rollout"] = client.get_rollout(resource_uid(issue.rollout)).to_wire()
    write_outputs(outputs, context.output_path)
    logger.info("Visit %s", settings.issue_url(issue.uid))


@app.command("get-issue")
def get_issue(
    url: str = URL_OPTION,
    token: str = TOKEN_OPTION,
    project_id: str = PROJECT_OPTION,
    title: str = TITLE_OPTION,
    headers: str = HEADERS_OPTION,
) -> None:
    """Fetch the issue with the given title plus its plan and rollout."""
    context = _context()
    with _fail_on_error():
        settings = _settings(url, token, project_id, headers)
        bundle = get_issue_bundle(build_client(settings), title)
    if bundle is None:
        return
    outputs = {"issue": bundle.issue.to_wire()}
    if bundle.plan is not None:
        outputs["plan"] = bundle.plan.to_wire()
    if bundle.rollout is not None:
        outputs["rollout"] = bundle.rollout.to_wire()
    write_outputs(outputs, context.output_path)
    logger.info("Visit %s", settings.issue_url(bundle.issue.uid))


@app.command("search-issues")
def search_issues(
    url: str = URL_OPTION,
    token: str = TOKEN_OPTION,
    project_id: str = PROJECT_OPTION,
    database: str = typer.Option(..., "--database", envvar="INPUT_DATABASE"),
    title: str = typer.Option("", "--title", envvar="INPUT_TITLE"),
    headers: str = HEADERS_OPTION,
) -> None:
    """List open issues touching a database, optionally narrowed by a title query."""
    context = _context()
    with _fail_on_error():
        issues = search_open_issues(
            _client(url, token, project_id, headers), database=database, title=title or None
        )
    write_outputs({"issues": [issue.to_wire() for issue in issues]}, context.output_path)


@app.command("approve-issue")
def approve_issue(
    url: str = URL_OPTION,
    token: str = TOKEN_OPTION,
    issue_uid: str = typer.Option(..., "--issue-uid", envvar="INPUT_ISSUE_UID"),
    comment: str = typer.Option("", "--comment", envvar="INPUT_COMMENT"),
    headers: str = HEADERS_OPTION,
) -> None:
    """Approve an issue as the calling account."""
    _context()
    with _fail_on_error():
        approve_issue_workflow(_client(url, token, "-", headers), issue_uid, comment)


@app.command("create-issue")
def create_issue(
    url: str = URL_OPTION,
    token: str = TOKEN_OPTION,
    project_id: str = PROJECT_OPTION,
    database: str = typer.Option(..., "--database", envvar="INPUT_DATABASE"),
    statement: str = typer.Option(..., "--statement", envvar="INPUT_STATEMENT"),
    title: str = TITLE_OPTION,
    description: str = typer.Option("", "--description", envvar="INPUT_DESCRIPTION"),
    assignee: str = typer.Option("", "--assignee", envvar="INPUT_ASSIGNEE"),
    headers: str = HEADERS_OPTION,
) -> None:
    """Create an issue that runs a single SQL statement."""
    context = _context()
    with _fail_on_error():
        settings = _settings(url, token, project_id, headers)
        bundle = create_issue_from_statement(
            build_client(settings),
            database=database,
            statement=statement,
            title=title,
            description=description,
            assignee=assignee,
        )
    issue_url = settings.issue_url(bundle.issue.uid)
    write_outputs({"issue": bundle.issue.to_wire(), "issue-url": issue_url}, context.output_path)
    logger.info("Successfully created issue at %s", issue_url)


@app.command("upsert-issue")
def upsert_issue(
    url: str = URL_OPTION,
    token: str = TOKEN_OPTION,
    project_id: str = PROJECT_OPTION,
    github_token: str = GITHUB_TOKEN_OPTION,
    pattern: str = PATTERN_OPTION,
    database: str = typer.Option(..., "--database", envvar="INPUT_DATABASE"),
    title: str = TITLE_OPTION,
    description: str = typer.Option(..., "--description", envvar="INPUT_DESCRIPTION"),
    assignee: str = typer.Option("", "--assignee", envvar="INPUT_ASSIGNEE"),
    headers: str = HEADERS_OPTION,
) -> None:
    """Create the pull request's migration issue, or push changed files into the existing plan."""
    context = _context()
    with _fail_on_error():
        settings = _settings(url, token, project_id, headers)
        pull_request = context.pull_request()
        changes = collect_changes(
            _files_client(github_token),
            pull_request,
            pattern=pattern,
            database=database,
            root=context.workspace,
        )
        result = upsert_issue_workflow(
            build_client(settings),
            changes,
            title=title,
            description=description,
            assignee=assignee,
            pull_request_url=pull_request.html_url,
        )

    if not result.ok:
        logger.error("%s", result.message)
        raise typer.Exit(code=1)

    outputs: dict[str, Any] = {"status": result.status}
    if result.issue is not None:
        issue_url = settings.issue_url(result.issue.uid)
        outputs["issue"] = result.issue.to_wire()
        outputs["issue-url"] = issue_url
        logger.info("Visit %s", issue_url)
    write_outputs(outputs, context.output_path)


@app.command("check-issue-status")
def check_issue_status(
    url: str = URL_OPTION,
    token: str = TOKEN_OPTION,
    project_id: str = PROJECT_OPTION,
    github_token: str = GITHUB_TOKEN_OPTION,
    pattern: str = PATTERN_OPTION,
    title: str = TITLE_OPTION,
    headers: str = HEADERS_OPTION,
) -> None:
    """Fail unless the issue is done and its rollout matches the pull request's files."""
    context = _context()
    with _fail_on_error():
        settings = _settings(url, token, project_id, headers)
        pull_request = context.pull_request()
        changes = collect_changes(
            _files_client(github_token),
            pull_request,
            pattern=pattern,
            database="",
            root=context.workspace,
        )
        result = check_issue_status_workflow(build_client(settings), title, changes)

    outputs: dict[str, Any] = {"issue": result.issue.to_wire()}
    if result.plan is not None:
        outputs["plan"] = result.plan.to_wire()
    if result.rollout is not None:
        outputs["rollout"] = result.rollout.to_wire()
        outputs["rollout-details"] = result.details
    write_outputs(outputs, context.output_path)
    logger.info("Visit %s", settings.issue_url(result.issue.uid))
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("list-changes")
def list_changes(
    github_token: str = GITHUB_TOKEN_OPTION,
    pattern: str = PATTERN_OPTION,
) -> None:
    """Print the content of every changed file that matches the pattern."""
    context = _context()
    with _fail_on_error():
        pull_request = context.pull_request()
        changed = _files_client(github_token).list_changed_files(
            pull_request.owner, pull_request.repo, pull_request.number
        )
    typer.echo(f"All changed files {changed}")
    for file in match_migration_files(pattern, changed, context.workspace):
        typer.echo(f"Content of {file}:")
        typer.echo((context.workspace / file).read_text(encoding="utf-8", errors="replace"))


if __name__ == "__main__":
    app()
