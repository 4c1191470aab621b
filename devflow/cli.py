"""CLI entrypoint for devflow."""

from __future__ import annotations

import json
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Any, Optional

import click
import yaml

from devflow.core.exceptions import DevflowError, WorkflowNotFoundError
from devflow.core.models import ApprovalStatus, Task, WorkflowInput, WorkflowOutput, WorkflowPhase

# Handle of the run this process is driving, for Ctrl+C
_active_handle = None
_cancel_sent = False
# Only a database-backed history outlives this process
_history_persisted = False

APPROVAL_POLL_SECONDS = 0.5


def _sigint_handler(signum: int, frame: Any) -> None:
    """First Ctrl+C cancels the active run; a second one exits immediately."""
    global _cancel_sent
    click.echo("\n")
    if _active_handle is None or _active_handle.done() or _cancel_sent:
        click.echo(click.style("Interrupted.", fg="yellow", bold=True))
        if _active_handle is not None and _history_persisted:
            click.echo(
                "\nRun history is journaled. Resume with:\n"
                f"  devflow resume --workflow-id {_active_handle.workflow_id}"
            )
        elif _active_handle is not None:
            click.echo("\nRun history is held in memory and cannot be resumed after exit.")
        sys.exit(130)
    click.echo(click.style("Cancelling run (Ctrl+C again to exit now)...", fg="yellow", bold=True))
    _cancel_sent = True
    _active_handle.cancel()


def _setup_logging(verbose: bool = False, env: Optional[str] = None) -> None:
    """Apply logging configuration from config/default.yaml."""
    from devflow.core.config import load_config

    try:
        config = load_config(env=env)
        level_name = config.logging.level
        fmt = config.logging.format
    except DevflowError:
        level_name = "INFO"
        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr)


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose (DEBUG) logging.")
@click.option("--env", default=None, help="Config overlay to apply (config/<env>.yaml).")
@click.option(
    "--config-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory holding default.yaml, models.yaml and prompts/.",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, env: Optional[str], config_dir: Optional[Path]) -> None:
    """devflow: durable plan / implement / verify orchestration."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["env"] = env
    ctx.obj["config_dir"] = config_dir
    _setup_logging(verbose=verbose, env=env)
    signal.signal(signal.SIGINT, _sigint_handler)


def _load_task(path: Path) -> Task:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise click.ClickException("Task file must be a JSON/YAML object.")
    if "acceptanceCriteria" in data:
        data.setdefault("acceptance_criteria", data.pop("acceptanceCriteria"))
    if "filesToModify" in data:
        data.setdefault("files_to_modify", data.pop("filesToModify"))
    return Task.model_validate(data)


def _build_bundle(ctx: click.Context):
    from devflow.core.factory import ComponentFactory

    global _history_persisted
    try:
        bundle = ComponentFactory.create(config_dir=ctx.obj["config_dir"], env=ctx.obj["env"])
    except DevflowError as e:
        raise click.ClickException(str(e)) from e
    _history_persisted = bundle.config.workflow.history_backend == "postgresql"
    return bundle


def _close_bundle(bundle) -> None:
    from devflow.core.factory import ComponentFactory

    ComponentFactory.close(bundle)


def _echo_output(output: WorkflowOutput) -> None:
    color = {"completed": "green", "cancelled": "yellow"}.get(output.status.value, "red")
    click.echo(click.style(f"Status: {output.status.value}", fg=color, bold=True), err=True)
    click.echo(output.model_dump_json(indent=2, exclude_none=True))


def _awaiting_decision(handle) -> bool:
    state = handle.query_state()
    return state.phase == WorkflowPhase.AWAITING_APPROVAL and state.approval_status == ApprovalStatus.PENDING


def _prompt_for_approval(handle) -> None:
    """Wait until the run asks for approval, then ask the operator.

    A resumed run may already carry a recorded decision, in which case the
    operator is not asked again.
    """
    while not handle.done():
        if _awaiting_decision(handle):
            break
        state = handle.query_state()
        if state.phase not in (WorkflowPhase.PLANNING,):
            return
        time.sleep(APPROVAL_POLL_SECONDS)
    else:
        return

    plan = handle.query_state().plan
    click.echo(click.style("\nPlan ready for review", bold=True))
    if plan is not None:
        click.echo(plan.summary() or "(no file changes proposed)")
        click.echo(f"\nVerification: {plan.verification_plan}")
        click.echo(f"Estimated effort: {plan.estimated_effort}\n")

    approved = click.confirm("Approve this plan?", default=True)
    comment = None
    if not approved:
        comment = click.prompt("Reason", default="", show_default=False) or None
    if handle.done() or not _awaiting_decision(handle):
        return
    handle.approve(approved, comment)


@cli.command("run")
@click.option(
    "--task",
    "task_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to JSON or YAML task definition.",
)
@click.option("--workflow-id", default=None, help="Workflow ID (default: develop-<task id>).")
@click.option("--require-approval", is_flag=True, default=False, help="Pause for plan approval.")
@click.option("--no-notify", is_flag=True, default=False, help="Skip the success notification.")
@click.option("--fix-of", "fix_of", default=None, help="Run as a fix task for this root task ID.")
@click.pass_context
def run_cmd(
    ctx: click.Context,
    task_path: Path,
    workflow_id: Optional[str],
    require_approval: bool,
    no_notify: bool,
    fix_of: Optional[str],
) -> None:
    """Run one develop-feature orchestration in this process."""
    global _active_handle
    task = _load_task(task_path)
    workflow_input = WorkflowInput(
        task=task,
        skip_approval=not require_approval,
        notify_on_complete=not no_notify,
        is_fix_task=fix_of is not None,
        original_task_id=fix_of,
    )
    workflow_id = workflow_id or f"develop-{task.id}"

    bundle = _build_bundle(ctx)
    try:
        try:
            handle = bundle.engine.start(workflow_id, workflow_input)
        except DevflowError as e:
            raise click.ClickException(str(e)) from e
        _active_handle = handle
        click.echo(f"Started workflow {workflow_id}", err=True)

        if require_approval:
            _prompt_for_approval(handle)

        try:
            output = handle.result()
        except DevflowError as e:
            raise click.ClickException(f"Workflow {workflow_id} did not finish: {e}") from e
        _echo_output(output)
    finally:
        _active_handle = None
        _close_bundle(bundle)


@cli.command("resume")
@click.option("--workflow-id", required=True, help="Workflow ID to replay and continue.")
@click.pass_context
def resume_cmd(ctx: click.Context, workflow_id: str) -> None:
    """Replay a journaled run and continue it from where it stopped."""
    global _active_handle
    bundle = _build_bundle(ctx)
    try:
        try:
            handle = bundle.engine.resume(workflow_id)
            _active_handle = handle
            if not bundle.history_store.get_record(workflow_id).input.skip_approval:
                _prompt_for_approval(handle)
            output = handle.result()
        except WorkflowNotFoundError as e:
            if not _history_persisted:
                raise click.ClickException(
                    f"{e}. History is held in memory; set workflow.history_backend to postgresql "
                    "to resume runs across processes."
                ) from e
            raise click.ClickException(str(e)) from e
        except DevflowError as e:
            raise click.ClickException(str(e)) from e
        _echo_output(output)
    finally:
        _active_handle = None
        _close_bundle(bundle)


@cli.command("status")
@click.option("--workflow-id", required=True, help="Workflow ID to inspect.")
@click.pass_context
def status_cmd(ctx: click.Context, workflow_id: str) -> None:
    """Print the persisted state of a run."""
    bundle = _build_bundle(ctx)
    try:
        try:
            snapshot = bundle.engine.snapshot(workflow_id)
            record = bundle.history_store.get_record(workflow_id)
        except DevflowError as e:
            raise click.ClickException(str(e)) from e
        click.echo(f"Workflow:  {workflow_id}")
        click.echo(f"Task:      {snapshot.input.task.id} ({snapshot.input.task.title})")
        click.echo(f"Status:    {record.status or 'unknown'}")
        click.echo(f"Events:    {len(snapshot.history)}")
        if snapshot.state is not None:
            click.echo(snapshot.state.model_dump_json(indent=2, exclude_none=True))
    finally:
        _close_bundle(bundle)


@cli.command("list")
@click.option("--limit", default=20, show_default=True, help="Number of runs to show.")
@click.pass_context
def list_cmd(ctx: click.Context, limit: int) -> None:
    """List recent runs, newest first."""
    bundle = _build_bundle(ctx)
    try:
        try:
            runs = bundle.history_store.list_runs(limit)
        except DevflowError as e:
            raise click.ClickException(str(e)) from e
        if not runs:
            click.echo("No runs recorded.")
            return
        for run in runs:
            click.echo(f"{run.workflow_id:<32} {run.task_id:<24} {run.status or 'unknown'}")
    finally:
        _close_bundle(bundle)


@cli.command("chain-depth")
@click.argument("root_task_id")
@click.pass_context
def chain_depth_cmd(ctx: click.Context, root_task_id: str) -> None:
    """Print the fix-task chain depth for a root task."""
    bundle = _build_bundle(ctx)
    try:
        try:
            depth = bundle.chain_tracker.current_depth(root_task_id)
        except DevflowError as e:
            raise click.ClickException(str(e)) from e
        click.echo(str(depth))
    finally:
        _close_bundle(bundle)


@cli.command("cascade")
@click.argument("role")
@click.pass_context
def cascade_cmd(ctx: click.Context, role: str) -> None:
    """Print the backend fallback order for a role."""
    from devflow.core.config import load_cascade_registry

    try:
        backends = load_cascade_registry(config_dir=ctx.obj["config_dir"]).get_cascade(role)
    except DevflowError as e:
        raise click.ClickException(str(e)) from e
    for index, backend in enumerate(backends, 1):
        target = " ".join(backend.command) if backend.kind == "cli" and backend.command else backend.model
        click.echo(f"{index}. {backend.name} [{backend.kind}] {target}")


@cli.command("init-db")
@click.pass_context
def init_db_cmd(ctx: click.Context) -> None:
    """Apply the database schema."""
    from devflow.core.config import load_config
    from devflow.db.engine import DatabaseEngine

    try:
        config = load_config(config_dir=ctx.obj["config_dir"], env=ctx.obj["env"])
        engine = DatabaseEngine(config.database)
        try:
            engine.initialize_schema()
        finally:
            engine.close()
    except DevflowError as e:
        raise click.ClickException(str(e)) from e
    click.echo("Schema applied.")


def main() -> None:
    """Entry point used by `devflow` console script."""
    from dotenv import load_dotenv
    load_dotenv(Path(__file__).parent.parent / ".env", override=True)
    cli()


if __name__ == "__main__":
    main()
