import logging
from pathlib import Path
from typing import Any, Callable

import click
import yaml
from pydantic import BaseModel

from convflow.application.commands import (
    AddFeedback,
    AnswerQuestion,
    CancelExecution,
    Command,
    CompleteClarification,
    CompleteExecution,
    ConfirmPlan,
    ConfirmSelection,
    ExitWorkflow,
    GoBack,
    PauseExecution,
    RemoveTask,
    RequestNewTask,
    RestoreSession,
    ResumeExecution,
    SetCurrentTask,
    SetNextActions,
    SetPlan,
    SetQuestions,
    SetReview,
    StartExecution,
    StartWorkflow,
    SummarizeExecution,
    ToggleOption,
    UpdatePlan,
    UpdateTaskStatus,
)
from convflow.application.config_loader import load_config
from convflow.application.config_models import ConvflowConfig
from convflow.domain.models.workflow_state import ConversationPhase, TaskStatus
from convflow.interface.cli.output_models import (
    AnalyzeOutput,
    CommandOutput,
    KeysOutput,
    ProgressSummary,
    ShowOutput,
    StatusOutput,
)

logger = logging.getLogger(__name__)


def _json_emit(model: BaseModel) -> None:
    # Single-line JSON, omit None fields.
    click.echo(model.model_dump_json(exclude_none=True), nl=True)


def _get_json_mode(ctx: click.Context) -> bool:
    obj = ctx.obj or {}
    return bool(obj.get("json", False))


def _format_error(e: Exception) -> str:
    """Format exception into user-friendly message."""
    if isinstance(e, FileNotFoundError):
        return f"File not found: {e.filename}" if e.filename else str(e)
    if isinstance(e, KeyError):
        return f"Missing required field: {e.args[0]}"
    return str(e)


def _configure_logging(cfg: ConvflowConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.getLevelName(cfg.log_level)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger("convflow").setLevel(level)


def _load_cfg(ctx: click.Context) -> ConvflowConfig:
    obj = ctx.obj or {}
    cfg = load_config(
        project_root=Path.cwd(),
        user_home=Path.home(),
        overrides=obj.get("overrides"),
    )
    _configure_logging(cfg, bool(obj.get("verbose")))
    return cfg


def _session_store(cfg: ConvflowConfig):
    from convflow.domain.persistence.session_store import SessionStore

    return SessionStore(sessions_root=cfg.sessions_root, storage_key=cfg.storage_key)


def _orchestrator(ctx: click.Context):
    from convflow.application.workflow_orchestrator import WorkflowOrchestrator
    from convflow.domain.events.emitter import WorkflowEventEmitter

    cfg = _load_cfg(ctx)

    event_emitter = WorkflowEventEmitter()
    if (ctx.obj or {}).get("events"):
        from convflow.domain.events.stderr_observer import StderrEventObserver
        event_emitter.subscribe(StderrEventObserver())

    return WorkflowOrchestrator(
        session_store=_session_store(cfg),
        engine_config=cfg.engine,
        event_emitter=event_emitter,
    )


def _load_payload(path: Path) -> Any:
    """Read a YAML or JSON payload file."""
    raw = path.read_text(encoding="utf-8")
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ValueError(f"Malformed payload file {path}: {e}") from e


def _run_command(ctx: click.Context, name: str, build: Callable[[], Command]) -> None:
    """Build and execute one command, report the outcome.

    Exit codes: 0 applied/unchanged, 2 rejected, 1 error.
    """
    try:
        orchestrator = _orchestrator(ctx)
        result = orchestrator.execute(build())
        exit_code = 2 if result.rejected else 0

        if _get_json_mode(ctx):
            _json_emit(
                CommandOutput(
                    command=name,
                    exit_code=exit_code,
                    outcome=result.outcome.value,
                    phase=result.phase.value,
                    session_id=result.session.session_id or None,
                    reason=result.reason,
                )
            )
            raise click.exceptions.Exit(exit_code)

        click.echo(f"outcome={result.outcome.value} phase={result.phase.value}")
        if result.reason:
            click.echo(f"reason: {result.reason}")
        if exit_code:
            raise click.exceptions.Exit(exit_code)

    except click.exceptions.Exit:
        raise
    except Exception as e:
        logger.debug(f"Command '{name}' failed", exc_info=True)
        if _get_json_mode(ctx):
            _json_emit(CommandOutput(command=name, exit_code=1, error=_format_error(e)))
            raise click.exceptions.Exit(1)
        raise click.ClickException(_format_error(e)) from e


@click.group(help="Conversation workflow engine CLI.")
@click.option("--json", "json_output", is_flag=True, help="Emit machine-readable JSON on stdout.")
@click.option(
    "--sessions-root",
    "sessions_root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding session snapshots (overrides config).",
)
@click.option("--key", "storage_key", type=str, default=None, help="Snapshot storage key.")
@click.option("--events", is_flag=True, help="Emit workflow events to stderr.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    sessions_root: Path | None,
    storage_key: str | None,
    events: bool,
    verbose: bool,
) -> None:
    ctx.ensure_object(dict)
    ctx.obj["json"] = bool(json_output)
    ctx.obj["events"] = bool(events)
    ctx.obj["verbose"] = bool(verbose)
    ctx.obj["overrides"] = {
        "sessions_root": str(sessions_root) if sessions_root else None,
        "storage_key": storage_key,
    }


# ============================================================================
# Session lifecycle
# ============================================================================


@cli.command("start")
@click.argument("request", type=str)
@click.pass_context
def start_cmd(ctx: click.Context, request: str) -> None:
    """Start a workflow for REQUEST."""
    _run_command(ctx, "start", lambda: StartWorkflow(original_request=request))


@cli.command("new-task")
@click.argument("request", type=str, required=False, default="")
@click.pass_context
def new_task_cmd(ctx: click.Context, request: str) -> None:
    """Leave review and begin a new clarification round."""
    _run_command(ctx, "new-task", lambda: RequestNewTask(original_request=request))


@cli.command("back")
@click.pass_context
def back_cmd(ctx: click.Context) -> None:
    """Go back one phase."""
    _run_command(ctx, "back", GoBack)


@cli.command("exit")
@click.pass_context
def exit_cmd(ctx: click.Context) -> None:
    """Exit the workflow and clear the stored session."""
    _run_command(ctx, "exit", ExitWorkflow)


@cli.command("restore")
@click.argument("snapshot_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def restore_cmd(ctx: click.Context, snapshot_file: Path) -> None:
    """Replace the session with SNAPSHOT_FILE."""
    _run_command(
        ctx,
        "restore",
        lambda: RestoreSession(snapshot=snapshot_file.read_text(encoding="utf-8")),
    )


# ============================================================================
# Clarification
# ============================================================================


@cli.command("questions")
@click.argument("questions_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def questions_cmd(ctx: click.Context, questions_file: Path) -> None:
    """Install clarification questions from a YAML/JSON file."""

    def build() -> Command:
        data = _load_payload(questions_file)
        if isinstance(data, dict):
            data = data.get("questions", [])
        return SetQuestions(questions=data or [])

    _run_command(ctx, "questions", build)


@cli.command("answer")
@click.argument("question_id", type=str)
@click.argument("values", nargs=-1, required=True)
@click.option("--multi", is_flag=True, help="Treat the answer as a list even with one value.")
@click.pass_context
def answer_cmd(ctx: click.Context, question_id: str, values: tuple[str, ...], multi: bool) -> None:
    """Answer QUESTION_ID. Several VALUES form a multi-select answer."""
    answer: str | list[str] = list(values) if multi or len(values) > 1 else values[0]
    _run_command(ctx, "answer", lambda: AnswerQuestion(question_id=question_id, answer=answer))


@cli.command("toggle")
@click.argument("question_id", type=str)
@click.argument("option", type=str)
@click.pass_context
def toggle_cmd(ctx: click.Context, question_id: str, option: str) -> None:
    """Toggle OPTION in a multi-select draft."""
    _run_command(ctx, "toggle", lambda: ToggleOption(question_id=question_id, option=option))


@cli.command("confirm-selection")
@click.argument("question_id", type=str)
@click.pass_context
def confirm_selection_cmd(ctx: click.Context, question_id: str) -> None:
    """Commit the multi-select draft of QUESTION_ID as its answer."""
    _run_command(ctx, "confirm-selection", lambda: ConfirmSelection(question_id=question_id))


@cli.command("complete-clarification")
@click.option("--force", is_flag=True, help="Complete even with unanswered questions.")
@click.pass_context
def complete_clarification_cmd(ctx: click.Context, force: bool) -> None:
    """Move on to planning."""
    _run_command(ctx, "complete-clarification", lambda: CompleteClarification(force=force))


# ============================================================================
# Planning
# ============================================================================


@cli.command("plan")
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def plan_cmd(ctx: click.Context, plan_file: Path) -> None:
    """Install a new plan from a YAML/JSON file."""
    _run_command(ctx, "plan", lambda: SetPlan(plan=_load_payload(plan_file)))


@cli.command("update-plan")
@click.argument("update_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def update_plan_cmd(ctx: click.Context, update_file: Path) -> None:
    """Merge title/description/tasks from a YAML/JSON file into the plan."""
    _run_command(ctx, "update-plan", lambda: UpdatePlan(update=_load_payload(update_file)))


@cli.command("feedback")
@click.argument("text", type=str)
@click.pass_context
def feedback_cmd(ctx: click.Context, text: str) -> None:
    """Record a plan revision request."""
    _run_command(ctx, "feedback", lambda: AddFeedback(text=text))


@cli.command("remove-task")
@click.argument("task_id", type=str)
@click.pass_context
def remove_task_cmd(ctx: click.Context, task_id: str) -> None:
    """Remove TASK_ID from the unconfirmed plan."""
    _run_command(ctx, "remove-task", lambda: RemoveTask(task_id=task_id))


@cli.command("confirm")
@click.pass_context
def confirm_cmd(ctx: click.Context) -> None:
    """Confirm the plan and enter execution."""
    _run_command(ctx, "confirm", ConfirmPlan)


# ============================================================================
# Execution
# ============================================================================


@cli.command("exec-start")
@click.pass_context
def exec_start_cmd(ctx: click.Context) -> None:
    """Stamp the execution start time."""
    _run_command(ctx, "exec-start", StartExecution)


@cli.command("task")
@click.argument("task_id", type=str)
@click.argument("status", type=click.Choice([s.value for s in TaskStatus]))
@click.option("--result", type=str, default=None)
@click.option("--error", type=str, default=None)
@click.pass_context
def task_cmd(
    ctx: click.Context,
    task_id: str,
    status: str,
    result: str | None,
    error: str | None,
) -> None:
    """Report STATUS for TASK_ID."""
    _run_command(
        ctx,
        "task",
        lambda: UpdateTaskStatus(
            task_id=task_id, status=TaskStatus(status), result=result, error=error
        ),
    )


@cli.command("current")
@click.argument("task_id", type=str, required=False)
@click.pass_context
def current_cmd(ctx: click.Context, task_id: str | None) -> None:
    """Point at the task being executed; no TASK_ID clears the pointer."""
    _run_command(ctx, "current", lambda: SetCurrentTask(task_id=task_id))


@cli.command("pause")
@click.pass_context
def pause_cmd(ctx: click.Context) -> None:
    _run_command(ctx, "pause", PauseExecution)


@cli.command("resume")
@click.pass_context
def resume_cmd(ctx: click.Context) -> None:
    _run_command(ctx, "resume", ResumeExecution)


@cli.command("cancel")
@click.pass_context
def cancel_cmd(ctx: click.Context) -> None:
    _run_command(ctx, "cancel", CancelExecution)


@cli.command("complete")
@click.pass_context
def complete_cmd(ctx: click.Context) -> None:
    _run_command(ctx, "complete", CompleteExecution)


# ============================================================================
# Review
# ============================================================================


@cli.command("review")
@click.argument(
    "review_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=False,
)
@click.option("--auto", is_flag=True, help="Assemble the review from execution outcomes.")
@click.pass_context
def review_cmd(ctx: click.Context, review_file: Path | None, auto: bool) -> None:
    """Install the review from REVIEW_FILE, or assemble it with --auto."""
    if auto == (review_file is not None):
        raise click.UsageError("Pass either REVIEW_FILE or --auto")

    if auto:
        _run_command(ctx, "review", SummarizeExecution)
        return

    def build() -> Command:
        data = _load_payload(review_file) or {}
        return SetReview(**data)

    _run_command(ctx, "review", build)


@cli.command("next-actions")
@click.argument("actions", nargs=-1, required=True)
@click.pass_context
def next_actions_cmd(ctx: click.Context, actions: tuple[str, ...]) -> None:
    """Set suggested follow-up ACTIONS on the review."""
    _run_command(ctx, "next-actions", lambda: SetNextActions(actions=list(actions)))


# ============================================================================
# Read-only
# ============================================================================


@cli.command("status")
@click.pass_context
def status_cmd(ctx: click.Context) -> None:
    """Show the phase, valid events and progress of the stored session."""
    try:
        from convflow.application.transitions import PHASE_DISPLAY_NAMES, PhaseGraph

        cfg = _load_cfg(ctx)
        session = _session_store(cfg).load()

        validation = PhaseGraph.validate_phase_completion(session)
        valid_events = [e.value for e in PhaseGraph.valid_events(session.phase)]

        progress: ProgressSummary | None = None
        if session.phase in (ConversationPhase.EXECUTION, ConversationPhase.REVIEW):
            p = session.execution.progress
            progress = ProgressSummary(
                total_tasks=p.total_tasks,
                completed_tasks=p.completed_tasks,
                failed_tasks=p.failed_tasks,
                percentage=p.percentage,
                current_task_id=p.current_task_id,
                is_paused=session.execution.is_paused,
                is_cancelled=session.execution.is_cancelled,
            )

        if _get_json_mode(ctx):
            _json_emit(
                StatusOutput(
                    exit_code=0,
                    phase=session.phase.value,
                    phase_name=PHASE_DISPLAY_NAMES[session.phase],
                    session_id=session.session_id or None,
                    is_workflow_active=session.is_workflow_active,
                    valid_events=valid_events,
                    completion_errors=validation.errors,
                    progress=progress,
                )
            )
            raise click.exceptions.Exit(0)

        click.echo(f"phase={session.phase.value} ({PHASE_DISPLAY_NAMES[session.phase]})")
        click.echo(f"session_id={session.session_id or '-'}")
        click.echo(f"active={'true' if session.is_workflow_active else 'false'}")
        click.echo(f"valid_events={','.join(valid_events)}")
        if progress is not None:
            click.echo(
                f"progress={progress.percentage}% "
                f"({progress.completed_tasks} done, {progress.failed_tasks} failed "
                f"of {progress.total_tasks})"
            )
            if progress.is_paused:
                click.echo("paused=true")
            if progress.is_cancelled:
                click.echo("cancelled=true")
        for err in validation.errors:
            click.echo(f"pending: {err}")

    except click.exceptions.Exit:
        raise
    except Exception as e:
        if _get_json_mode(ctx):
            _json_emit(StatusOutput(exit_code=1, error=_format_error(e)))
            raise click.exceptions.Exit(1)
        raise click.ClickException(_format_error(e)) from e


@cli.command("show")
@click.pass_context
def show_cmd(ctx: click.Context) -> None:
    """Print the full stored session."""
    try:
        cfg = _load_cfg(ctx)
        session = _session_store(cfg).load()

        if _get_json_mode(ctx):
            _json_emit(ShowOutput(exit_code=0, session=session.model_dump(mode="json")))
            raise click.exceptions.Exit(0)

        click.echo(yaml.safe_dump(session.model_dump(mode="json"), sort_keys=False))

    except click.exceptions.Exit:
        raise
    except Exception as e:
        if _get_json_mode(ctx):
            _json_emit(ShowOutput(exit_code=1, error=_format_error(e)))
            raise click.exceptions.Exit(1)
        raise click.ClickException(_format_error(e)) from e


@cli.command("keys")
@click.pass_context
def keys_cmd(ctx: click.Context) -> None:
    """List storage keys with a stored session."""
    try:
        cfg = _load_cfg(ctx)
        keys = _session_store(cfg).list_keys()

        if _get_json_mode(ctx):
            _json_emit(KeysOutput(exit_code=0, keys=keys, total=len(keys)))
            raise click.exceptions.Exit(0)

        if not keys:
            click.echo("No sessions found.")
            return
        for key in keys:
            click.echo(key)

    except click.exceptions.Exit:
        raise
    except Exception as e:
        if _get_json_mode(ctx):
            _json_emit(KeysOutput(exit_code=1, error=_format_error(e)))
            raise click.exceptions.Exit(1)
        raise click.ClickException(_format_error(e)) from e


@cli.command("analyze")
@click.argument("request", type=str)
@click.pass_context
def analyze_cmd(ctx: click.Context, request: str) -> None:
    """Judge whether REQUEST warrants the full workflow."""
    from convflow.application.complexity import analyze_request

    analysis = analyze_request(request)

    if _get_json_mode(ctx):
        _json_emit(
            AnalyzeOutput(
                exit_code=0,
                is_complex=analysis.is_complex,
                reason=analysis.reason,
                suggested_questions=[
                    q.model_dump(mode="json", exclude_none=True)
                    for q in analysis.suggested_questions
                ],
            )
        )
        raise click.exceptions.Exit(0)

    click.echo(f"complex={'true' if analysis.is_complex else 'false'}")
    click.echo(f"reason={analysis.reason}")
    for q in analysis.suggested_questions:
        click.echo(f"- [{q.id}] {q.question}")
