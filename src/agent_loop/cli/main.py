"""Command-line entry point for agent-loop."""

import asyncio
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from pydantic import ValidationError
from rich.console import Console

from ..core.config import LOCAL_CONFIG_DIR, Mode, RunnerConfig, load_config
from ..core.runner import Runner, RunnerError
from ..errors import ErrorTranslator
from ..executor import ExecutionCancelledError, ExecutorError, PatternMatchError
from ..utils.progress import ProgressLogger, default_progress_path
from ..utils.rich_logging import setup_logging
from ..utils.subprocess_utils import detect_default_branch
from .input_collector import TerminalInputCollector

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


console = Console(stderr=True)
translator = ErrorTranslator()


def _print_error(error: Exception) -> None:
    friendly = translator.translate(error)
    console.print()
    console.print(translator.format_for_cli(friendly))


def select_mode(review: bool, external_only: bool, tasks_only: bool, plan: Optional[str]) -> Mode:
    """Map the mutually exclusive mode flags to a Mode."""
    chosen = [
        name for name, enabled in (
            ("--review", review),
            ("--external-only", external_only),
            ("--tasks-only", tasks_only),
            ("--plan", plan is not None),
        ) if enabled
    ]
    if len(chosen) > 1:
        raise click.UsageError(f"{' and '.join(chosen)} cannot be combined")
    if review:
        return Mode.REVIEW
    if external_only:
        return Mode.EXTERNAL_REVIEW_ONLY
    if tasks_only:
        return Mode.TASKS_ONLY
    if plan is not None:
        return Mode.PLAN
    return Mode.FULL


async def run_loop(
    config: RunnerConfig,
    log: ProgressLogger,
    cancel: Optional[asyncio.Event] = None,
) -> int:
    """Run one loop to completion and return the process exit code."""
    cancel = cancel or asyncio.Event()
    loop = asyncio.get_running_loop()

    def on_signal(signum: int) -> None:
        if not cancel.is_set():
            log.warn(f"received {signal.Signals(signum).name}, stopping...")
        cancel.set()

    installed = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, on_signal, signum)
            installed.append(signum)
        except (NotImplementedError, RuntimeError):
            # no signal support on this loop/thread
            pass

    try:
        runner = Runner.create(
            config, log, input_collector=TerminalInputCollector(log.console)
        )
        await runner.run(cancel)
        return EXIT_OK
    except ExecutionCancelledError:
        log.warn("run cancelled")
        return EXIT_CANCELLED
    except (RunnerError, PatternMatchError, ExecutorError) as e:
        if cancel.is_set():
            log.warn("run cancelled")
            return EXIT_CANCELLED
        log.error(str(e))
        _print_error(e)
        return EXIT_FAILURE
    except click.Abort:
        log.warn("input aborted")
        return EXIT_CANCELLED
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)


@click.command()
@click.argument("plan_file", required=False, type=click.Path(dir_okay=False))
@click.option("--review", is_flag=True, help="Skip tasks; run the review pipeline on the current branch")
@click.option("--external-only", is_flag=True, help="Run only the external review loop and what follows it")
@click.option("--tasks-only", is_flag=True, help="Run the task phase only, no reviews")
@click.option("--plan", "plan_description", default=None, metavar="DESCRIPTION",
              help="Interactively create a plan for DESCRIPTION")
@click.option("--max-iterations", "-n", type=click.IntRange(min=1), default=None,
              help="Task iteration limit (review limits derive from it)")
@click.option("--config-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help=f"Project config directory (default: {LOCAL_CONFIG_DIR})")
@click.option("--debug", is_flag=True, help="Verbose diagnostic logging on stderr")
@click.option("--no-color", is_flag=True, help="Disable coloured output")
def cli(plan_file, review, external_only, tasks_only, plan_description, max_iterations,
        config_dir, debug, no_color):
    """agent-loop - drive coding agents through tasks, reviews and plan creation.

    With PLAN_FILE and no mode flag, executes the plan's tasks and then runs
    the full review pipeline.
    """
    mode = select_mode(review, external_only, tasks_only, plan_description)
    setup_logging("DEBUG" if debug else "WARNING", use_colors=not no_color)
    if no_color:
        console.no_color = True

    try:
        app_config = load_config(local_dir=config_dir or LOCAL_CONFIG_DIR)
    except (ValidationError, yaml.YAMLError, ValueError) as e:
        _print_error(e)
        sys.exit(EXIT_FAILURE)

    branch = app_config.default_branch or detect_default_branch()
    progress_path = default_progress_path(plan_file, mode)

    try:
        run_config = RunnerConfig.from_app_config(
            app_config,
            mode=mode,
            plan_file=plan_file,
            plan_description=plan_description or "",
            progress_path=str(progress_path),
            max_iterations=max_iterations,
            default_branch=branch,
            work_dir=os.getcwd(),
        )
    except ValidationError as e:
        _print_error(e)
        sys.exit(EXIT_FAILURE)

    with ProgressLogger(
        progress_path, plan_file=plan_file, mode=mode, branch=branch, no_color=no_color
    ) as log:
        log.print(f"progress log: {log.path}")
        exit_code = asyncio.run(run_loop(run_config, log))

    sys.exit(exit_code)


if __name__ == "__main__":
    cli()
