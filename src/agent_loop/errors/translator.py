"""Translate technical errors to user-friendly messages."""

import re
from dataclasses import dataclass
from typing import List, Optional

from rich.markup import escape


@dataclass
class UserFriendlyError:
    """User-friendly error representation."""
    original_error: Exception
    title: str
    explanation: str
    actions: List[str]
    documentation: Optional[str] = None
    show_technical: bool = False


class ErrorTranslator:
    """Translate technical errors to user-friendly messages.

    Patterns are matched in order against "<ExceptionType>: <message>".
    """

    ERROR_PATTERNS = {
        # Cancellation (Ctrl+C / SIGTERM)
        r"ExecutionCancelledError|cancelled": {
            "title": "Run cancelled",
            "explanation": "The run was interrupted before it finished. Any running tool was stopped together with its child processes.",
            "actions": [
                "Re-run the same command to resume; the plan file tracks finished tasks",
                "Check the progress file for the last completed iteration",
            ],
        },

        # Configured error pattern found in tool output
        r"PatternMatchError|detected error pattern": {
            "title": "Tool reported a blocking error",
            "explanation": "A configured error pattern (usually a usage limit or API error) appeared in the tool output, so the run stopped instead of retrying.",
            "actions": [
                "Check your usage: claude /usage or codex /status",
                "Wait for the limit to reset, then re-run",
                "Adjust error_patterns in config.yaml if this is a false positive",
            ],
        },

        r"rate.*limit|429|too many requests|quota exceeded": {
            "title": "API rate limit exceeded",
            "explanation": "One of the agent tools hit a rate limit or quota.",
            "actions": [
                "Wait 15-60 minutes for the limit to reset",
                "Raise iteration_delay_ms in config.yaml to slow the loop down",
            ],
        },

        r"user rejected plan|UserRejectedPlanError": {
            "title": "Plan rejected",
            "explanation": "You rejected the plan draft, so no plan file was written.",
            "actions": [
                "Re-run with a more specific --plan description",
                "Choose 'revise' next time to give feedback instead",
            ],
        },

        r"start claude|claude.*not found|No such file.*claude": {
            "title": "Claude CLI not available",
            "explanation": "The claude command could not be started.",
            "actions": [
                "Install the claude CLI and make sure it is on PATH",
                "Or set claude.command in config.yaml",
            ],
        },

        r"start codex|codex.*not found|No such file.*codex": {
            "title": "Codex CLI not available",
            "explanation": "The codex command could not be started.",
            "actions": [
                "Install the codex CLI and make sure it is on PATH",
                "Or switch reviewers: external_review_tool: custom or none",
            ],
        },

        r"custom review script not configured|start custom": {
            "title": "Custom review script missing",
            "explanation": "external_review_tool is 'custom' but the script is not set or cannot be run.",
            "actions": [
                "Set custom_review.script in config.yaml",
                "Make sure the script is executable",
            ],
        },

        r"plan file required|plan description required": {
            "title": "Missing plan",
            "explanation": "This mode needs a plan to work from.",
            "actions": [
                "Pass a plan file: agent-loop docs/plans/feature.md",
                "Or create one first: agent-loop --plan \"describe the feature\"",
                "Or review the current branch only: agent-loop --review",
            ],
        },

        r"max (plan )?iterations \(\d+\) reached": {
            "title": "Iteration limit reached",
            "explanation": "The agent did not finish within the configured number of iterations.",
            "actions": [
                "Check the progress file to see where it got stuck",
                "Raise the limit: --max-iterations N",
                "Split the plan into smaller tasks",
            ],
        },

        r"FAILED signal received": {
            "title": "Agent reported failure",
            "explanation": "The agent signalled that it could not complete the work.",
            "actions": [
                "Read the last iteration in the progress file for the reason",
                "Fix the blocker by hand, then re-run",
            ],
        },

        # Config errors
        r"ValidationError|config.*invalid|yaml": {
            "title": "Invalid configuration",
            "explanation": "A config.yaml layer or AGENT_LOOP_* environment variable has an invalid value.",
            "actions": [
                "Check ~/.config/agent-loop/config.yaml and .agent-loop/config.yaml",
                "Remove the offending key to fall back to the default",
            ],
        },
    }

    def translate(self, error: Exception) -> UserFriendlyError:
        """Convert exception to user-friendly format."""
        error_str = str(error)
        error_type = type(error).__name__
        full_error = f"{error_type}: {error_str}"

        for pattern, translation in self.ERROR_PATTERNS.items():
            if re.search(pattern, full_error, re.IGNORECASE):
                return UserFriendlyError(
                    original_error=error,
                    title=translation["title"],
                    explanation=translation["explanation"],
                    actions=translation["actions"],
                    documentation=translation.get("documentation"),
                    show_technical=False,
                )

        # Fallback for unknown errors
        return UserFriendlyError(
            original_error=error,
            title="Unexpected error",
            explanation=error_str,
            actions=[
                "Re-run with --debug for details",
                "Check the progress file for the last tool output",
            ],
            show_technical=True,
        )

    def format_for_cli(self, friendly_error: UserFriendlyError) -> str:
        """Format error for CLI display (rich markup)."""
        output = f"[bold red]{escape(friendly_error.title)}[/]\n\n"
        output += f"{escape(friendly_error.explanation)}\n\n"

        output += "[bold]How to fix:[/]\n"
        for i, action in enumerate(friendly_error.actions, 1):
            output += f"  {i}. {escape(action)}\n"

        if friendly_error.documentation:
            output += f"\n[dim]Learn more: {escape(friendly_error.documentation)}[/]"

        if friendly_error.show_technical:
            output += (
                f"\n\n[dim]Technical details:[/]\n"
                f"[dim]{escape(str(friendly_error.original_error))}[/]"
            )

        return output
