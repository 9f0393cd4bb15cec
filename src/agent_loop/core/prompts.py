"""Prompt template rendering.

Supported variables:

    {{PLAN_FILE}}        resolved plan path, or a note that there is none
    {{PROGRESS_FILE}}    progress log path
    {{GOAL}}             what the run is about
    {{DEFAULT_BRANCH}}   base branch for diffs
    {{DIFF_INSTRUCTION}} git command showing what to review this iteration
    {{PLAN_DESCRIPTION}} user request in plan mode
    {{CODEX_OUTPUT}}     reviewer findings (codex evaluation prompt)
    {{CUSTOM_OUTPUT}}    reviewer findings (custom evaluation prompt)
    {{agent:name}}       instruction to launch the named custom agent
"""

import re
from typing import Callable, Dict, Optional

from .config import CustomAgent, RunnerConfig
from .plan import resolve_plan_path

AGENT_REF_PATTERN = re.compile(r"\{\{agent:([a-zA-Z0-9_-]+)\}\}")

PREVIOUS_REVIEW_CONTEXT = """{prompt}

---
PREVIOUS REVIEW CONTEXT:
Claude (previous reviewer) responded to your findings:

{response}

Re-evaluate considering Claude's arguments. If Claude's fixes are correct, acknowledge them.
If Claude's arguments are invalid, explain why the issues still exist."""

PREVIOUS_DRAFT_FEEDBACK = """{prompt}

---
PREVIOUS DRAFT FEEDBACK:
The user reviewed your previous plan draft and asked for changes:

{feedback}

Revise the plan to address this feedback, then present the updated draft."""


class PromptBuilder:
    """Renders the configured templates for one run."""

    def __init__(self, config: RunnerConfig, on_message: Optional[Callable[[str], None]] = None):
        self.config = config
        self.prompts = config.app_config.prompts
        self._on_message = on_message
        self._agents: Dict[str, CustomAgent] = {
            agent.name: agent for agent in config.app_config.custom_agents
        }

    def _message(self, text: str) -> None:
        if self._on_message is not None:
            self._on_message(text)

    @property
    def default_branch(self) -> str:
        return self.config.default_branch or "master"

    def plan_file_ref(self) -> str:
        path = resolve_plan_path(self.config.plan_file)
        if path is None:
            return "(no plan file - reviewing current branch)"
        return str(path)

    def progress_file_ref(self) -> str:
        return self.config.progress_path or "(no progress file available)"

    def goal(self) -> str:
        if not self.config.plan_file:
            return f"current branch vs {self.default_branch}"
        return f"implementation of plan at {self.plan_file_ref()}"

    def diff_instruction(self, first_iteration: bool) -> str:
        if first_iteration:
            return f"git diff {self.default_branch}...HEAD"
        return "git diff"

    def replace_base_variables(self, prompt: str) -> str:
        return (
            prompt.replace("{{PLAN_FILE}}", self.plan_file_ref())
            .replace("{{PROGRESS_FILE}}", self.progress_file_ref())
            .replace("{{GOAL}}", self.goal())
            .replace("{{DEFAULT_BRANCH}}", self.default_branch)
        )

    @staticmethod
    def format_agent_expansion(agent: CustomAgent, prompt: str) -> str:
        subagent = agent.options.agent_type or "general-purpose"
        model_clause = f" with model={agent.options.model}" if agent.options.model else ""
        return (
            f"Use the Task tool{model_clause} to launch a {subagent} agent with this prompt:\n"
            f'"{prompt}"\n\n'
            "Report findings only - no positive observations."
        )

    def expand_agent_references(self, prompt: str) -> str:
        """Replace {{agent:name}} with a Task tool instruction.

        Unknown agents are left in place so the gap is visible.
        """
        if not self._agents:
            return prompt

        def expand(match: re.Match) -> str:
            name = match.group(1)
            agent = self._agents.get(name)
            if agent is None:
                self._message(f"[WARN] agent {name!r} not found, leaving reference unexpanded")
                return match.group(0)
            self._message(f"agent {name!r}: {agent.options}")
            # agent bodies get base variables only, no nested agent expansion
            return self.format_agent_expansion(agent, self.replace_base_variables(agent.prompt))

        return AGENT_REF_PATTERN.sub(expand, prompt)

    def render(self, template: str, first_iteration: Optional[bool] = None) -> str:
        prompt = self.replace_base_variables(template)
        if first_iteration is not None:
            prompt = prompt.replace("{{DIFF_INSTRUCTION}}", self.diff_instruction(first_iteration))
        return self.expand_agent_references(prompt)

    def task_prompt(self) -> str:
        return self.render(self.prompts.task)

    def review_first_prompt(self) -> str:
        return self.render(self.prompts.review_first, first_iteration=True)

    def review_second_prompt(self) -> str:
        return self.render(self.prompts.review_second, first_iteration=False)

    def finalize_prompt(self) -> str:
        return self.render(self.prompts.finalize)

    def external_review_prompt(self, tool: str, first_iteration: bool, previous_response: str) -> str:
        """Reviewer prompt, carrying the primary agent's last answer as context."""
        template = self.prompts.custom_review if tool == "custom" else self.prompts.codex_review
        prompt = self.render(template, first_iteration=first_iteration)
        if previous_response:
            prompt = PREVIOUS_REVIEW_CONTEXT.format(prompt=prompt, response=previous_response)
        return prompt

    def external_eval_prompt(self, tool: str, reviewer_output: str) -> str:
        """Prompt asking the primary agent to evaluate the reviewer's findings."""
        if tool == "custom":
            return self.render(self.prompts.custom_eval).replace("{{CUSTOM_OUTPUT}}", reviewer_output)
        return self.render(self.prompts.codex_eval).replace("{{CODEX_OUTPUT}}", reviewer_output)

    def plan_prompt(self, draft_feedback: str = "") -> str:
        prompt = self.prompts.make_plan.replace(
            "{{PLAN_DESCRIPTION}}", self.config.plan_description
        )
        prompt = self.replace_base_variables(prompt)
        if draft_feedback:
            prompt = PREVIOUS_DRAFT_FEEDBACK.format(prompt=prompt, feedback=draft_feedback)
        return prompt


def summarize_findings(output: str, limit: int = 5000) -> str:
    """Text before the first code fence, capped at limit characters.

    A fence at the very start is ignored, otherwise nothing would remain.
    """
    summary = output
    fence = summary.find("```")
    if fence > 0:
        summary = summary[:fence]
    if len(summary) > limit:
        summary = summary[:limit] + "..."
    return summary.strip()
