"""Tests for layered configuration, prompts and custom agents."""

import pytest
from pydantic import ValidationError

from agent_loop.core.config import (
    PROMPT_NAMES,
    AgentOptions,
    AppConfig,
    Mode,
    RunnerConfig,
    clear_config_cache,
    load_config,
    load_custom_agents,
    load_prompt,
    parse_frontmatter,
    strip_comments,
)


@pytest.fixture(autouse=True)
def _fresh_cache(monkeypatch):
    clear_config_cache()
    for key in ("AGENT_LOOP_MAX_ITERATIONS", "AGENT_LOOP_EXTERNAL_REVIEW_TOOL"):
        monkeypatch.delenv(key, raising=False)
    yield
    clear_config_cache()


@pytest.fixture
def layers(tmp_path):
    global_dir = tmp_path / "global"
    local_dir = tmp_path / "local"
    global_dir.mkdir()
    local_dir.mkdir()
    return global_dir, local_dir


class TestLoadConfig:
    """Tests for YAML layering."""

    def test_embedded_defaults(self, layers):
        global_dir, local_dir = layers
        config = load_config(global_dir=global_dir, local_dir=local_dir)

        assert config.max_iterations == 50
        assert config.external_review_tool == "codex"
        assert config.claude.error_patterns == ["You've hit your limit", "API Error:"]
        assert config.codex.error_patterns == ["Rate limit", "quota exceeded"]
        assert config.codex.sandbox == "read-only"
        for name in PROMPT_NAMES:
            assert getattr(config.prompts, name), f"embedded prompt {name} is empty"
        assert {a.name for a in config.custom_agents} == {"quality", "testing"}

    def test_local_overrides_global(self, layers):
        global_dir, local_dir = layers
        (global_dir / "config.yaml").write_text("max_iterations: 20\ntask_retry_count: 3\n")
        (local_dir / "config.yaml").write_text("max_iterations: 5\n")

        config = load_config(global_dir=global_dir, local_dir=local_dir)

        assert config.max_iterations == 5
        assert config.task_retry_count == 3

    def test_nested_sections_merge(self, layers):
        global_dir, local_dir = layers
        (local_dir / "config.yaml").write_text("codex:\n  model: o3\n")

        config = load_config(global_dir=global_dir, local_dir=local_dir)

        assert config.codex.model == "o3"
        assert config.codex.reasoning_effort == "xhigh"

    def test_env_var_expansion(self, layers, monkeypatch):
        global_dir, local_dir = layers
        monkeypatch.setenv("MY_REVIEW_SCRIPT", "/opt/review.sh")
        (local_dir / "config.yaml").write_text(
            "external_review_tool: custom\ncustom_review:\n  script: ${MY_REVIEW_SCRIPT}\n"
        )

        config = load_config(global_dir=global_dir, local_dir=local_dir)

        assert config.custom_review.script == "/opt/review.sh"

    def test_environment_overrides_yaml(self, layers, monkeypatch):
        global_dir, local_dir = layers
        (local_dir / "config.yaml").write_text("max_iterations: 5\n")
        monkeypatch.setenv("AGENT_LOOP_MAX_ITERATIONS", "9")

        config = load_config(global_dir=global_dir, local_dir=local_dir)

        assert config.max_iterations == 9

    def test_invalid_value_rejected(self, layers):
        global_dir, local_dir = layers
        (local_dir / "config.yaml").write_text("max_iterations: 0\n")

        with pytest.raises(ValidationError):
            load_config(global_dir=global_dir, local_dir=local_dir)

    def test_non_mapping_file_rejected(self, layers):
        global_dir, local_dir = layers
        (local_dir / "config.yaml").write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="must contain a mapping"):
            load_config(global_dir=global_dir, local_dir=local_dir)

    def test_missing_dirs_are_skipped(self, tmp_path):
        config = load_config(global_dir=tmp_path / "nope", local_dir=None)
        assert config.max_iterations == 50


class TestPrompts:
    """Tests for prompt template lookup."""

    def test_strip_comments(self):
        text = "# comment\nkeep\n   # indented comment\nalso keep\r\n"
        assert strip_comments(text) == "keep\nalso keep\n"

    def test_local_wins(self, layers):
        global_dir, local_dir = layers
        for base, body in ((global_dir, "global task"), (local_dir, "local task")):
            (base / "prompts").mkdir()
            (base / "prompts" / "task.txt").write_text(body)

        assert load_prompt("task", local_dir, global_dir) == "local task"

    def test_comment_only_file_falls_through(self, layers):
        global_dir, local_dir = layers
        (local_dir / "prompts").mkdir()
        (local_dir / "prompts" / "task.txt").write_text("# disabled override\n\n")
        (global_dir / "prompts").mkdir()
        (global_dir / "prompts" / "task.txt").write_text("global task")

        assert load_prompt("task", local_dir, global_dir) == "global task"

    def test_embedded_fallback(self, layers):
        global_dir, local_dir = layers
        prompt = load_prompt("task", local_dir, global_dir)

        assert "{{PLAN_FILE}}" in prompt
        assert "<<<TOOL:ALL_TASKS_DONE>>>" in prompt
        assert not any(line.startswith("#") for line in prompt.splitlines())


class TestCustomAgents:
    """Tests for custom agent files and frontmatter."""

    def test_parse_frontmatter(self):
        options, body = parse_frontmatter("---\nmodel: haiku\nagent: Explore\n---\nCheck things.")

        assert options == {"model": "haiku", "agent": "Explore"}
        assert body == "Check things."

    def test_no_frontmatter(self):
        assert parse_frontmatter("just a prompt") == ({}, "just a prompt")

    def test_unterminated_frontmatter_is_body(self):
        content = "---\nmodel: haiku\nno closing"
        assert parse_frontmatter(content) == ({}, content)

    def test_local_agents_replace_embedded_set(self, layers):
        global_dir, local_dir = layers
        (local_dir / "agents").mkdir()
        (local_dir / "agents" / "security.txt").write_text(
            "---\nmodel: opus\nagent: general-purpose\n---\nFind injection bugs."
        )

        agents = load_custom_agents(local_dir, global_dir)

        assert [a.name for a in agents] == ["security"]
        assert agents[0].options.model == "opus"
        assert agents[0].options.agent_type == "general-purpose"
        assert agents[0].prompt == "Find injection bugs."

    def test_invalid_model_dropped(self, layers):
        global_dir, local_dir = layers
        (global_dir / "agents").mkdir()
        (global_dir / "agents" / "perf.txt").write_text("---\nmodel: gpt-4\n---\nProfile it.")

        agents = load_custom_agents(local_dir, global_dir)

        assert agents[0].options.model is None
        assert agents[0].prompt == "Profile it."

    def test_comment_only_agent_uses_embedded_body(self, layers):
        global_dir, local_dir = layers
        (local_dir / "agents").mkdir()
        (local_dir / "agents" / "quality.txt").write_text("# keep the shipped one\n")

        agents = load_custom_agents(local_dir, global_dir)

        assert [a.name for a in agents] == ["quality"]
        assert agents[0].options.model == "sonnet"

    def test_agent_options_validation(self):
        with pytest.raises(ValidationError):
            AgentOptions(model="gpt-4")
        assert str(AgentOptions(model="haiku", agent_type="Explore")) == "model=haiku, agent=Explore"
        assert str(AgentOptions()) == "defaults"


class TestRunnerConfig:
    """Tests for the per-run snapshot."""

    def test_from_app_config_uses_loaded_values(self):
        app = AppConfig(max_iterations=12, task_retry_count=0, external_review_tool="none")

        config = RunnerConfig.from_app_config(app, mode=Mode.REVIEW, max_iterations=None)

        assert config.max_iterations == 12
        assert config.task_retry_count == 0
        assert config.external_review_tool == "none"
        assert config.mode == Mode.REVIEW

    def test_overrides_win(self):
        app = AppConfig(max_iterations=12, default_branch="main")

        config = RunnerConfig.from_app_config(app, max_iterations=3)

        assert config.max_iterations == 3
        assert config.default_branch == "main"

    def test_frozen(self):
        config = RunnerConfig()
        with pytest.raises(ValidationError):
            config.max_iterations = 3

    def test_validation(self):
        with pytest.raises(ValidationError):
            RunnerConfig(max_iterations=0)
        with pytest.raises(ValidationError):
            RunnerConfig(iteration_delay_ms=-1)
