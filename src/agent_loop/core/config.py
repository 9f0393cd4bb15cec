"""Configuration loading and validation.

Settings come from YAML files layered embedded -> global -> local, with the
local file winning. Prompt templates and custom agents are plain-text files
looked up in the same directories.
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULTS_DIR = Path(__file__).resolve().parent.parent / "defaults"
GLOBAL_CONFIG_DIR = Path("~/.config/agent-loop").expanduser()
LOCAL_CONFIG_DIR = Path(".agent-loop")
CONFIG_FILE_NAME = "config.yaml"

PROMPT_NAMES = (
    "task",
    "review_first",
    "review_second",
    "codex_review",
    "codex_eval",
    "custom_review",
    "custom_eval",
    "make_plan",
    "finalize",
)


class ClaudeConfig(BaseModel):
    """Primary agent (claude CLI) settings."""
    command: str = "claude"
    args: str = "--dangerously-skip-permissions --output-format stream-json --verbose"
    error_patterns: List[str] = Field(default_factory=list)


class CodexConfig(BaseModel):
    """Secondary reviewer (codex CLI) settings."""
    enabled: bool = True
    command: str = "codex"
    model: str = "gpt-5.2-codex"
    reasoning_effort: str = "xhigh"
    timeout_ms: int = 3600000
    sandbox: str = "read-only"
    project_doc: Optional[str] = None
    error_patterns: List[str] = Field(default_factory=list)

    @field_validator('timeout_ms')
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"timeout_ms must be > 0, got {v}")
        return v


class CustomReviewConfig(BaseModel):
    """Custom review script settings."""
    script: str = ""
    error_patterns: List[str] = Field(default_factory=list)


class PromptSet(BaseModel):
    """Resolved prompt templates, one per pipeline step."""
    task: str = ""
    review_first: str = ""
    review_second: str = ""
    codex_review: str = ""
    codex_eval: str = ""
    custom_review: str = ""
    custom_eval: str = ""
    make_plan: str = ""
    finalize: str = ""


class AgentOptions(BaseModel):
    """Frontmatter options of a custom agent file."""
    model: Optional[str] = None
    agent_type: Optional[str] = None

    @field_validator('model')
    @classmethod
    def validate_model(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ("haiku", "sonnet", "opus"):
            raise ValueError(
                f"model must be 'haiku', 'sonnet', or 'opus', got '{v}'"
            )
        return v

    def __str__(self) -> str:
        parts = []
        if self.model:
            parts.append(f"model={self.model}")
        if self.agent_type:
            parts.append(f"agent={self.agent_type}")
        return ", ".join(parts) or "defaults"


class CustomAgent(BaseModel):
    """A named review agent referenced from prompts as {{agent:name}}."""
    name: str
    prompt: str
    options: AgentOptions = Field(default_factory=AgentOptions)


class AppConfig(BaseSettings):
    """Main configuration snapshot handed to the runner."""
    claude: ClaudeConfig = Field(default_factory=ClaudeConfig)
    codex: CodexConfig = Field(default_factory=CodexConfig)
    custom_review: CustomReviewConfig = Field(default_factory=CustomReviewConfig)
    external_review_tool: Literal["codex", "custom", "none"] = "codex"

    max_iterations: int = 50
    iteration_delay_ms: int = 2000
    task_retry_count: int = 1
    finalize_enabled: bool = False
    plans_dir: str = "docs/plans"
    default_branch: Optional[str] = None

    prompts: PromptSet = Field(default_factory=PromptSet)
    custom_agents: List[CustomAgent] = Field(default_factory=list)

    class Config:
        env_prefix = "AGENT_LOOP_"
        env_nested_delimiter = "__"
        extra = "ignore"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # AGENT_LOOP_* variables override values read from YAML files
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @field_validator('max_iterations')
    @classmethod
    def validate_max_iterations(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_iterations must be >= 1, got {v}")
        return v

    @field_validator('iteration_delay_ms', 'task_retry_count')
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"value must be >= 0, got {v}")
        return v


class Mode(str, Enum):
    """Pipeline mode selecting which phases run."""
    FULL = "full"
    REVIEW = "review"
    EXTERNAL_REVIEW_ONLY = "external-review-only"
    TASKS_ONLY = "tasks-only"
    PLAN = "plan"


class RunnerConfig(BaseModel):
    """Immutable per-run snapshot. Built once, never mutated during a run."""
    model_config = ConfigDict(frozen=True)

    mode: Mode = Mode.FULL
    plan_file: Optional[str] = None
    plan_description: str = ""
    progress_path: str = ""
    max_iterations: int = 50
    iteration_delay_ms: int = 2000
    task_retry_count: int = 1
    external_review_tool: Literal["codex", "custom", "none"] = "codex"
    finalize_enabled: bool = False
    default_branch: str = "master"
    work_dir: Optional[str] = None
    app_config: AppConfig = Field(default_factory=AppConfig)

    @field_validator('max_iterations')
    @classmethod
    def validate_max_iterations(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_iterations must be >= 1, got {v}")
        return v

    @field_validator('iteration_delay_ms', 'task_retry_count')
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"value must be >= 0, got {v}")
        return v

    @classmethod
    def from_app_config(cls, app_config: AppConfig, **overrides: Any) -> "RunnerConfig":
        """Build a run snapshot, taking unset values from the loaded config."""
        values: Dict[str, Any] = {
            "max_iterations": app_config.max_iterations,
            "iteration_delay_ms": app_config.iteration_delay_ms,
            "task_retry_count": app_config.task_retry_count,
            "external_review_tool": app_config.external_review_tool,
            "finalize_enabled": app_config.finalize_enabled,
            "app_config": app_config,
        }
        if app_config.default_branch:
            values["default_branch"] = app_config.default_branch
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# Module-level mtime-based config cache: path -> (parsed_data, file_mtime)
_config_cache: Dict[str, tuple] = {}


def _get_cached_or_load(resolved_path: Path, loader):
    """Return cached data if file mtime unchanged, else reload."""
    key = str(resolved_path)
    try:
        current_mtime = resolved_path.stat().st_mtime
    except FileNotFoundError:
        _config_cache.pop(key, None)
        return None

    cached = _config_cache.get(key)
    if cached is not None:
        cached_result, cached_mtime = cached
        if cached_mtime == current_mtime:
            return cached_result

    result = loader(resolved_path)
    _config_cache[key] = (result, current_mtime)
    return result


def clear_config_cache() -> None:
    """Clear the module-level config cache. Useful for tests."""
    _config_cache.clear()


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """Internal loader for one YAML layer (no caching)."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ${VAR} values in config data.

    Args:
        data: Config data to process
        _path: Internal tracking for error messages (e.g., "codex.model")
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var = data[2:-1]
        value = os.environ.get(env_var)
        if value is None:
            logger.warning(
                f"Environment variable '{env_var}' not set (referenced at config path: {_path or 'root'}). "
                f"The literal string '{data}' will be used, which may cause errors."
            )
            return data
        return value
    return data


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge override into base; nested mappings merge, everything else replaces."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def strip_comments(content: str) -> str:
    """Drop lines whose first non-blank character is '#'."""
    content = content.replace("\r\n", "\n")
    return "\n".join(
        line for line in content.split("\n") if not line.strip().startswith("#")
    )


def _read_template(path: Path) -> str:
    """Read a prompt/agent file; empty string when missing or comment-only."""
    if not path.is_file():
        return ""
    return strip_comments(path.read_text(encoding="utf-8")).strip()


def load_prompt(name: str, local_dir: Optional[Path], global_dir: Optional[Path]) -> str:
    """Resolve one prompt template: local -> global -> embedded.

    A file holding only comments or whitespace falls through to the next layer.
    """
    for base in (local_dir, global_dir, DEFAULTS_DIR):
        if base is None:
            continue
        content = _read_template(base / "prompts" / f"{name}.txt")
        if content:
            return content
    logger.warning(f"No prompt template found for '{name}'")
    return ""


def load_prompts(local_dir: Optional[Path], global_dir: Optional[Path]) -> PromptSet:
    return PromptSet(**{name: load_prompt(name, local_dir, global_dir) for name in PROMPT_NAMES})


def parse_frontmatter(content: str) -> Tuple[Dict[str, Any], str]:
    """Split '---' delimited YAML frontmatter from a file body.

    Content without frontmatter is returned unchanged with empty options.
    """
    if not content.startswith("---\n"):
        return {}, content
    end = content.find("\n---", 4)
    if end == -1:
        return {}, content

    header = content[4:end]
    body = content[end + 4:].strip()
    try:
        data = yaml.safe_load(header) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Invalid frontmatter, ignoring options: {e}")
        return {}, body
    if not isinstance(data, dict):
        return {}, body
    return data, body


def _build_agent(name: str, content: str) -> Optional[CustomAgent]:
    data, body = parse_frontmatter(content)
    if not body:
        return None
    try:
        options = AgentOptions(model=data.get("model"), agent_type=data.get("agent"))
    except ValidationError as e:
        logger.warning(f"Agent '{name}': invalid options, using defaults: {e}")
        options = AgentOptions()
    return CustomAgent(name=name, prompt=body, options=options)


def _load_agents_from_dir(agents_dir: Path) -> List[CustomAgent]:
    agents = []
    for path in sorted(agents_dir.glob("*.txt")):
        agent = _build_agent(path.stem, _read_template(path))
        if agent is None:
            # comment-only override of a shipped agent
            agent = _build_agent(path.stem, _read_template(DEFAULTS_DIR / "agents" / path.name))
        if agent is not None:
            agents.append(agent)
    return agents


def _has_agent_files(agents_dir: Optional[Path]) -> bool:
    return agents_dir is not None and agents_dir.is_dir() and any(agents_dir.glob("*.txt"))


def load_custom_agents(local_dir: Optional[Path], global_dir: Optional[Path]) -> List[CustomAgent]:
    """Load the agent set from the first layer that defines any agents.

    Agents form one review strategy, so layers are not mixed file by file.
    """
    for base in (local_dir, global_dir, DEFAULTS_DIR):
        if base is not None and _has_agent_files(base / "agents"):
            return _load_agents_from_dir(base / "agents")
    return []


def load_config(
    global_dir: Optional[Path] = GLOBAL_CONFIG_DIR,
    local_dir: Optional[Path] = LOCAL_CONFIG_DIR,
) -> AppConfig:
    """Load the layered configuration, prompts and custom agents.

    YAML layers are mtime-cached; a missing layer is skipped.
    """
    data: Dict[str, Any] = {}
    for base in (DEFAULTS_DIR, global_dir, local_dir):
        if base is None:
            continue
        config_path = base / CONFIG_FILE_NAME
        if not config_path.exists():
            continue
        layer = _get_cached_or_load(config_path.resolve(), _load_yaml_file)
        if layer:
            logger.debug(f"Loaded config layer {config_path}")
            data = _deep_merge(data, layer)

    data = _expand_env_vars(data)
    data["prompts"] = load_prompts(local_dir, global_dir)
    data["custom_agents"] = load_custom_agents(local_dir, global_dir)
    return AppConfig(**data)
