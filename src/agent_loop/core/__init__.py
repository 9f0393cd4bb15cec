"""Core models, configuration and the signal protocol."""

from .config import AppConfig, Mode, RunnerConfig, load_config
from .interfaces import DraftAction, InputCollector, RunLogger
from .phases import Phase, Section, SectionType
from .signals import QuestionPayload, detect_signal

__all__ = [
    "AppConfig",
    "Mode",
    "RunnerConfig",
    "load_config",
    "DraftAction",
    "InputCollector",
    "RunLogger",
    "Phase",
    "Section",
    "SectionType",
    "QuestionPayload",
    "detect_signal",
]
