"""Configuration loading and validation for the scenario summarizer."""

from __future__ import annotations

import copy
import os
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

# Persisted schema version of ChatMemory
DATA_VERSION = 4

# Key under which ChatMemory lives in the host's chat metadata
METADATA_KEY = "scenario_summarizer"

# Identifier handed to the host's prompt-injection hook
EXTENSION_ID = "scenario-summarizer"


class SummaryMode(str, Enum):
    """How messages are grouped into output blocks."""

    INDIVIDUAL = "individual"
    BATCH = "batch"


class SummaryLanguage(str, Enum):
    """Output language of generated summaries."""

    KO = "ko"
    EN = "en"
    JA = "ja"
    HYBRID = "hybrid"  # English narrative, dialogue kept verbatim


class InjectionPosition(str, Enum):
    """Where the host inserts the injected memory."""

    IN_CHAT = "in-chat"
    BEFORE_MAIN = "before-main"
    AFTER_MAIN = "after-main"


DEFAULT_CATEGORIES: dict[str, dict[str, Any]] = {
    "scenario": {
        "enabled": True,
        "label": "Scenario",
        "icon": "📖",
        "prompt": (
            "Summarize the cause-and-effect flow of events narratively. "
            "Focus on 'who did what and why' rather than simple enumeration. "
            'Include important dialogue using double quotes ("") with direct '
            "quotation from the original text to maintain character voice. "
            "(Do not change or shorten the dialogue.) Don't overlook even minor "
            "actions or lines of dialogue that may signal changes in character "
            "relationships or become pivotal moments shaping the future."
        ),
    },
    "emotion": {
        "enabled": False,
        "label": "Emotion",
        "icon": "😊",
        "prompt": (
            "Write each line as '- CharacterName: Emotion (cause)'. Separate "
            "by character using line breaks. Example: - {{user}}: "
            "Bewilderment (due to sudden confession)"
        ),
    },
    "innerThoughts": {
        "enabled": False,
        "label": "Inner Thoughts",
        "icon": "💭",
        "prompt": (
            "Record ONLY inner monologues or thoughts explicitly shown in the "
            "message. Do NOT speculate or fabricate. Write only what is "
            "directly expressed in text as '- CharacterName: \"inner "
            "thought\"'. If no explicit inner thoughts exist, write 'N/A'."
        ),
    },
    "atmosphere": {
        "enabled": False,
        "label": "Atmosphere",
        "icon": "🌙",
        "prompt": (
            "Briefly describe the scene's overall tension, tone, and mood with "
            "adjectives. (e.g., dark and humid, tense, peaceful)"
        ),
    },
    "location": {
        "enabled": True,
        "label": "Location",
        "icon": "📍",
        "prompt": (
            "Briefly specify the physical location where characters are. "
            "Use arrow (→) if there was movement. If no movement, write same "
            "as previous."
        ),
    },
    "date": {
        "enabled": False,
        "label": "Date",
        "icon": "📅",
        "prompt": (
            "Infer the date from context (mentions of days, events, seasons, "
            "holidays, etc.). Write as 'Year/Month/Day(DayOfWeek)' format "
            "(e.g., 25/12/25(Wed), 25/1/1(Mon)). If cannot be determined, "
            "estimate based on context clues. If same as previous summary, "
            "maintain it. If there was a date change, use the arrow (→)."
        ),
    },
    "time": {
        "enabled": True,
        "label": "Time",
        "icon": "⏰",
        "prompt": (
            "Specify the time of day (dawn, night, etc.). If no change from "
            "previous summary, write same as previous."
        ),
    },
    "relationship": {
        "enabled": True,
        "label": "Relationship",
        "icon": "💕",
        "prompt": (
            "Define the current relationship between the two characters with a "
            "noun that best describes it. (e.g., neighbors, lovers) If a "
            "relationship was defined in previous summary, maintain it unless "
            "there's a clear change."
        ),
    },
}

DEFAULT_CATEGORY_ORDER: list[str] = [
    "scenario",
    "emotion",
    "innerThoughts",
    "atmosphere",
    "location",
    "date",
    "time",
    "relationship",
]


class CategoryConfig(BaseModel):
    """One summary category rendered as a `* Label: ...` line."""

    enabled: bool = False
    label: str = ""
    icon: str = ""
    prompt: str = ""


class SummarizerSettings(BaseModel):
    """User-facing settings that drive summarization and injection."""

    enabled: bool = True
    automatic_mode: bool = False
    summary_interval: int = Field(default=10, ge=1)
    batch_size: int = Field(default=10, ge=1)
    preserve_recent_messages: int = Field(default=5, ge=0)
    summary_mode: SummaryMode = SummaryMode.BATCH
    batch_group_size: int = Field(default=5, ge=1)
    summary_language: SummaryLanguage = SummaryLanguage.EN
    auto_hide_enabled: bool = True

    character_tracking_enabled: bool = False
    event_tracking_enabled: bool = False
    item_tracking_enabled: bool = False
    include_world_info: bool = False
    use_raw_prompt: bool = True

    injection_position: InjectionPosition = InjectionPosition.AFTER_MAIN
    injection_depth: int = Field(default=0, ge=0)
    token_budget: int = Field(default=20000, ge=0)
    summary_context_count: int = Field(default=5, ge=-1)
    """0 disables the recent-summaries section, -1 includes every summary."""

    categories: dict[str, CategoryConfig] = Field(
        default_factory=dict, validate_default=True
    )
    category_order: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CATEGORY_ORDER)
    )

    custom_prompt_template: Optional[str] = None
    custom_batch_prompt_template: Optional[str] = None
    custom_character_prompt_template: Optional[str] = None
    custom_event_prompt_template: Optional[str] = None
    custom_item_prompt_template: Optional[str] = None

    # Event-binding timings, in seconds
    chat_change_cooldown: float = 2.0
    visibility_refresh_delay: float = 0.5
    auto_summary_delay: float = 0.5

    debug_mode: bool = False

    @field_validator("categories", mode="before")
    @classmethod
    def merge_default_categories(cls, value: Any) -> dict[str, Any]:
        """Deep-merge user categories over the defaults.

        A user category keeps its own ``enabled`` flag and ``prompt``; the
        legacy boolean form (``{"scenario": true}``) becomes the object form.
        Unknown keys are kept so custom categories survive.
        """
        merged = copy.deepcopy(DEFAULT_CATEGORIES)
        if not value:
            return merged
        for key, user in dict(value).items():
            base = merged.get(key, {"enabled": False, "label": key, "icon": "", "prompt": ""})
            if isinstance(user, bool):
                base["enabled"] = user
            elif isinstance(user, CategoryConfig):
                base.update(user.model_dump())
            elif isinstance(user, dict):
                base.update({k: v for k, v in user.items() if v is not None})
            merged[key] = base
        return merged

    def ordered_categories(self) -> list[tuple[str, CategoryConfig]]:
        """Categories in configured order, then any keys missing from it."""
        keys = [k for k in self.category_order if k in self.categories]
        keys += [k for k in self.categories if k not in keys]
        return [(k, self.categories[k]) for k in keys]


class LLMBackendConfig(BaseModel):
    """Configuration for the LLM that writes summaries."""

    provider: str  # "ollama", "anthropic", "openai", "custom"
    model: str
    api_key_env: Optional[str] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    max_tokens: int = 4000
    context_window: int = 8192
    requests_per_minute: int = 60
    default_temperature: float = 0.3
    timeout: float = 60.0

    @model_validator(mode="after")
    def resolve_api_key(self) -> "LLMBackendConfig":
        if self.api_key is None and self.api_key_env:
            self.api_key = os.environ.get(self.api_key_env)
            if self.api_key is None:
                import logging
                logging.getLogger(__name__).warning(
                    "Environment variable %s is not set for provider %s/%s",
                    self.api_key_env, self.provider, self.model,
                )
        return self


class AppConfig(BaseModel):
    """Root configuration: settings, LLM and where the chat lives."""

    settings: SummarizerSettings = Field(default_factory=SummarizerSettings)
    llm: Optional[LLMBackendConfig] = None
    chat_file: Optional[str] = None
    event_log: Optional[str] = None


def load_config(config_path: Path) -> AppConfig:
    """Load and validate configuration from a YAML file or a directory."""
    if config_path.is_dir():
        config_path = config_path / "summarizer.yaml"
    if not config_path.exists():
        raise FileNotFoundError(f"Summarizer config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    return AppConfig(**raw)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    with open(path) as f:
        return yaml.safe_load(f) or {}
