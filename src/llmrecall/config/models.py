# src/llmrecall/config/models.py
"""
Pydantic models for llmrecall configuration validation.

Every section of ``default_config.toml`` has a model here. The root
:class:`LLMRecallSettings` is a ``pydantic-settings`` class: constructor
arguments win over ``LLMRECALL_SECTION__KEY`` environment variables, which
win over the user TOML file, which wins over the packaged defaults.
"""

import importlib.resources
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import (BaseSettings, PydanticBaseSettingsSource,
                               SettingsConfigDict, TomlConfigSettingsSource)

ENV_PREFIX = "LLMRECALL_"


def default_config_path() -> Path:
    """Location of the packaged ``default_config.toml``."""
    return Path(str(importlib.resources.files(__package__).joinpath("default_config.toml")))


class SessionHandling(str, Enum):
    """History packing policy."""
    FIT_ALL = "fit_all"
    CURRENT_ONLY = "current_only"


class RetrievalSettings(BaseModel):
    """Embedding and vector search behaviour."""

    enabled: bool = Field(True, description="Master switch for retrieval-augmented context")
    embedding_model: str = Field(
        "openai:text-embedding-3-small",
        description="Embedding model identifier, 'provider:model'",
    )
    max_embedding_chars: int = Field(1024, gt=0, description="Input is truncated to this many characters before embedding")
    max_results: int = Field(3, ge=0, description="Maximum number of memories staged per turn")
    max_distance: float = Field(0.2, ge=0.0, le=2.0, description="Cosine distance cutoff for search results")
    insert_index: int = Field(3, ge=0, description="History depth bucket for retrieved memories")
    oversample_margin: int = Field(5, ge=0, description="Extra candidates requested on top of 2x max_results")
    min_candidates: int = Field(30, ge=1, description="Floor on the number of candidates requested from the vault")
    tone_epsilon: float = Field(0.04, ge=0.0, description="Distance adjustment applied to roleplay sessions")
    sticky_penalty: float = Field(2.0, ge=0.0, description="Distance added to sticky sessions during search")
    roleplay_indicators: List[str] = Field(
        default_factory=lambda: [" rp", " roleplay"],
        description="Lowercase phrases marking a query as roleplay-related",
    )
    title_weight: float = Field(0.2, ge=0.0, description="Weight of the name embedding when fusing name and content")
    content_weight: float = Field(0.8, ge=0.0, description="Weight of the content embedding when fusing name and content")

    @field_validator("roleplay_indicators")
    @classmethod
    def lowercase_indicators(cls, v: List[str]) -> List[str]:
        return [s.lower() for s in v if s]


class BrainSettings(BaseModel):
    """Memory lifecycle tuning."""

    min_insert_delay_minutes: float = Field(15.0, ge=0.0, description="Minimum wall-clock gap between two eurekas")
    min_message_delay: int = Field(4, ge=0, description="User messages required between two eurekas")
    eureka_cutoff_days: float = Field(15.0, gt=0.0, description="Natural memories older than this are dropped unsurfaced")
    away_threshold_hours: float = Field(4.0, gt=0.0, description="Gap after which a time-away note replaces memory evaluation")
    base_no_recall_days: float = Field(10.0, gt=0.0, description="Base retention of trigger memories per priority level")
    relevance_threshold: float = Field(0.09, ge=0.0, le=2.0, description="Distance at which a queued memory surfaces immediately")
    recent_search_distance: float = Field(0.075, ge=0.0, le=2.0, description="Distance under which two topics count as the same search")
    max_recent_searches: int = Field(20, ge=0)
    decayable_categories: Optional[List[str]] = Field(
        None,
        description="Categories of trigger memories subject to no-recall eviction; None means every category",
    )
    sense_of_time: bool = Field(True, description="Emit time-away and mood notes after long gaps")
    disable_eurekas: bool = Field(False, description="Never resurface natural memories")
    mood_enabled: bool = Field(True)


class ContextSettings(BaseModel):
    """Token budgets and prompt rendering."""

    max_context_length: int = Field(4096, gt=0)
    max_reply_length: int = Field(512, ge=0)
    session_handling: SessionHandling = Field(SessionHandling.FIT_ALL)
    reserved_session_tokens: int = Field(2048, ge=0, description="Budget for the prior-session summaries block")
    move_all_inserts_to_system_prompt: bool = Field(False)
    world_info_title: str = Field("# Important Memories")
    session_history_title: str = Field("# Previous Sessions")
    session_header: str = Field("##")
    include_dates_in_summaries: bool = Field(True)
    response_start: str = Field("", description="Text that opens the reply, counted against the budget")
    tokenizer_model: str = Field("gpt-4o", description="Model name used to pick the tiktoken encoding")
    tokens_per_message: int = Field(3, ge=0, description="Formatting overhead added per message")

    class Config:
        use_enum_values = True

    @model_validator(mode="after")
    def check_reply_fits(self) -> "ContextSettings":
        if self.max_reply_length >= self.max_context_length:
            raise ValueError(
                f"max_reply_length ({self.max_reply_length}) must be smaller than "
                f"max_context_length ({self.max_context_length})."
            )
        return self


class StorageSettings(BaseModel):
    path: str = Field("~/.local/share/llmrecall/data", description="Directory holding persisted memory state")


class LLMRecallSettings(BaseSettings):
    """
    Root configuration object.

    Set ``toml_file`` in a subclass's ``model_config`` to layer a user file
    over the packaged defaults; :func:`~llmrecall.config.loader.load_settings`
    does this for you.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        extra="ignore",
        toml_file=None,
    )

    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    brain: BrainSettings = Field(default_factory=BrainSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    embedding: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Per-provider embedding settings, e.g. [embedding.openai]"
    )
    logging: Dict[str, Any] = Field(default_factory=dict, description="Passed to configure_logging()")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
            TomlConfigSettingsSource(settings_cls, toml_file=default_config_path()),
        )
