"""Configuration helpers for the FrostMod bot."""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator


class ClassifierStrategy(str, Enum):
    KEYWORD = "keyword"
    SCORED = "scored"


class ScorerProvider(str, Enum):
    HUGGINGFACE = "huggingface"
    OPENAI = "openai"


class CooldownRule(BaseModel):
    """Rate-limit window for one cooldown scope."""

    window_seconds: float = Field(gt=0)
    max_uses: int = Field(default=1, ge=1)

    @property
    def is_counting(self) -> bool:
        return self.max_uses > 1


DEFAULT_COOLDOWN_SCOPE = "default"
MESSAGE_ANALYSIS_SCOPE = "messageAnalysis"


def default_cooldowns() -> Dict[str, CooldownRule]:
    return {
        "ask": CooldownRule(window_seconds=30),
        "search": CooldownRule(window_seconds=30),
        "warn": CooldownRule(window_seconds=5),
        "filter": CooldownRule(window_seconds=5),
        MESSAGE_ANALYSIS_SCOPE: CooldownRule(window_seconds=60, max_uses=5),
        DEFAULT_COOLDOWN_SCOPE: CooldownRule(window_seconds=3),
    }


class BotSettings(BaseModel):
    """Runtime configuration parsed from environment variables."""

    version: Optional[str] = Field(
        default=None,
        alias="VERSION",
        validation_alias=AliasChoices("VERSION", "APP_VERSION", "BOT_VERSION"),
    )
    discord_token: str = Field(..., alias="DISCORD_TOKEN")
    database_url: Optional[str] = Field(
        default=None,
        alias="DATABASE_URL",
        validation_alias=AliasChoices("DATABASE_URL", "SUPABASE_DB_URL", "database_url"),
    )
    hugging_face_token: Optional[str] = Field(
        default=None,
        alias="HUGGING_FACE_TOKEN",
        validation_alias=AliasChoices("HUGGING_FACE_TOKEN", "HF_TOKEN"),
    )
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    google_api_key: Optional[str] = Field(default=None, alias="GOOGLE_API_KEY")
    google_cse_id: Optional[str] = Field(default=None, alias="GOOGLE_CSE_ID")

    classifier_strategy: ClassifierStrategy = Field(
        default=ClassifierStrategy.KEYWORD, alias="CLASSIFIER_STRATEGY"
    )
    scorer_provider: ScorerProvider = Field(
        default=ScorerProvider.HUGGINGFACE, alias="SCORER_PROVIDER"
    )
    toxicity_model: str = Field(default="unitary/toxic-bert", alias="TOXICITY_MODEL")
    sentiment_model: str = Field(
        default="distilbert-base-uncased-finetuned-sst-2-english", alias="SENTIMENT_MODEL"
    )
    qa_model: str = Field(default="deepset/roberta-base-squad2", alias="QA_MODEL")
    inference_base_url: str = Field(
        default="https://router.huggingface.co/hf-inference/models", alias="INFERENCE_BASE_URL"
    )
    inference_timeout: float = Field(default=15.0, gt=0, alias="INFERENCE_TIMEOUT")

    settings_cache_ttl: float = Field(default=300.0, gt=0, alias="SETTINGS_CACHE_TTL")
    cooldowns: Dict[str, CooldownRule] = Field(default_factory=default_cooldowns, alias="COOLDOWNS")

    health_host: str = Field(default="0.0.0.0", alias="HEALTH_HOST")
    health_port: int = Field(default=8080, alias="HEALTH_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    class Config:
        populate_by_name = True

    @field_validator("classifier_strategy", "scorer_provider", mode="before")
    @classmethod
    def _lowercase_choice(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("cooldowns", mode="before")
    @classmethod
    def _merge_cooldowns(cls, value):
        """Accept a JSON object of overrides and merge it over the defaults.

        ``COOLDOWNS='{"ask": {"window_seconds": 60}, "status": 10}'`` raises the
        ``/ask`` window to a minute and gives ``/status`` its own 10 s window.
        """
        if isinstance(value, str):
            value = json.loads(value) if value.strip() else {}
        merged: Dict[str, object] = {
            scope: rule.model_dump() for scope, rule in default_cooldowns().items()
        }
        for scope, rule in (value or {}).items():
            if isinstance(rule, (int, float)):
                rule = {"window_seconds": rule}
            merged[scope] = rule
        return merged


def load_settings(env_file: str | None = ".env") -> BotSettings:
    """Load and validate configuration, raising a helpful error if missing."""

    if env_file and Path(env_file).exists():
        load_dotenv(env_file)

    try:
        settings = BotSettings.model_validate(os.environ)
    except ValidationError as exc:
        missing = [err["loc"][0] for err in exc.errors() if err["type"] == "missing"]
        if not missing:
            raise RuntimeError(f"Invalid configuration: {exc}") from exc
        raise RuntimeError(
            (
                "Missing required configuration values: "
                f"{', '.join(str(key) for key in missing)}. "
                "Ensure DISCORD_TOKEN is set before running the bot."
            )
        ) from exc

    return settings
