"""
Persistent configuration for the Image Metadata CLI.

The configuration lives in a single JSON file in the working directory. Keys use the camelCase
names below so existing files keep working; anything we do not recognize is kept and written back.
"""

import json
import os
from pathlib import Path
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError


Provider = Literal["gpt", "gemini"]

DEFAULT_CONFIG_PATH = Path("image-metadata-config.json")

GEMINI_MODELS = {
    "gemini-2.5-pro": "Gemini 2.5 Pro",
    "gemini-2.5-flash": "Gemini 2.5 Flash",
    "gemini-2.0-flash": "Gemini 2.0 Flash",
    "gemini-1.5-flash": "Gemini 1.5 Flash",
    "gemini-1.5-pro": "Gemini 1.5 Pro",
}
GPT_MODELS = {
    "gpt-4-vision-preview": "GPT-4 Vision",
    "gpt-4.1-mini": "GPT-4.1-mini",
    "gpt-4.1-nano": "GPT-4.1-nano",
    "o4-mini": "o4-mini",
}
PROVIDER_LABELS: dict[str, str] = {"gpt": "OpenAI GPT", "gemini": "Google Gemini"}
API_KEY_ENV_VARS: dict[str, str] = {"gpt": "OPENAI_API_KEY", "gemini": "GEMINI_API_KEY"}


class AppConfig(BaseModel):
    """Settings shared by the menu and the batch pipeline."""

    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        validate_assignment=True,
    )

    input_dir: str = Field(default="images/input", alias="inputDir")
    output_dir: str = Field(default="images/output", alias="outputDir")
    max_title_chars: int = Field(default=200, gt=0, alias="maxTitleChars")
    max_tags: int = Field(default=45, gt=0, alias="maxTags")
    gpt_api_key: str = Field(default="", alias="gptApiKey")
    gemini_api_key: str = Field(default="", alias="geminiApiKey")
    ai_model: Provider = Field(default="gemini", alias="aiModel")
    gemini_model: str = Field(default="gemini-2.5-flash", alias="geminiModel")
    gpt_model: str = Field(default="gpt-4.1-nano", alias="gptModel")
    show_tokens: bool = Field(default=True, alias="showTokens")
    delay: float = Field(default=10, ge=0)

    @property
    def active_model(self) -> str:
        return self.gpt_model if self.ai_model == "gpt" else self.gemini_model

    @property
    def provider_label(self) -> str:
        return PROVIDER_LABELS[self.ai_model]

    @property
    def active_api_key(self) -> str:
        """Stored key for the selected provider, else the provider's environment variable."""
        stored = self.gpt_api_key if self.ai_model == "gpt" else self.gemini_api_key
        return stored or os.getenv(API_KEY_ENV_VARS[self.ai_model], "")


class ConfigStore:
    """Owns the single mutable AppConfig and persists it after every change."""

    def __init__(self, path: Path = DEFAULT_CONFIG_PATH) -> None:
        self.path = path
        self.config = AppConfig()

    def load(self) -> AppConfig:
        """
        Read the config file, merging stored keys over defaults.

        A missing file silently yields defaults. An unreadable or malformed file is reported
        with a warning and also yields defaults. A stored value that fails validation falls
        back to its default on its own; every other stored key, unknown ones included, is kept.
        """
        if not self.path.exists():
            logger.debug("config_file_missing_using_defaults", path=str(self.path))
            self.config = AppConfig()
            return self.config

        try:
            stored = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(stored, dict):
                msg = "configuration root must be a JSON object"
                raise TypeError(msg)
            self.config = self._merge_over_defaults(stored)
        except (OSError, ValueError, TypeError, ValidationError) as exc:
            logger.warning("config_load_failed_using_defaults", path=str(self.path), error=str(exc))
            self.config = AppConfig()
        else:
            logger.debug("config_loaded", path=str(self.path))
        return self.config

    def _merge_over_defaults(self, stored: dict[str, Any]) -> AppConfig:
        defaults: dict[str, Any] = AppConfig().model_dump(by_alias=True)
        merged = {**defaults, **stored}
        try:
            return AppConfig.model_validate(merged)
        except ValidationError as exc:
            rejected = {error["loc"][0]: error["msg"] for error in exc.errors() if error["loc"]}
            for key, reason in rejected.items():
                logger.warning("config_value_rejected_using_default", path=str(self.path), key=key, error=reason)
                if key in defaults:
                    merged[key] = defaults[key]
                else:
                    merged.pop(key, None)
            return AppConfig.model_validate(merged)

    def save(self) -> bool:
        """Write the config as indented JSON. Failures are logged, never raised."""
        try:
            self.path.write_text(
                json.dumps(self.config.model_dump(by_alias=True), indent=2),
                encoding="utf-8",
            )
        except OSError as exc:
            logger.error("config_save_failed", path=str(self.path), error=str(exc))
            return False
        logger.debug("config_saved", path=str(self.path))
        return True

    def update(self, **changes: Any) -> AppConfig:  # noqa: ANN401
        """
        Apply field changes (by field name) and persist.

        Raises:
            pydantic.ValidationError: if any value is rejected; nothing is saved in that case.

        """
        candidate = self.config.model_copy()
        for field, value in changes.items():
            setattr(candidate, field, value)
        self.config = candidate
        self.save()
        logger.info("config_updated", fields=sorted(changes))
        return self.config
