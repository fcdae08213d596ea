"""
Vision model clients that turn an image into a stock-photo title and tag list.

Both providers are driven through Pydantic AI agents with plain-text output. Models are asked for
JSON but nothing on the provider side enforces it, so the text is recovered with
``extract_json_payload`` and repaired with ``normalize_metadata`` before it is returned.
"""

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Protocol

from loguru import logger
from pydantic_ai import Agent, BinaryContent, ModelSettings, RunContext
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.google import GoogleProvider
from pydantic_ai.providers.openai import OpenAIProvider

from image_metadata_cli.config import AppConfig
from image_metadata_cli.extraction import extract_json_payload
from image_metadata_cli.imaging import (
    DEFAULT_JPEG_QUALITY,
    DEFAULT_MAX_DIMENSION,
    compress_image,
    encode_image,
)
from image_metadata_cli.metadata import MetadataRecord, normalize_metadata


MIN_TITLE_CHARS = 150
GPT_USER_PROMPT = "Generate stock photo metadata for this image."


class GenerationError(Exception):
    """A provider could not produce metadata for an image."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


@dataclass(frozen=True)
class PromptLimits:
    """Constraints injected into the prompt of each run."""

    max_title_chars: int
    max_tags: int


class MetadataGenerator(Protocol):
    """Anything that can describe an image as a MetadataRecord."""

    provider_name: str

    async def generate(
        self,
        image_path: Path,
        *,
        max_title_chars: int,
        max_tags: int,
    ) -> MetadataRecord: ...


def build_gpt_system_prompt(max_title_chars: int, max_tags: int) -> str:
    """
    Instruction asking for a title inside [150, max_title_chars] and exactly ``max_tags`` tags.

    The floor drops to ``max_title_chars`` when the configured limit is below 150.
    """
    floor = min(MIN_TITLE_CHARS, max_title_chars)
    title_range = (
        f"IN RANGE OF {floor} chars (no LESS than that since its CRITICAL) "
        f"UNTIL {max_title_chars} chars (no MORE than that since its CRITICAL)"
    )
    return (
        "Generate stock image metadata. Return in this exact format:\n"
        f'{{"title": "EXACTLY {title_range} commercial title",\n'
        f'"tags": [EXACTLY {max_tags} unique commercial keywords]}}\n'
        "\n"
        f"Important: Title MUST BE {title_range}, "
        f"Tags MUST BE EXACTLY {max_tags} keywords (no more, no less), "
        "DONT USE SYMBOL OR PUNCTUATION MARKS"
    )


def build_gemini_prompt(max_title_chars: int, max_tags: int) -> str:
    """Instruction asking for a title of exactly ``max_title_chars`` and exactly ``max_tags`` tags."""
    return (
        "You are a generator of stock image metadata. Follow these rules EXACTLY:\n"
        "\n"
        "1. Output format MUST be valid JSON:\n"
        "{\n"
        '  "title": "Your generated title here",\n'
        f'  "tags": ["tag1", "tag2", ..., "tag{max_tags}"]\n'
        "}\n"
        f'2. "title" MUST be EXACTLY {max_title_chars} characters long, including spaces. '
        "This is NON-NEGOTIABLE.\n"
        "   - Write a commercial friendly title, fluent sentence that ends precisely at "
        f"{max_title_chars} characters.\n"
        f'3. "tags" MUST contain EXACTLY {max_tags} individual, relevant commercial keywords.\n'
        "   - No duplicates, no punctuation, no symbols, just clean lowercase words.\n"
        "4. DO NOT return anything except the JSON object. No explanation. No extra output.\n"
        f"Repeat: This is a hard requirement. Output must be strictly {max_title_chars} "
        f"characters in the title, and exactly {max_tags} keywords."
    )


class AgentMetadataGenerator:
    """
    Shared flow for agent-backed generators.

    Subclasses provide the agent, the prompt, the message layout and the usage mapping.
    Pass ``agent`` to reuse a preconfigured (or stubbed) agent instead of building one.
    """

    provider_name: ClassVar[str] = ""
    model_settings: ClassVar[ModelSettings] = ModelSettings()

    def __init__(
        self,
        model_name: str,
        api_key: str,
        *,
        agent: Agent[PromptLimits, str] | None = None,
        max_size: int = DEFAULT_MAX_DIMENSION,
        jpg_quality: int = DEFAULT_JPEG_QUALITY,
    ) -> None:
        self.model_name = model_name
        self.api_key = api_key
        self.max_size = max_size
        self.jpg_quality = jpg_quality
        self._agent = agent

    @property
    def agent(self) -> Agent[PromptLimits, str]:
        if self._agent is None:
            logger.debug("setting_up_llm_agent", provider=self.provider_name, model=self.model_name)
            self._agent = self._create_agent()
        return self._agent

    def _create_agent(self) -> Agent[PromptLimits, str]:
        raise NotImplementedError

    def build_prompt(self, max_title_chars: int, max_tags: int) -> str:
        raise NotImplementedError

    def _user_content(self, prompt: str, image: BinaryContent) -> list[Any]:
        raise NotImplementedError

    def _token_info(self, usage: Any) -> dict[str, int] | None:  # noqa: ANN401
        raise NotImplementedError

    def _prepare_image(self, image_path: Path) -> BinaryContent:
        """Compress and encode, removing the temporary copy once it has been read."""
        compressed_path = compress_image(image_path, self.max_size, self.jpg_quality)
        try:
            return encode_image(compressed_path)
        finally:
            if compressed_path != image_path:
                compressed_path.unlink(missing_ok=True)

    async def generate(
        self,
        image_path: Path,
        *,
        max_title_chars: int,
        max_tags: int,
    ) -> MetadataRecord:
        """
        Describe one image.

        Raises:
            GenerationError: if the image cannot be read, the provider call fails, or the
                response holds no JSON object.

        """
        logger.info("generating_metadata", provider=self.provider_name, model=self.model_name)
        try:
            image = await asyncio.to_thread(self._prepare_image, image_path)
            prompt = self.build_prompt(max_title_chars, max_tags)
            _t0 = time.perf_counter()
            result = await self.agent.run(
                self._user_content(prompt, image),
                deps=PromptLimits(max_title_chars=max_title_chars, max_tags=max_tags),
                model_settings=self.model_settings,
            )
            logger.info("ai_inference_completed", seconds=round(time.perf_counter() - _t0, 3))
            payload = extract_json_payload(result.output)
            if (token_info := self._token_info(result.usage())) is not None:
                payload["tokenInfo"] = token_info
        except Exception as exc:
            logger.error("metadata_generation_failed", provider=self.provider_name, error=str(exc))
            raise GenerationError(self.provider_name, str(exc)) from exc

        logger.debug("ai_generated_metadata", payload=payload)
        return normalize_metadata(payload, max_title_chars, max_tags)


class GptMetadataGenerator(AgentMetadataGenerator):
    """OpenAI chat-completions vision model."""

    provider_name = "GPT"
    model_settings = ModelSettings(temperature=0.3, top_p=0.8, max_tokens=1000)

    def _create_agent(self) -> Agent[PromptLimits, str]:
        provider = OpenAIProvider(api_key=self.api_key)
        chat_model = OpenAIChatModel(model_name=self.model_name, provider=provider)
        agent: Agent[PromptLimits, str] = Agent(chat_model, deps_type=PromptLimits, output_type=str)

        @agent.system_prompt
        def _limits(ctx: RunContext[PromptLimits]) -> str:
            return build_gpt_system_prompt(ctx.deps.max_title_chars, ctx.deps.max_tags)

        return agent

    def build_prompt(self, max_title_chars: int, max_tags: int) -> str:  # noqa: ARG002
        return GPT_USER_PROMPT

    def _user_content(self, prompt: str, image: BinaryContent) -> list[Any]:
        return [image, prompt]

    def _token_info(self, usage: Any) -> dict[str, int] | None:  # noqa: ANN401
        if not usage.total_tokens:
            return None
        return {
            "prompt": usage.input_tokens,
            "completion": usage.output_tokens,
            "total": usage.total_tokens,
        }


class GeminiMetadataGenerator(AgentMetadataGenerator):
    """Google Gemini vision model."""

    provider_name = "Gemini"
    model_settings = ModelSettings(temperature=0.8, top_p=0.8)

    def _create_agent(self) -> Agent[PromptLimits, str]:
        provider = GoogleProvider(api_key=self.api_key)
        model = GoogleModel(self.model_name, provider=provider)
        return Agent(model, deps_type=PromptLimits, output_type=str)

    def build_prompt(self, max_title_chars: int, max_tags: int) -> str:
        return build_gemini_prompt(max_title_chars, max_tags)

    def _user_content(self, prompt: str, image: BinaryContent) -> list[Any]:
        return [prompt, image]

    def _token_info(self, usage: Any) -> dict[str, int] | None:  # noqa: ANN401
        if not usage.total_tokens:
            return None
        return {"prompt": usage.input_tokens, "total": usage.total_tokens}


def create_generator(config: AppConfig) -> AgentMetadataGenerator:
    """Build the generator for the provider selected in the configuration."""
    generator_cls = GptMetadataGenerator if config.ai_model == "gpt" else GeminiMetadataGenerator
    logger.info(
        "provider_config_resolved",
        provider=generator_cls.provider_name,
        model=config.active_model,
        api_key_present=bool(config.active_api_key),
    )
    return generator_cls(config.active_model, config.active_api_key)
