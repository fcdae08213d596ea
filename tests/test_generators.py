"""Tests covering the provider generators using LiteLLM mocks."""

import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import litellm
import pytest
from PIL import Image
from pydantic_ai import BinaryContent

import image_metadata_cli.generators as g
from image_metadata_cli.config import AppConfig


class LiteLLMAgentStub:
    """Minimal agent stub that delegates to LiteLLM's mock completion helper."""

    def __init__(
        self,
        payload: str,
        *,
        usage: tuple[int, int] = (0, 0),
        model: str = "gpt-4o-mini",
    ) -> None:
        """Store the canned payload, token usage and model name used for mock completions."""
        self._payload = payload
        self._usage = usage
        self._model = model
        self.calls: list[dict[str, Any]] = []

    async def run(
        self,
        items: list[object],
        *,
        deps: g.PromptLimits,
        model_settings: dict[str, Any],
    ) -> SimpleNamespace:
        """Mimic Agent.run by returning LiteLLM mock output as plain text."""
        self.calls.append({"items": items, "deps": deps, "model_settings": model_settings})
        response = litellm.mock_completion(
            model=self._model,
            messages=[{"role": "user", "content": "stub"}],
            mock_response=self._payload,
        )
        content = response.choices[0].message["content"]  # type: ignore[union-attr]
        input_tokens, output_tokens = self._usage
        usage = SimpleNamespace(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        )
        return SimpleNamespace(output=content, usage=lambda: usage)


class FailingAgent:
    """Agent whose provider call always fails."""

    async def run(self, items: list[object], **kwargs: Any) -> SimpleNamespace:  # noqa: ANN401, ARG002
        msg = "quota exceeded"
        raise RuntimeError(msg)


@pytest.fixture
def photo(tmp_path: Path) -> Path:
    """A 1200x800 PNG with transparency, large enough to be downscaled."""
    path = tmp_path / "beach.png"
    Image.new("RGBA", (1200, 800), (30, 120, 200, 128)).save(path)
    return path


def _payload(**overrides: Any) -> str:  # noqa: ANN401
    data = {
        "title": "Turquoise ocean waves rolling onto a quiet sandy beach at golden hour",
        "tags": ["Beach", "beach ", "Ocean", "Waves", "Sand"],
    }
    data.update(overrides)
    return json.dumps(data)


@pytest.mark.asyncio
async def test_gpt_generator_returns_normalized_record_with_usage(photo: Path) -> None:
    """GPT output is parsed, normalized and annotated with prompt/completion/total usage."""
    agent = LiteLLMAgentStub(_payload(), usage=(850, 120))
    generator = g.GptMetadataGenerator("gpt-4.1-nano", "sk-test", agent=agent)  # type: ignore[arg-type]

    record = await generator.generate(photo, max_title_chars=200, max_tags=3)

    assert record.title.startswith("Turquoise ocean waves")
    assert record.tags == ["beach", "ocean", "waves"]
    assert record.token_info == {"prompt": 850, "completion": 120, "total": 970}

    recorded = agent.calls[0]
    image, text = recorded["items"]
    assert isinstance(image, BinaryContent)
    assert image.media_type == "image/jpeg"
    assert text == g.GPT_USER_PROMPT
    assert recorded["deps"] == g.PromptLimits(max_title_chars=200, max_tags=3)
    assert recorded["model_settings"]["temperature"] == pytest.approx(0.3)
    assert recorded["model_settings"]["max_tokens"] == 1000


@pytest.mark.asyncio
async def test_gemini_generator_sends_prompt_first_and_reports_prompt_total(photo: Path) -> None:
    """Gemini receives the instruction before the image and reports prompt/total usage only."""
    fenced = f"```json\n{_payload()}\n```"
    agent = LiteLLMAgentStub(fenced, usage=(400, 60))
    generator = g.GeminiMetadataGenerator("gemini-2.5-flash", "key", agent=agent)  # type: ignore[arg-type]

    record = await generator.generate(photo, max_title_chars=180, max_tags=45)

    assert record.tags == ["beach", "ocean", "waves", "sand"]
    assert record.token_info == {"prompt": 400, "total": 460}

    prompt, image = agent.calls[0]["items"]
    assert "EXACTLY 180 characters" in prompt
    assert "EXACTLY 45 individual" in prompt
    assert isinstance(image, BinaryContent)


@pytest.mark.asyncio
async def test_generator_removes_temporary_image(photo: Path) -> None:
    """The compressed copy is deleted once it has been sent."""
    agent = LiteLLMAgentStub(_payload())
    generator = g.GeminiMetadataGenerator("gemini-2.5-flash", "key", agent=agent)  # type: ignore[arg-type]

    await generator.generate(photo, max_title_chars=200, max_tags=45)

    assert sorted(p.name for p in photo.parent.iterdir()) == ["beach.png"]


@pytest.mark.asyncio
async def test_generator_omits_token_info_when_usage_not_reported(photo: Path) -> None:
    """Zero usage means the provider did not report it."""
    agent = LiteLLMAgentStub(_payload(), usage=(0, 0))
    generator = g.GptMetadataGenerator("gpt-4.1-nano", "sk-test", agent=agent)  # type: ignore[arg-type]

    record = await generator.generate(photo, max_title_chars=200, max_tags=45)

    assert record.token_info is None


@pytest.mark.asyncio
async def test_generator_applies_normalizer_for_both_providers(photo: Path) -> None:
    """A missing title is repaired whichever provider produced the record."""
    for generator_cls in (g.GptMetadataGenerator, g.GeminiMetadataGenerator):
        agent = LiteLLMAgentStub(json.dumps({"tags": ["A", "a", "B"]}))
        generator = generator_cls("model", "key", agent=agent)  # type: ignore[arg-type]

        record = await generator.generate(photo, max_title_chars=200, max_tags=45)

        assert record.title == "Untitled Image"
        assert record.tags == ["a", "b"]


@pytest.mark.asyncio
async def test_unparseable_response_raises_generation_error(photo: Path) -> None:
    """Text without JSON fails with the provider name in the message."""
    agent = LiteLLMAgentStub("Sorry, I can't help with that.")
    generator = g.GeminiMetadataGenerator("gemini-2.5-flash", "key", agent=agent)  # type: ignore[arg-type]

    with pytest.raises(g.GenerationError, match=r"^Gemini: could not parse provider response"):
        await generator.generate(photo, max_title_chars=200, max_tags=45)

    assert not list(photo.parent.glob("temp_*"))


@pytest.mark.asyncio
async def test_generate_keeps_unrelated_temp_named_image(tmp_path: Path) -> None:
    """Only the generator's own scratch copy is removed from the input folder."""
    source = tmp_path / "a.png"
    Image.new("RGB", (640, 480), (90, 90, 90)).save(source)
    bystander = tmp_path / "temp_a.jpg"
    Image.new("RGB", (64, 64), (1, 2, 3)).save(bystander)
    original_bytes = bystander.read_bytes()
    generator = g.GeminiMetadataGenerator(
        "gemini-2.5-flash",
        "key",
        agent=LiteLLMAgentStub(_payload()),  # type: ignore[arg-type]
    )

    await generator.generate(source, max_title_chars=200, max_tags=45)

    assert sorted(p.name for p in tmp_path.iterdir()) == ["a.png", "temp_a.jpg"]
    assert bystander.read_bytes() == original_bytes


@pytest.mark.asyncio
async def test_malformed_usage_raises_generation_error(photo: Path) -> None:
    """A usage object without the expected counters fails the item like any provider error."""
    agent = LiteLLMAgentStub(_payload())
    original_run = agent.run

    async def run_without_counters(*args: Any, **kwargs: Any) -> SimpleNamespace:  # noqa: ANN401
        result = await original_run(*args, **kwargs)
        return SimpleNamespace(output=result.output, usage=lambda: SimpleNamespace())

    agent.run = run_without_counters  # type: ignore[method-assign]
    generator = g.GptMetadataGenerator("gpt-4.1-nano", "sk-test", agent=agent)  # type: ignore[arg-type]

    with pytest.raises(g.GenerationError, match="^GPT: ") as excinfo:
        await generator.generate(photo, max_title_chars=200, max_tags=45)

    assert isinstance(excinfo.value.__cause__, AttributeError)


@pytest.mark.asyncio
async def test_provider_failure_raises_generation_error(photo: Path) -> None:
    """Provider exceptions are wrapped and chained."""
    generator = g.GptMetadataGenerator("gpt-4.1-nano", "sk-test", agent=FailingAgent())  # type: ignore[arg-type]

    with pytest.raises(g.GenerationError, match="GPT: quota exceeded") as excinfo:
        await generator.generate(photo, max_title_chars=200, max_tags=45)

    assert excinfo.value.provider == "GPT"
    assert isinstance(excinfo.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_unreadable_image_raises_generation_error(tmp_path: Path) -> None:
    """A file that cannot be read is fatal to the item."""
    agent = LiteLLMAgentStub(_payload())
    generator = g.GptMetadataGenerator("gpt-4.1-nano", "sk-test", agent=agent)  # type: ignore[arg-type]

    with pytest.raises(g.GenerationError, match="GPT"):
        await generator.generate(tmp_path / "missing.jpg", max_title_chars=200, max_tags=45)

    assert agent.calls == []


def test_gpt_system_prompt_states_range_and_exact_tag_count() -> None:
    """The title range is anchored at 150 and the tag count is exact."""
    prompt = g.build_gpt_system_prompt(200, 45)

    assert "IN RANGE OF 150 chars" in prompt
    assert "UNTIL 200 chars" in prompt
    assert "EXACTLY 45 keywords" in prompt


def test_gpt_system_prompt_floor_never_exceeds_limit() -> None:
    """A limit below 150 pulls the floor down with it."""
    prompt = g.build_gpt_system_prompt(80, 10)

    assert "IN RANGE OF 80 chars" in prompt
    assert "150" not in prompt


@pytest.mark.parametrize(
    ("ai_model", "expected_cls", "expected_model"),
    [
        ("gpt", g.GptMetadataGenerator, "gpt-4.1-mini"),
        ("gemini", g.GeminiMetadataGenerator, "gemini-2.0-flash"),
    ],
)
def test_create_generator_follows_active_provider(
    ai_model: str,
    expected_cls: type,
    expected_model: str,
) -> None:
    """The configured provider, model and key are handed to the matching generator."""
    config = AppConfig(
        ai_model=ai_model,
        gpt_model="gpt-4.1-mini",
        gemini_model="gemini-2.0-flash",
        gpt_api_key="gpt-key",
        gemini_api_key="gemini-key",
    )

    generator = g.create_generator(config)

    assert type(generator) is expected_cls
    assert generator.model_name == expected_model
    assert generator.api_key == f"{ai_model}-key"
