"""
Decision providers - one async "prompt in, text out" capability per model vendor.

The DecisionEngine only sees the DecisionProvider protocol; the registry
maps each agent (by name) to the provider that backs it.
"""
import logging
from typing import Dict, Iterable, Optional, Protocol, runtime_checkable

from anthropic import AsyncAnthropic
from google import genai
from google.genai import types as genai_types
from openai import AsyncOpenAI

from ..config import AgentProfile, TradingConfig
from ..errors import ProviderError

logger = logging.getLogger("fourcast.agents.providers")

XAI_BASE_URL = "https://api.x.ai/v1"
MAX_OUTPUT_TOKENS = 1024


@runtime_checkable
class DecisionProvider(Protocol):
    name: str

    async def generate(self, prompt: str, system: Optional[str] = None) -> str: ...


class OpenAIChatProvider:
    """Chat-completions provider. Also serves xAI through its OpenAI-compatible endpoint."""

    def __init__(self, api_key: str, model: str, name: str = "openai", base_url: Optional[str] = None):
        self.name = name
        self.model = model
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def generate(self, prompt: str, system: Optional[str] = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                response_format={"type": "json_object"},
                max_completion_tokens=MAX_OUTPUT_TOKENS,
            )
        except Exception as e:
            raise ProviderError(self.name, str(e)) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProviderError(self.name, "empty response")
        return content


class AnthropicProvider:
    def __init__(self, api_key: str, model: str, name: str = "anthropic"):
        self.name = name
        self.model = model
        self.client = AsyncAnthropic(api_key=api_key)

    async def generate(self, prompt: str, system: Optional[str] = None) -> str:
        kwargs = {}
        if system:
            kwargs["system"] = system
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=MAX_OUTPUT_TOKENS,
                messages=[{"role": "user", "content": prompt}],
                **kwargs,
            )
        except Exception as e:
            raise ProviderError(self.name, str(e)) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ).strip()
        if not text:
            raise ProviderError(self.name, "response contained no text block")
        return text


class GeminiProvider:
    def __init__(self, api_key: str, model: str, name: str = "google"):
        self.name = name
        self.model = model
        self.client = genai.Client(api_key=api_key)

    async def generate(self, prompt: str, system: Optional[str] = None) -> str:
        config = genai_types.GenerateContentConfig(
            system_instruction=system,
            response_mime_type="application/json",
            max_output_tokens=MAX_OUTPUT_TOKENS,
        )
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=config,
            )
        except Exception as e:
            raise ProviderError(self.name, str(e)) from e

        text = getattr(response, "text", None)
        if not text:
            raise ProviderError(self.name, "empty response")
        return text


class ProviderRegistry:
    """Maps agent name -> DecisionProvider."""

    def __init__(self, providers: Optional[Dict[str, DecisionProvider]] = None):
        self._providers: Dict[str, DecisionProvider] = dict(providers or {})

    def register(self, agent_name: str, provider: DecisionProvider):
        self._providers[agent_name] = provider

    def get(self, agent_name: str) -> Optional[DecisionProvider]:
        return self._providers.get(agent_name)

    def __contains__(self, agent_name: str) -> bool:
        return agent_name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    def agent_names(self) -> Iterable[str]:
        return list(self._providers)


def create_provider(profile: AgentProfile, api_key: str) -> DecisionProvider:
    if profile.provider == "openai":
        return OpenAIChatProvider(api_key, profile.model)
    if profile.provider == "xai":
        return OpenAIChatProvider(api_key, profile.model, name="xai", base_url=XAI_BASE_URL)
    if profile.provider == "anthropic":
        return AnthropicProvider(api_key, profile.model)
    if profile.provider == "google":
        return GeminiProvider(api_key, profile.model)
    raise ValueError(f"Unknown provider: {profile.provider}")


def build_provider_registry(config: TradingConfig) -> ProviderRegistry:
    """One provider per configured agent profile whose API key is present."""
    registry = ProviderRegistry()
    for profile in config.agent_profiles:
        api_key = config.provider_api_key(profile.provider)
        if not api_key:
            logger.warning(f"No API key for {profile.provider}; agent {profile.name} will fail its decisions")
            continue
        registry.register(profile.name, create_provider(profile, api_key))
        logger.info(f"Registered {profile.provider}/{profile.model} for {profile.name}")
    return registry
