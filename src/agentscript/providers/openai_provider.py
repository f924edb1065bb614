"""OpenAI-backed provider for llm, vision and audio steps."""

from typing import Any

import openai
from loguru import logger
from openai import AsyncOpenAI

from ..config import LLMConfig
from ..credentials import SecretResolver
from ..dsl.types import ExecutionContext, StepKind
from .contract import (
    AuthFailure,
    CapabilityProvider,
    InvalidInput,
    ProviderError,
    ProviderTimeout,
    RateLimited,
    Unavailable,
)


class OpenAIProvider(CapabilityProvider):
    """Chat completions for llm/vision steps and speech synthesis for audio steps."""

    name = "openai"
    kinds = frozenset({StepKind.LLM, StepKind.VISION, StepKind.AUDIO})

    def __init__(
        self,
        config: LLMConfig | None = None,
        client: AsyncOpenAI | None = None,
        resolver: SecretResolver | None = None,
    ):
        self.config = config or LLMConfig()
        self.client = client
        self.resolver = resolver or SecretResolver()

        self.stats = {"requests": 0, "total_tokens": 0}

    def _get_client(self) -> AsyncOpenAI:
        if self.client is None:
            api_key = self.config.api_key or self.resolver.get_credential(self.config.api_key_env)
            if not api_key:
                raise AuthFailure(f"No API key: set {self.config.api_key_env}", self.name)
            self.client = AsyncOpenAI(
                api_key=api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                max_retries=0,
            )
            logger.info(f"OpenAI provider initialized (default model: {self.config.model})")
        return self.client

    async def execute(
        self,
        kind: StepKind,
        model: str | None,
        rendered_input: dict[str, Any],
        context: ExecutionContext,
    ) -> Any:
        client = self._get_client()
        model = model or self.config.model
        self.stats["requests"] += 1

        try:
            if kind == StepKind.AUDIO:
                return await self._speech(client, model, rendered_input)
            return await self._chat(client, kind, model, rendered_input, context)
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise AuthFailure(str(e), self.name) from e
        except openai.RateLimitError as e:
            raise RateLimited(str(e), self.name) from e
        except openai.APITimeoutError as e:
            raise ProviderTimeout(str(e), self.name) from e
        except (openai.BadRequestError, openai.UnprocessableEntityError, openai.NotFoundError) as e:
            raise InvalidInput(str(e), self.name) from e
        except (openai.APIConnectionError, openai.InternalServerError) as e:
            raise Unavailable(str(e), self.name) from e
        except openai.OpenAIError as e:
            raise ProviderError(str(e), self.name) from e

    async def _chat(
        self,
        client: AsyncOpenAI,
        kind: StepKind,
        model: str,
        rendered_input: dict[str, Any],
        context: ExecutionContext,
    ) -> str:
        prompt = rendered_input.get("prompt") or ""
        if kind == StepKind.VISION:
            content: Any = [
                {"type": "text", "text": prompt or "Describe this image."},
                {"type": "image_url", "image_url": {"url": rendered_input.get("input")}},
            ]
        else:
            content = prompt

        options = context.options
        response = await client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": content}],
            temperature=options.get("temperature", self.config.temperature),
            max_tokens=options.get("max_tokens", self.config.max_tokens),
        )

        if response.usage is not None:
            self.stats["total_tokens"] += response.usage.total_tokens
        return response.choices[0].message.content or ""

    async def _speech(self, client: AsyncOpenAI, model: str, rendered_input: dict[str, Any]) -> bytes:
        text = rendered_input.get("text") or rendered_input.get("input")
        if not text:
            raise InvalidInput("Audio step needs 'text' or 'input'", self.name)
        response = await client.audio.speech.create(
            model=model,
            voice=rendered_input.get("voice", "alloy"),
            input=text,
        )
        return response.content

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
            self.client = None
