"""LLM text generation over the credential pool."""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from siteprompt.config import Settings
from siteprompt.errors import GenerationError, NoCredentialsAvailableError
from siteprompt.services.credentials import CredentialPool, key_preview
from siteprompt.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

NO_ALTERNATE_KEY_MESSAGE = "Nu există chei API alternative valide pentru reîncercare."
RETRY_FAILED_MESSAGE = "Generarea a eșuat și după reîncercarea cu o altă cheie API"
REQUEST_FAILED_MESSAGE = "Eroare la generarea conținutului"


@dataclass
class Completion:
    """Raw output of one completion call."""

    content: str
    usage: dict[str, int] | None = None


@dataclass
class GenerationResult:
    content: str
    model: str
    usage: dict[str, int] | None = None


# (api_key, prompt, model, temperature, max_tokens) -> Completion
CompletionFn = Callable[[str, str, str, float, int], Awaitable[Completion]]


def _usage_dict(usage: Any) -> dict[str, int] | None:
    if usage is None:
        return None
    return {
        "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
        "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
        "total_tokens": getattr(usage, "total_tokens", 0) or 0,
    }


def is_model_not_found(error: BaseException) -> bool:
    return (
        isinstance(error, APIStatusError)
        and error.status_code == 404
        and "model" in str(error).lower()
    )


class OpenAICompletion:
    """Chat completions through one cached ``AsyncOpenAI`` client per key.

    Connection failures and timeouts are retried with ``retry_policy``; HTTP
    errors are left to the caller so the key can be classified.
    """

    def __init__(self, settings: Settings, retry_policy: RetryPolicy | None = None):
        self.timeout = settings.llm_timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._clients: dict[str, AsyncOpenAI] = {}

    def _get_client(self, api_key: str) -> AsyncOpenAI:
        """Lazy load a client for ``api_key``."""
        client = self._clients.get(api_key)
        if client is None:
            # Retries are handled here, not inside the SDK
            client = AsyncOpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)
            self._clients[api_key] = client
        return client

    async def __call__(
        self,
        api_key: str,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> Completion:
        client = self._get_client(api_key)

        async def _create():
            return await client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
            )

        response = await self.retry_policy.run(
            _create,
            should_retry=lambda exc: isinstance(exc, (APIConnectionError, httpx.TransportError)),
            operation_name=f"{model} completion with key {key_preview(api_key)}",
        )
        content = response.choices[0].message.content if response.choices else None
        return Completion(content=content or "", usage=_usage_dict(response.usage))

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


class Generator:
    """Generates text with automatic key rotation and a single failover retry.

    Args:
        pool: Credential pool to draw keys from
        settings: Application settings (model names and defaults)
        completion_fn: Optional completion callable; defaults to OpenAI
    """

    def __init__(
        self,
        pool: CredentialPool,
        settings: Settings,
        completion_fn: CompletionFn | None = None,
    ):
        self.pool = pool
        self.settings = settings
        self.completion_fn = completion_fn or OpenAICompletion(settings)

    async def _attempt(
        self,
        key: str,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> GenerationResult:
        try:
            completion = await self.completion_fn(key, prompt, model, temperature, max_tokens)
        except APIStatusError as e:
            fallback = self.settings.llm_fallback_model
            if not is_model_not_found(e) or not fallback or model == fallback:
                raise
            logger.warning(f"Model {model} not found, falling back to {fallback}")
            model = fallback
            completion = await self.completion_fn(key, prompt, model, temperature, max_tokens)

        if completion.usage and completion.usage.get("total_tokens"):
            tokens = completion.usage["total_tokens"]
        else:
            tokens = self.pool.estimate_tokens(prompt + completion.content)
        self.pool.record_usage(key, tokens)

        logger.info(f"Generated {len(completion.content)} chars with {model} ({tokens} tokens)")
        return GenerationResult(content=completion.content, model=model, usage=completion.usage)

    async def generate(
        self,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> GenerationResult:
        """Generate a completion for ``prompt``.

        Raises:
            NoCredentialsAvailableError: If no key is eligible at all
            GenerationError: If the call failed, after at most one failover
        """
        temperature = self.settings.llm_temperature if temperature is None else temperature
        max_tokens = max_tokens or self.settings.llm_max_tokens
        model = model or self.settings.llm_model

        key = self.pool.select_credential()
        try:
            return await self._attempt(key, prompt, model, temperature, max_tokens)
        except (APIStatusError, APIConnectionError) as e:
            kind = self.pool.classify_failure(key, e)
            if kind is None or not kind.retryable:
                logger.error(f"Generation failed with key {key_preview(key)}: {e}")
                raise GenerationError(f"{REQUEST_FAILED_MESSAGE}: {e}") from e
            logger.warning(
                f"Key {key_preview(key)} failed ({kind.value}), retrying with another key"
            )
            first_error = e

        try:
            retry_key = self.pool.select_credential(exclude=[key])
        except NoCredentialsAvailableError:
            raise GenerationError(NO_ALTERNATE_KEY_MESSAGE, retryable=True) from first_error

        try:
            return await self._attempt(retry_key, prompt, model, temperature, max_tokens)
        except (APIStatusError, APIConnectionError) as e:
            self.pool.classify_failure(retry_key, e)
            logger.error(f"Retry with key {key_preview(retry_key)} failed: {e}")
            raise GenerationError(f"{RETRY_FAILED_MESSAGE}: {e}") from e

    async def close(self) -> None:
        close = getattr(self.completion_fn, "close", None)
        if close is not None:
            await close()
