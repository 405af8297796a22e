"""
Async Ollama Client Wrapper

Provides structured (JSON-schema constrained) chat completions on top of Ollama,
with retries, a per-model circuit breaker and request metrics.
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, List, Dict, Any

import httpx
from ollama import AsyncClient

from .config import LLMConfig
from .exceptions import FlowGuardError


logger = logging.getLogger(__name__)


class OllamaConnectionError(FlowGuardError):
    """Ollama service is unreachable."""
    pass


class OllamaModelNotFoundError(FlowGuardError):
    """Configured model has not been pulled."""
    pass


class OllamaGenerationError(FlowGuardError):
    """Chat request failed or the circuit is open."""
    pass


class LLMResponseError(FlowGuardError):
    """Model output is not a JSON object."""
    pass



_JSON_FENCE_RE = re.compile(r'```json\s*\n(.*?)\n\s*```', re.DOTALL)
_ANY_FENCE_RE = re.compile(r'```\s*\n(.*?)\n\s*```', re.DOTALL)


def parse_json_response(text: str) -> Dict[str, Any]:
    """Extract a JSON object from model output.

    Accepts ```json fenced blocks, generic fenced blocks, bare JSON, or JSON
    surrounded by prose.

    Raises:
        LLMResponseError: If no JSON object can be decoded
    """
    candidates = []
    for pattern in (_JSON_FENCE_RE, _ANY_FENCE_RE):
        match = pattern.search(text)
        if match:
            candidates.append(match.group(1))
    candidates.append(text)

    start, end = text.find('{'), text.rfind('}')
    if 0 <= start < end:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate.strip())
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    preview = text[:200].replace('\n', ' ')
    raise LLMResponseError(f"Model response is not a JSON object: {preview}")


@dataclass
class ModelMetrics:
    """Request counters and circuit state for one model."""
    request_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    total_latency: float = 0.0
    last_success: Optional[float] = None
    last_failure: Optional[float] = None
    circuit_open_until: Optional[float] = None

    @property
    def average_latency(self) -> float:
        return self.total_latency / self.success_count if self.success_count else 0.0

    def record_success(self, latency: float):
        self.request_count += 1
        self.success_count += 1
        self.consecutive_failures = 0
        self.total_latency += latency
        self.last_success = time.time()

    def record_failure(self):
        self.request_count += 1
        self.failure_count += 1
        self.consecutive_failures += 1
        self.last_failure = time.time()

    def circuit_open(self, now: float) -> bool:
        if self.circuit_open_until is None:
            return False
        if now < self.circuit_open_until:
            return True
        self.circuit_open_until = None
        self.consecutive_failures = 0
        return False


class OllamaClient:
    """
    Async wrapper around the Ollama chat API that returns schema-shaped JSON.

    Usage:
        async with OllamaClient.from_config(config.llm) as client:
            data = await client.generate_structured(messages, schema)
    """

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "qwen2.5-coder:7b",
        temperature: float = 0.2,
        max_tokens: Optional[int] = 4000,
        timeout: int = 300,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60,
    ):
        """
        Args:
            host: Ollama service URL
            model: Model used for every structured request
            temperature: Sampling temperature
            max_tokens: Cap on generated tokens (num_predict), None for no cap
            timeout: Per-request timeout in seconds
            max_retries: Attempts per request on connection errors and timeouts
            retry_delay: First backoff delay, doubled on each retry
            circuit_breaker_threshold: Consecutive failed requests that open the circuit
            circuit_breaker_timeout: Seconds the circuit stays open
        """
        self.host = host
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.circuit_breaker_threshold = circuit_breaker_threshold
        self.circuit_breaker_timeout = circuit_breaker_timeout

        self._client: Optional[AsyncClient] = None
        self._metrics: Dict[str, ModelMetrics] = {}

    @classmethod
    def from_config(cls, config: LLMConfig) -> 'OllamaClient':
        return cls(
            host=config.host,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            circuit_breaker_threshold=config.circuit_breaker_threshold,
            circuit_breaker_timeout=config.circuit_breaker_timeout,
        )

    async def __aenter__(self):
        self._client = AsyncClient(host=self.host, timeout=self.timeout)
        logger.info(f"Ollama client ready at {self.host} (model: {self.model})")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self._client = None

    def _metrics_for(self, model: str) -> ModelMetrics:
        return self._metrics.setdefault(model, ModelMetrics())

    def _on_failure(self, model: str):
        metrics = self._metrics_for(model)
        metrics.record_failure()
        if metrics.consecutive_failures >= self.circuit_breaker_threshold:
            metrics.circuit_open_until = time.time() + self.circuit_breaker_timeout
            logger.error(
                f"Opening circuit for {model} after {metrics.consecutive_failures} failed requests, "
                f"cooling down for {self.circuit_breaker_timeout}s"
            )

    async def health_check(self) -> bool:
        """True when the Ollama service answers a model listing."""
        if not self._client:
            return False

        try:
            await self._client.list()
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            logger.debug(f"Ollama unreachable at {self.host}: {e}")
            return False
        except Exception as e:
            logger.warning(f"Ollama health check error: {e}")
            return False
        return True

    async def check_model(self, model_name: Optional[str] = None) -> bool:
        """Check if a model (default: the configured one) has been pulled."""
        model_name = model_name or self.model
        if not self._client:
            return False

        try:
            listing = await self._client.list()
        except Exception as e:
            logger.error(f"Could not list Ollama models: {e}")
            return False

        available = [m.get('model') or m.get('name') for m in listing.get('models', [])]
        if model_name not in available:
            logger.warning(f"Model '{model_name}' is not pulled (have: {available}). Run: ollama pull {model_name}")
            return False
        return True

    async def generate_structured(
        self,
        messages: List[Dict[str, str]],
        schema: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Run a chat completion constrained to a JSON schema.

        Args:
            messages: Chat messages ({"role": ..., "content": ...})
            schema: JSON schema the response must follow

        Returns:
            Decoded JSON object

        Raises:
            OllamaConnectionError: Service unreachable after all retries
            OllamaModelNotFoundError: Model not pulled
            OllamaGenerationError: Timeout, other chat failure, or open circuit
            LLMResponseError: Output was not a JSON object
        """
        if not self._client:
            raise OllamaConnectionError("Client not initialized")

        model = self.model
        if self._metrics_for(model).circuit_open(time.time()):
            raise OllamaGenerationError(f"Circuit breaker is open for {model}, try again later")

        options: Dict[str, Any] = {"temperature": self.temperature}
        if self.max_tokens:
            options["num_predict"] = self.max_tokens

        started = time.time()
        try:
            response = await self._chat_with_retry(
                model=model,
                messages=messages,
                format=schema,
                options=options,
                stream=False,
            )
        except (OllamaConnectionError, OllamaModelNotFoundError, OllamaGenerationError):
            self._on_failure(model)
            raise
        except Exception as e:
            self._on_failure(model)
            logger.error(f"Chat request to {model} failed: {e}")
            raise OllamaGenerationError(f"Generation failed: {e}") from e

        self._metrics_for(model).record_success(time.time() - started)
        return parse_json_response(response['message']['content'] or '')

    async def _chat_with_retry(self, **request) -> Any:
        """Retry connection errors and timeouts with exponential backoff."""
        model = request['model']
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._client.chat(**request)
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                if attempt == self.max_retries:
                    if isinstance(e, httpx.ConnectError):
                        raise OllamaConnectionError(
                            f"Cannot reach Ollama at {self.host} after {attempt} attempts"
                        ) from e
                    raise OllamaGenerationError(f"Request timed out after {attempt} attempts") from e

                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"{type(e).__name__} talking to {model} (attempt {attempt}/{self.max_retries}), "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
            except Exception as e:
                if "not found" in str(e).lower():
                    raise OllamaModelNotFoundError(f"Model '{model}' not found. Run: ollama pull {model}") from e
                raise

        raise OllamaGenerationError("max_retries must be at least 1")

    def get_metrics(self, model: Optional[str] = None) -> Dict[str, ModelMetrics]:
        """Metrics for one model, or a copy of all of them."""
        if model:
            return {model: self._metrics_for(model)}
        return dict(self._metrics)
