"""Gemini Generation Provider over the public ``generateContent`` REST API.

Each :meth:`GeminiProvider.generate` call issues exactly one
``POST {api_base}/models/{model}:generateContent`` request with
``responseLogprobs`` enabled and converts the returned ``logprobsResult``
into one normalized distribution per chosen token.

Gemini answers blocked prompts with HTTP 200 and no content, so the safety
checks run before anything else in the body is read.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from token_wheel.exceptions import ProviderFailureError, SafetyBlockedError
from token_wheel.generation.base import GenerationProvider, normalize_logprobs
from token_wheel.generation.registry import register_provider
from token_wheel.generation.types import ProviderResponse, SamplingParams

if TYPE_CHECKING:
    from token_wheel.config import TokenWheelConfig

logger = logging.getLogger("token_wheel")

_API_KEY_HEADER = "x-goog-api-key"
_DETAIL_EXCERPT_CHARS = 200


def build_request_body(prompt: str, params: SamplingParams) -> dict[str, Any]:
    """Build the ``generateContent`` JSON body for one call."""
    body: dict[str, Any] = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {
            "temperature": params.temperature,
            "topP": params.top_p,
            "topK": params.top_k,
            "maxOutputTokens": params.max_tokens,
            "responseLogprobs": True,
            "logprobs": params.num_candidates,
        },
    }
    if params.system_instruction:
        body["systemInstruction"] = {"parts": [{"text": params.system_instruction}]}
    return body


def parse_response(data: dict[str, Any]) -> ProviderResponse:
    """Classify and convert a ``generateContent`` response body.

    Args:
        data: Decoded JSON response.

    Returns:
        Tokens with one normalized distribution per position.

    Raises:
        SafetyBlockedError: If the prompt was blocked or generation stopped
            on the safety filter.
        ProviderFailureError: If no candidate or no log-probabilities came back.
    """
    block_reason = (data.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        raise SafetyBlockedError(str(block_reason))

    candidates = data.get("candidates") or []
    if not candidates:
        raise ProviderFailureError("No content generated - empty response from Gemini")

    candidate = candidates[0]
    if candidate.get("finishReason") == "SAFETY":
        raise SafetyBlockedError("Generation stopped by safety filter")

    logprobs_result = candidate.get("logprobsResult")
    if not logprobs_result or "chosenCandidates" not in logprobs_result:
        raise ProviderFailureError("No logprobs returned - check API configuration")

    chosen = logprobs_result.get("chosenCandidates") or []
    top = logprobs_result.get("topCandidates") or []

    tokens: list[str] = []
    distributions: list[dict[str, float]] = []
    for index, choice in enumerate(chosen):
        token = choice.get("token", "")
        position_top = (top[index].get("candidates") or []) if index < len(top) else []
        pairs = [(c.get("token", ""), float(c.get("logProbability", 0.0))) for c in position_top]
        # With temperature > 0 the sampled token can fall outside the top-K
        # candidates; it must still be selectable at its own position.
        if all(t != token for t, _ in pairs):
            pairs.append((token, float(choice.get("logProbability", 0.0))))
        tokens.append(token)
        distributions.append(normalize_logprobs(pairs))

    parts = (candidate.get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts)
    return ProviderResponse(text=text, tokens=tuple(tokens), distributions=tuple(distributions))


@register_provider("gemini")
class GeminiProvider(GenerationProvider):
    """Generation Provider backed by the Gemini REST API.

    Args:
        config: Configuration with endpoint, model, key and timeout.
        transport: Optional httpx transport, used by tests to stub the API.
    """

    def __init__(
        self,
        config: TokenWheelConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = f"{config.api_base.rstrip('/')}/models/{config.model}:generateContent"
        self._model = config.model
        self._api_key = config.api_key
        self._timeout_s = config.request_timeout_s
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._call_count = 0
        self._last_latency_ms: float | None = None

    @property
    def name(self) -> str:
        """Return ``'gemini'``."""
        return "gemini"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers[_API_KEY_HEADER] = self._api_key
            self._client = httpx.AsyncClient(
                timeout=self._timeout_s,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def generate(self, prompt: str, params: SamplingParams) -> ProviderResponse:
        """Issue one ``generateContent`` call for *prompt*.

        Raises:
            SafetyBlockedError: If Gemini blocked the prompt or the output.
            ProviderFailureError: On HTTP >= 400, transport errors, timeouts,
                undecodable bodies or missing log-probabilities.
        """
        self._call_count += 1
        body = build_request_body(prompt, params)
        start = time.perf_counter()
        try:
            response = await self._get_client().post(self._endpoint, json=body)
        except httpx.TimeoutException as exc:
            raise ProviderFailureError(
                f"Gemini request timed out after {self._timeout_s:.0f}s", detail=str(exc)
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderFailureError("Gemini request failed", detail=str(exc)) from exc
        self._last_latency_ms = (time.perf_counter() - start) * 1000.0

        if response.status_code >= 400:
            excerpt = response.text[:_DETAIL_EXCERPT_CHARS]
            logger.error("Gemini returned HTTP %d: %s", response.status_code, excerpt)
            raise ProviderFailureError(f"HTTP {response.status_code} from Gemini", detail=excerpt)

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderFailureError("Gemini returned a non-JSON body", detail=str(exc)) from exc

        if not isinstance(data, dict):
            raise ProviderFailureError(
                "Gemini returned an unexpected body", detail=str(data)[:_DETAIL_EXCERPT_CHARS]
            )
        result = parse_response(data)
        logger.debug(
            "Gemini generated %d tokens in %.1fms",
            len(result.tokens),
            self._last_latency_ms,
        )
        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def health_check(self) -> dict[str, Any]:
        """Return provider status. The API key is never included."""
        return {
            "provider": self.name,
            "model": self._model,
            "endpoint": self._endpoint,
            "authenticated": bool(self._api_key),
            "calls": self._call_count,
            "last_latency_ms": (
                round(self._last_latency_ms, 2) if self._last_latency_ms is not None else None
            ),
        }
