"""OpenAI-compatible LLM client used for score-gated enrichment."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from tidewatch.config import Settings
from tidewatch.errors import CollaboratorConfigError, RateLimitError

logger = logging.getLogger(__name__)

ANNOTATION_SYSTEM_PROMPT = (
    'Generate a single-line "Why it matters" statement (max 100 chars) for '
    "decision-makers. Be concise, focus on impact, not description. Return only "
    "the statement, no quotes, no formatting."
)


@dataclass
class LLMConfig:
    """Connection settings for one chat-completions endpoint."""

    api_endpoint: str
    model_id: str
    api_key: str
    temperature: float = 0.3
    max_tokens: int | None = 100
    extra_params: dict[str, Any] = field(default_factory=dict)


class LLMClient:
    """Vendor-agnostic chat client for OpenAI-compatible APIs."""

    def __init__(
        self,
        config: LLMConfig,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.api_key:
            raise CollaboratorConfigError("LLM API key is not configured")
        self.config = config
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> LLMClient:
        return cls(
            LLMConfig(
                api_endpoint=settings.llm_api_endpoint,
                model_id=settings.llm_model,
                api_key=settings.llm_api_key,
            ),
            timeout=settings.llm_timeout,
        )

    @staticmethod
    def _raise_for_status_with_context(response: httpx.Response) -> None:
        try:
            response.raise_for_status()
            return
        except httpx.HTTPStatusError as exc:
            detail = response.text.strip()
            try:
                body = response.json()
                if isinstance(body, dict):
                    if isinstance(body.get("error"), dict):
                        detail = body["error"].get("message") or body["error"].get("code") or detail
                    elif body.get("error"):
                        detail = str(body["error"])
                    elif body.get("message"):
                        detail = str(body["message"])
            except ValueError:
                pass
            if len(detail) > 400:
                detail = detail[:400]
            if response.status_code == 429:
                raise RateLimitError(
                    f"LLM API rate limit exceeded at {response.request.url}: {detail}",
                    provider="llm",
                ) from exc
            raise RuntimeError(
                f"LLM API request failed ({response.status_code}) at {response.request.url}: {detail}"
            ) from exc

    async def generate(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate a completion and return the assistant message content."""
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        payload: dict[str, Any] = {
            "model": self.config.model_id,
            "messages": messages,
            "temperature": temperature if temperature is not None else self.config.temperature,
        }
        tokens = max_tokens or self.config.max_tokens
        if tokens:
            payload["max_tokens"] = tokens
        payload.update(self.config.extra_params)

        url = f"{self.config.api_endpoint.rstrip('/')}/chat/completions"
        logger.debug("LLM request to %s model=%s", url, self.config.model_id)

        response = await self._client.post(url, json=payload, headers=headers)
        self._raise_for_status_with_context(response)

        data = response.json()
        content = data["choices"][0]["message"]["content"]
        logger.debug("LLM response tokens=%s", data.get("usage", {}))
        return content or ""

    async def enrich(
        self,
        text: str,
        context: dict[str, Any] | None = None,
        *,
        max_chars: int = 100,
    ) -> str | None:
        """Return a short annotation for ``text``, or None when generation fails.

        Rate-limit errors propagate so the caller's governor can back off.
        """
        context = context or {}
        lines = [f"Title: {text}"]
        if context.get("summary"):
            lines.append(f"Summary: {str(context['summary'])[:300]}")
        if context.get("category"):
            lines.append(f"Category: {context['category']}")
        sources = context.get("sources") or []
        if sources:
            lines.append(f"Sources: {', '.join(str(s) for s in sources[:5])}")

        messages = [
            {"role": "system", "content": ANNOTATION_SYSTEM_PROMPT},
            {"role": "user", "content": "\n".join(lines)},
        ]
        try:
            content = (await self.generate(messages)).strip()
        except RateLimitError:
            raise
        except (httpx.HTTPError, RuntimeError, KeyError, IndexError, ValueError) as exc:
            logger.warning("Enrichment failed for '%s': %s", text[:60], exc)
            return None

        if not content:
            return None
        if len(content) > max_chars:
            return content[: max_chars - 3] + "..."
        return content

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
