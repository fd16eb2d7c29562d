"""HTTP client for the chat-completions price source."""

import json
from collections.abc import Callable, Sequence
from typing import Any

import httpx

from grocerypricing.config import get_settings
from grocerypricing.logging_config import get_logger
from grocerypricing.pricing.exceptions import (
    UpstreamHTTPError,
    UpstreamNotConfigured,
    UpstreamTimeout,
)
from grocerypricing.pricing.models import IngredientRequest
from grocerypricing.pricing.stores import SEARCH_DOMAINS

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a grocery pricing assistant. Return ONLY a valid JSON array "
    "with the requested fields. No extra text."
)

PromptBuilder = Callable[[Sequence[IngredientRequest], str, str, str | None], str]


def build_pricing_prompt(
    ingredients: Sequence[IngredientRequest],
    location: str,
    city: str = "",
    preferred_store: str | None = None,
) -> str:
    """Minimal batch prompt asking for one JSON object per ingredient."""
    lines = [
        json.dumps({"name": ing.name, "amount": ing.amount, "unit": ing.unit})
        for ing in ingredients
    ]
    where = f"ZIP {location}" + (f" (city: {city})" if city else "")
    preference = f" Prefer {preferred_store} when it carries the item." if preferred_store else ""
    return (
        f"Find current grocery prices for these ingredients in {where} at major "
        f"grocery chains.{preference}\n"
        + "\n".join(f"- {line}" for line in lines)
        + "\n\nReturn a JSON array with one object per ingredient using the keys "
        '"ingredient", "storeName", "productName", "packageSize", "packagePrice", '
        '"portionCost", "unitPrice", "storeType", "sourceUrl".'
    )


class PerplexityClient:
    """Async client for the chat-completions pricing endpoint."""

    SERVICE_NAME = "perplexity-pricing"

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.perplexity_api_key
        self.base_url = (base_url or settings.perplexity_base_url).rstrip("/")
        self.model = model or settings.perplexity_model
        self.max_tokens = max_tokens or settings.perplexity_max_tokens
        self.timeout = timeout or settings.effective_upstream_timeout
        self._client = client
        self._owns_client = client is None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def build_payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": self.max_tokens,
            "temperature": 0.1,
            "top_p": 0.9,
            "return_citations": False,
            "search_domain_filter": SEARCH_DOMAINS,
        }

    async def complete(self, prompt: str) -> str:
        """
        Send a prompt and return the assistant message content.

        Raises:
            UpstreamNotConfigured: If no API key is set.
            UpstreamTimeout: On timeouts, connection failures and other transport errors.
            UpstreamHTTPError: On non-2xx responses.
        """
        if not self.is_configured:
            raise UpstreamNotConfigured("Pricing API key is not configured", service=self.SERVICE_NAME)

        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                json=self.build_payload(prompt),
                headers=self._get_headers(),
                timeout=self.timeout,
            )
        except httpx.RequestError as e:
            logger.warning(f"Pricing API unreachable: {type(e).__name__}")
            raise UpstreamTimeout(f"Pricing API request failed: {e}", service=self.SERVICE_NAME) from e

        if response.status_code >= 400:
            body = response.text
            logger.error(f"Pricing API returned {response.status_code}")
            raise UpstreamHTTPError(
                f"Pricing API returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
                service=self.SERVICE_NAME,
            )

        try:
            data = response.json()
        except ValueError:
            logger.warning("Pricing API returned a non-JSON body")
            return ""

        if not isinstance(data, dict):
            logger.warning(f"Pricing API returned a JSON {type(data).__name__} instead of an object")
            return ""

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message")
        if not isinstance(message, dict):
            return ""
        content = message.get("content")
        return content if isinstance(content, str) else ""
