"""
Base Adapter - Abstract base class for LLM provider adapters.

An adapter turns a prompt into a single completion. The voting engine never
sees adapters directly; it samples the single-argument oracle returned by
as_oracle().
"""

from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import BaseModel, Field


class AdapterError(Exception):
    """A provider request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AdapterConfig(BaseModel):
    """Configuration shared by all HTTP adapters."""

    api_key: str = Field(..., description="Provider API key")
    model: str = Field(..., description="Model name")
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, ge=1)
    base_url: Optional[str] = Field(None, description="Override the provider endpoint")
    timeout_seconds: float = Field(default=60.0)


class BaseAdapter(ABC):
    """Abstract base class for chat adapters."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the LLM model name."""
        pass

    @abstractmethod
    async def chat(self, prompt: str, system: Optional[str] = None) -> str:
        """
        Send one prompt and return the completion text.

        Raises:
            AdapterError: On a failed request
        """
        pass

    def as_oracle(self, system: Optional[str] = None):
        """Single-argument async callable suitable for vote()."""

        async def oracle(prompt: str) -> str:
            return await self.chat(prompt, system=system)

        return oracle

    async def close(self) -> None:
        """Release network resources."""
        pass


class HTTPAdapter(BaseAdapter):
    """Adapter backed by a shared httpx.AsyncClient."""

    default_base_url: str = ""

    def __init__(
        self,
        config: AdapterConfig,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.base_url = (config.base_url or self.default_base_url).rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    @property
    def model_name(self) -> str:
        return self.config.model

    async def _post(self, path: str, headers: dict, payload: dict) -> dict:
        try:
            response = await self.client.post(
                f"{self.base_url}{path}",
                headers=headers,
                json=payload,
            )
        except httpx.HTTPError as e:
            raise AdapterError(f"{type(self).__name__} request failed: {e}") from e

        if response.status_code >= 400:
            raise AdapterError(
                f"{type(self).__name__} API error: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        return response.json()

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
