"""
Anthropic messages adapter.
"""

from typing import Optional

from mdap.adapters.base import HTTPAdapter

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter(HTTPAdapter):
    """Calls POST /v1/messages."""

    default_base_url = "https://api.anthropic.com"

    async def chat(self, prompt: str, system: Optional[str] = None) -> str:
        payload = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            payload["system"] = system

        data = await self._post(
            "/v1/messages",
            headers={
                "x-api-key": self.config.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            payload=payload,
        )

        for block in data.get("content") or []:
            if block.get("type") == "text":
                return block.get("text") or ""
        return ""
