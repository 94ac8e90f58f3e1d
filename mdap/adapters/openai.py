"""
OpenAI chat completions adapter.
"""

from typing import Optional

from mdap.adapters.base import HTTPAdapter


class OpenAIAdapter(HTTPAdapter):
    """Calls POST /v1/chat/completions."""

    default_base_url = "https://api.openai.com"

    async def chat(self, prompt: str, system: Optional[str] = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        data = await self._post(
            "/v1/chat/completions",
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            payload={
                "model": self.config.model,
                "messages": messages,
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
            },
        )

        choices = data.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""
