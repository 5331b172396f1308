import logging
from typing import Dict, Optional

import httpx

from crm.config import settings

logger = logging.getLogger(__name__)

class AIServiceError(Exception):
    """The chat completion API failed or returned no text."""

class ChatCompletionClient:
    """Thin client for an OpenAI-compatible chat completion endpoint."""

    def __init__(
        self,
        url: str = settings.AI_CHAT_URL,
        api_key: Optional[str] = settings.AI_API_KEY,
        model: str = settings.AI_MODEL,
        system_prompt: str = settings.AI_SYSTEM_PROMPT,
        timeout: float = settings.AI_TIMEOUT_SECONDS,
    ):
        self.url = url
        self.api_key = api_key
        self.model = model
        self.system_prompt = system_prompt
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def chat(self, message: str) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": message},
            ],
            "temperature": 0.7,
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, headers=self._headers(), json=payload)
        except httpx.HTTPError as exc:
            logger.error("AI chat request failed: %s", exc)
            raise AIServiceError("AI service unreachable") from exc

        if response.status_code >= 300:
            logger.error("AI chat failed: %s - %s", response.status_code, response.text)
            raise AIServiceError(f"AI service returned {response.status_code}")

        data = response.json()
        choices = data.get("choices") or []
        text = choices[0].get("message", {}).get("content") if choices else None
        if not text:
            logger.error("AI chat response missing content: %s", data)
            raise AIServiceError("No response text from AI")
        return text

def get_chat_client() -> ChatCompletionClient:
    return ChatCompletionClient()
