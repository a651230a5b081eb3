# decision_engine/providers/text_generator.py
import aiohttp
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Any

from decision_engine.core.errors import AIServiceError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class TextGenerator(ABC):
    """واجهة مجردة لخدمة توليد النصوص"""

    @abstractmethod
    async def generate(self, prompt: str, max_tokens: int = 500) -> str:
        pass

    async def close(self) -> None:
        pass


class HttpTextGenerator(TextGenerator):
    """عميل لواجهة chat completions متوافقة مع OpenAI"""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        temperature: float = 0.2,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def generate(self, prompt: str, max_tokens: int = 500) -> str:
        """إرسال prompt وإرجاع النص المولد"""
        if not self.session:
            self.session = aiohttp.ClientSession()

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": self.temperature,
        }

        try:
            async with self.session.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    raise AIServiceError(
                        f"Text generation HTTP error: {response.status}",
                        context={
                            "status": response.status,
                            "retryable": response.status in RETRYABLE_STATUS_CODES,
                            "body": body[:500],
                        },
                    )
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AIServiceError(f"Text generation request failed: {e}", original_error=e)
        except ValueError as e:
            # 200 مع جسم ليس JSON
            raise AIServiceError("Text generation returned a non-JSON body", original_error=e)

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise AIServiceError("Unexpected text generation response shape", original_error=e)
