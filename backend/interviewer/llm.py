import asyncio
import logging
from typing import Protocol

from openai import AsyncOpenAI

from core.config import LLM_RETRIES, LLM_TIMEOUT_SEC, MODEL_NAME, OPENAI_API_KEY

logger = logging.getLogger("interviewer.llm")


class CompletionClient(Protocol):
    async def complete(self, prompt: str) -> str:
        ...


class OpenAICompletionClient:
    """Plain-text completion over the chat completions API."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str = MODEL_NAME,
        timeout_sec: float = LLM_TIMEOUT_SEC,
        retries: int = LLM_RETRIES,
        temperature: float = 0.7,
    ):
        self.client = client or AsyncOpenAI(api_key=OPENAI_API_KEY or "missing-key")
        self.model = model
        self.timeout_sec = timeout_sec
        self.retries = retries
        self.temperature = temperature

    async def complete(self, prompt: str) -> str:
        """
        Sends prompt to the model and returns the stripped text.
        Returns "" when every attempt fails; callers treat that as no output.
        """
        if not str(prompt or "").strip():
            return ""

        last_error: Exception | None = None
        for attempt in range(max(1, self.retries + 1)):
            try:
                response = await asyncio.wait_for(
                    self.client.chat.completions.create(
                        model=self.model,
                        messages=[
                            {
                                "role": "system",
                                "content": "You are an expert interviewer. Reply with the requested text only."
                            },
                            {
                                "role": "user",
                                "content": prompt
                            }
                        ],
                        temperature=self.temperature,
                    ),
                    timeout=self.timeout_sec,
                )
                message = response.choices[0].message.content
                return str(message or "").strip()
            except asyncio.TimeoutError as exc:
                last_error = exc
                logger.warning("complete timeout | attempt=%s", attempt + 1)
            except Exception as exc:
                last_error = exc
                logger.warning("complete failure | attempt=%s err=%s", attempt + 1, exc)

            if attempt < self.retries:
                await asyncio.sleep(0.35 * (attempt + 1))

        logger.warning("complete fallback activated | err=%s", last_error)
        return ""
