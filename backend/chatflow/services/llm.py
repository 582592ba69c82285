"""
Text generation provider - OpenAI chat completions
"""
import asyncio
import logging
from typing import Optional, Dict, List

import openai
from openai import AsyncOpenAI

from ..core.config import settings
from ..core.exceptions import GenerationError

logger = logging.getLogger(__name__)


class TextGenerator:
    """
    Thin async wrapper around chat completions.

    Attributes:
        client: AsyncOpenAI client for LLM calls
        max_retries: Retries on rate limits and connection errors
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        max_retries: int = 2,
        timeout: float = 30.0
    ):
        self.client = AsyncOpenAI(api_key=api_key) if api_key else AsyncOpenAI()
        self.max_retries = max_retries
        self.timeout = timeout

    async def generate(
        self,
        model: str,
        system_prompt: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 500
    ) -> str:
        """
        Generate a reply for a role-tagged history.

        Args:
            model: Model name, e.g. gpt-4o-mini
            system_prompt: System instruction
            messages: [{"role": "user"|"assistant", "content": ...}] oldest first
            temperature: Sampling temperature
            max_tokens: Output token cap

        Returns:
            Generated text

        Raises:
            GenerationError: when every attempt failed or the reply was empty
        """
        payload = [{"role": "system", "content": system_prompt}] + list(messages)
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.chat.completions.create(
                    model=model,
                    messages=payload,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    timeout=self.timeout
                )
                content = response.choices[0].message.content if response.choices else None
                if not content or not content.strip():
                    raise GenerationError("Empty completion")
                return content.strip()

            except openai.RateLimitError as e:
                logger.warning(f"Rate limit hit on attempt {attempt}: {e}")
                last_error = e
                if attempt < self.max_retries:
                    await asyncio.sleep(1 * (attempt + 1))
                continue

            except openai.APIConnectionError as e:
                logger.warning(f"Connection error on attempt {attempt}: {e}")
                last_error = e
                if attempt < self.max_retries:
                    await asyncio.sleep(0.5)
                continue

            except openai.OpenAIError as e:
                logger.error(f"OpenAI error during generation: {e}")
                raise GenerationError(str(e)) from e

        raise GenerationError(f"Generation failed after retries: {last_error}")


def create_text_generator(api_key: Optional[str] = None) -> TextGenerator:
    """Factory function; falls back to the OPENAI_API_KEY setting"""
    return TextGenerator(api_key=api_key or settings.OPENAI_API_KEY or None)
