"""
=====================================================
Support Line - OpenAI LLM Service
=====================================================
Chat completions for conversational replies and structured extraction
"""

from typing import Optional
from loguru import logger
from openai import AsyncOpenAI

from .llm_base import (
    LLMServiceBase,
    LLMRequest,
    LLMResponse,
    LLMRole
)


class OpenAILLM(LLMServiceBase):
    """
    OpenAI chat completion service

    Features:
    - Non-streaming completions (a webhook turn needs the whole reply)
    - JSON mode for structured extraction
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        temperature: float = 0.7,
        max_tokens: int = 150,
        base_url: Optional[str] = None
    ):
        """
        Initialize OpenAI LLM service

        Args:
            api_key: OpenAI API key
            model: Model to use
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens in response
            base_url: Optional custom base URL
        """
        super().__init__(api_key, model)

        self.temperature = temperature
        self.max_tokens = max_tokens

        # Client is created lazily on first use
        self._client: Optional[AsyncOpenAI] = None
        self._base_url = base_url

    async def _get_client(self) -> AsyncOpenAI:
        """Get or create OpenAI client"""
        if self._client is None:
            kwargs = {"api_key": self.api_key}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def chat(self, request: LLMRequest) -> LLMResponse:
        """
        Non-streaming chat completion

        Args:
            request: LLM request

        Returns:
            Complete LLM response
        """
        client = await self._get_client()

        try:
            messages = [msg.to_dict() for msg in request.messages]

            logger.info(f"OpenAI: Sending {len(messages)} messages to {self.model}")

            kwargs = {
                "model": self.model,
                "messages": messages,
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
                "stream": False,
            }
            if request.json_mode:
                kwargs["response_format"] = {"type": "json_object"}

            response = await client.chat.completions.create(**kwargs)

            choice = response.choices[0]
            content = choice.message.content or ""
            usage = getattr(response, "usage", None)

            return LLMResponse(
                content=content,
                role=LLMRole.ASSISTANT,
                finish_reason=choice.finish_reason,
                tokens_used=usage.total_tokens if usage else 0,
                metadata={"model": response.model}
            )

        except Exception as e:
            logger.error(f"OpenAI: Chat error: {e}")
            raise


# Factory functions
def create_openai_llm(config: dict) -> OpenAILLM:
    """
    Factory function to create the conversational LLM from config

    Args:
        config: Configuration dictionary (from Settings)

    Returns:
        Configured OpenAILLM instance
    """
    return OpenAILLM(
        api_key=config.get('openai_api_key'),
        model=config.get('openai_model', 'gpt-4o'),
        temperature=config.get('openai_temperature', 0.7),
        max_tokens=config.get('openai_max_tokens', 150)  # Short replies for voice calls
    )


def create_extraction_llm(config: dict) -> OpenAILLM:
    """Factory for the deterministic-leaning extraction model"""
    return OpenAILLM(
        api_key=config.get('openai_api_key'),
        model=config.get('openai_extraction_model', 'gpt-4o'),
        temperature=0.0,
        max_tokens=config.get('openai_extraction_max_tokens', 400)
    )
