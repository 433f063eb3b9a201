"""
=====================================================
Support Line - LLM Service Base Interface
=====================================================
Abstract base class for LLM (Large Language Model) providers
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Dict, List, Optional, TypeVar
from dataclasses import dataclass, field
from enum import Enum
import asyncio

from loguru import logger


T = TypeVar("T")


class LLMRole(Enum):
    """Roles in conversation"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """Conversation message"""
    role: LLMRole
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for API calls"""
        return {
            "role": self.role.value,
            "content": self.content
        }


@dataclass
class LLMRequest:
    """Request for LLM completion"""
    messages: List[Message]
    temperature: float = 0.7
    max_tokens: int = 150
    json_mode: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMResponse:
    """Response from LLM"""
    content: str
    role: LLMRole = LLMRole.ASSISTANT
    finish_reason: Optional[str] = None
    tokens_used: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


class LLMServiceBase(ABC):
    """
    Abstract base class for LLM services

    All LLM providers must implement this interface.
    """

    def __init__(self, api_key: str, model: str = "gpt-4o"):
        """
        Initialize LLM service

        Args:
            api_key: Provider API key
            model: Model identifier
        """
        self.api_key = api_key
        self.model = model

    @abstractmethod
    async def chat(self, request: LLMRequest) -> LLMResponse:
        """
        Non-streaming chat completion

        Args:
            request: LLM request

        Returns:
            Complete LLM response
        """
        pass


def _log_abandoned(task: asyncio.Future) -> None:
    """Collect the outcome of a call nobody waits for any more"""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"LLM: Abandoned call finished with error: {error}")
    else:
        logger.debug("LLM: Abandoned call finished after its deadline")


async def run_with_deadline(awaitable: Awaitable[T], timeout: float) -> T:
    """
    Await an external call for at most ``timeout`` seconds.

    On expiry the call is abandoned, not cancelled: it keeps running in
    the background and its result is discarded.

    Raises:
        asyncio.TimeoutError: if the deadline passes first
    """
    task = asyncio.ensure_future(awaitable)
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if not done:
        task.add_done_callback(_log_abandoned)
        raise asyncio.TimeoutError(f"no response within {timeout}s")
    return task.result()
