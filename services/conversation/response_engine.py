"""
=====================================================
Support Line - Conversational Response Engine
=====================================================
One conversational turn: stored history + utterance → LLM reply,
bounded by a hard deadline, plus keyword escalation classification.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

from loguru import logger

from services.llm.llm_base import LLMRequest, LLMRole, LLMServiceBase, Message, run_with_deadline
from services.storage import CallStore, MessageRole, StoredMessage
from .escalation import EscalationReason, classify_escalation, detect_language


SYSTEM_PROMPT_EN = (
    "You are a compassionate mental health AI assistant on a phone line. Listen actively, "
    "provide support, and detect if the caller needs professional help. If they mention "
    "suicide or self-harm, suggest immediate help. Keep replies to two or three short "
    "sentences because they are spoken aloud. Respond in the same language as the caller."
)

SYSTEM_PROMPT_SW = (
    "Wewe ni msaidizi wa afya ya akili mwenye huruma kwenye simu. Sikiliza kwa makini, toa "
    "msaada, na gundua ikiwa mpigaji anahitaji msaada wa kitaalamu. Ikiwa wanataja kujiua "
    "au kujidhuru, pendekeza msaada wa haraka. Jibu kwa sentensi fupi. Jibu kwa Kiswahili."
)


@dataclass
class EngineReply:
    """Uniform result of one conversational turn"""
    text: str
    needs_escalation: bool = False
    reason: Optional[EscalationReason] = None
    degraded: bool = False


class ResponseEngine:
    """
    Wraps the completion service for a phone conversation.

    - History comes from the store (system prompt prefixed)
    - Timeout and failures degrade to fixed replies and never escalate
    - The assistant reply is stored only when the completion succeeded
    """

    TIMEOUT_REPLY = "I'm taking a bit longer to respond. Please hold on."
    FAILURE_REPLY = "I'm sorry, I'm having trouble responding right now. Please try again."
    EMPTY_REPLY = "I'm here to listen."

    # Keep last 10 turns (20 messages)
    MAX_HISTORY = 10

    def __init__(
        self,
        llm: LLMServiceBase,
        store: CallStore,
        timeout_seconds: float = 10.0,
        temperature: float = 0.7,
        max_tokens: int = 150
    ):
        self.llm = llm
        self.store = store
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_messages(self, utterance: str, history: List[StoredMessage]) -> List[Message]:
        """System prompt + trimmed history, ending with the current utterance"""
        prompt = SYSTEM_PROMPT_SW if detect_language(utterance) == "sw" else SYSTEM_PROMPT_EN
        messages = [Message(role=LLMRole.SYSTEM, content=prompt)]

        recent = history[-(self.MAX_HISTORY * 2):]
        for stored in recent:
            role = LLMRole.ASSISTANT if stored.role == MessageRole.ASSISTANT else LLMRole.USER
            messages.append(Message(role=role, content=stored.content))

        last = recent[-1] if recent else None
        if last is None or last.role != MessageRole.USER or last.content != utterance:
            messages.append(Message(role=LLMRole.USER, content=utterance))
        return messages

    async def respond(self, call_sid: str, conversation_id: str, utterance: str) -> EngineReply:
        """
        Produce the reply for one caller utterance.

        Args:
            call_sid: Call identifier (for logging)
            conversation_id: Conversation whose history is used
            utterance: What the caller just said

        Returns:
            EngineReply with text and escalation decision
        """
        history = await self.store.list_messages(conversation_id)
        messages = self.build_messages(utterance, history)

        request = LLMRequest(
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        try:
            response = await run_with_deadline(self.llm.chat(request), self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                f"Engine: Call {call_sid} completion exceeded {self.timeout_seconds}s - using hold reply"
            )
            return EngineReply(text=self.TIMEOUT_REPLY, degraded=True)
        except Exception as e:
            logger.error(f"Engine: Call {call_sid} completion failed: {e}")
            return EngineReply(text=self.FAILURE_REPLY, degraded=True)

        text = (response.content or "").strip() or self.EMPTY_REPLY
        await self.store.append_message(conversation_id, MessageRole.ASSISTANT, text)

        reason = classify_escalation(utterance)
        if reason:
            logger.info(f"Engine: Call {call_sid} flagged for escalation ({reason.value})")

        return EngineReply(text=text, needs_escalation=reason is not None, reason=reason)
