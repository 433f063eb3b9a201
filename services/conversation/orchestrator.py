"""
=====================================================
Support Line - Call Orchestrator
=====================================================

The orchestrator turns each Twilio webhook event into one voice response
document. It coordinates:
- Call lifecycle (connect, terminal status)
- Message persistence with duplicate-delivery protection
- Dictation turns (extraction pipeline + record commit)
- Conversational turns (response engine)
- Escalation to a human specialist

There is no in-process call state: every handler reads and writes the
store, so duplicate or out-of-order deliveries are absorbed there.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from config.settings import Settings, get_settings
from services.callers.caller_service import CallerService
from services.dictation.record_service import RecordService
from services.extraction import ExtractionPipeline, HeuristicExtractor, LLMExtractor
from services.llm.llm_base import LLMServiceBase
from services.llm.openai_service import create_extraction_llm, create_openai_llm
from services.specialists.specialist_directory import SpecialistDirectory
from services.storage import CallSession, CallStore, MessageRole, StorageError
from services.telephony.twilio_service import TwiMLBuilder, create_twiml_builder
from .escalation import EscalationReason
from .response_engine import ResponseEngine


TERMINAL_STATUSES = frozenset({"completed", "busy", "no-answer", "failed", "canceled"})
CONNECT_STATUS = "in-progress"

SUMMARY_SOURCE_CHARS = 200


class WebhookEvent(BaseModel):
    """Form fields Twilio posts to the voice webhook"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    call_sid: Optional[str] = Field(default=None, alias="CallSid")
    speech_result: Optional[str] = Field(default=None, alias="SpeechResult")
    from_number: Optional[str] = Field(default=None, alias="From")
    to_number: Optional[str] = Field(default=None, alias="To")
    call_status: Optional[str] = Field(default=None, alias="CallStatus")

    @classmethod
    def from_form(cls, form: Mapping[str, Any]) -> "WebhookEvent":
        return cls.model_validate({key: str(value) for key, value in form.items()})

    @property
    def is_terminal(self) -> bool:
        return (self.call_status or "").lower() in TERMINAL_STATUSES


@dataclass
class VoiceReply:
    """Response document for one webhook event"""
    body: str
    stage: str

    @property
    def is_empty(self) -> bool:
        return not self.body


class CallOrchestrator:
    """
    Call state machine

    NEW → AI_HANDLING → (COUNSELOR_ASSIGNED →) COMPLETED
    """

    def __init__(
        self,
        store: CallStore,
        engine: ResponseEngine,
        pipeline: ExtractionPipeline,
        directory: SpecialistDirectory,
        twiml: Optional[TwiMLBuilder] = None
    ):
        self.store = store
        self.engine = engine
        self.pipeline = pipeline
        self.directory = directory
        self.twiml = twiml or TwiMLBuilder()
        self.callers = CallerService(store)
        self.records = RecordService(store)

    # ---- entry point --------------------------------------------

    async def handle_event(self, event: WebhookEvent) -> VoiceReply:
        """
        Handle one webhook delivery

        Never raises: every path ends in a valid document.
        """
        call_sid = (event.call_sid or "").strip()
        if not call_sid:
            logger.warning("Orchestrator: Webhook without CallSid")
            return VoiceReply(self.twiml.technical_difficulty(), "invalid")

        try:
            if event.is_terminal:
                return await self._handle_terminal(call_sid, event)

            speech = event.speech_result
            if not speech:
                return await self._handle_connect(call_sid, event)

            if not speech.strip():
                logger.info(f"Orchestrator: Call {call_sid} blank utterance")
                return VoiceReply(self.twiml.didnt_catch(), "blank")

            return await self._handle_utterance(call_sid, event.from_number, speech.strip())

        except Exception as e:
            logger.exception(f"Orchestrator: Call {call_sid} unhandled error: {e}")
            return VoiceReply(self.twiml.fatal_error(), "fatal")

    # ---- lifecycle ----------------------------------------------

    async def _handle_terminal(self, call_sid: str, event: WebhookEvent) -> VoiceReply:
        call_status = event.call_status
        try:
            call = await self.store.complete_call(call_sid, self.callers.caller_key(event.from_number, call_sid))
        except StorageError as e:
            logger.error(f"Orchestrator: Call {call_sid} storage failure at terminal: {e}")
            return VoiceReply(self.twiml.empty(), "terminal")

        if call is None:
            logger.info(f"Orchestrator: Call {call_sid} terminal '{call_status}' already applied")
        else:
            logger.info(
                f"Orchestrator: Call {call_sid} ended ({call_status})"
                f"{f', released specialist {call.assigned_specialist_id}' if call.assigned_specialist_id else ''}"
            )
        return VoiceReply(self.twiml.empty(), "terminal")

    async def _handle_connect(self, call_sid: str, event: WebhookEvent) -> VoiceReply:
        if (event.call_status or "").lower() == CONNECT_STATUS:
            try:
                session = await self._open_session(call_sid, event.from_number)
            except StorageError as e:
                logger.error(f"Orchestrator: Call {call_sid} storage failure at connect: {e}")
                return VoiceReply(self.twiml.technical_difficulty(), "connect")
            if session.created:
                logger.info(f"Orchestrator: Call {call_sid} connected")
        return VoiceReply(self.twiml.greeting(), "greeting")

    async def _open_session(self, call_sid: str, from_number: Optional[str]) -> CallSession:
        return await self.store.ensure_call(call_sid, self.callers.caller_key(from_number, call_sid))

    # ---- turns --------------------------------------------------

    async def _handle_utterance(self, call_sid: str, from_number: Optional[str], utterance: str) -> VoiceReply:
        stage = "session"
        try:
            session = await self._open_session(call_sid, from_number)
            conversation_id = session.conversation.id

            stage = "message"
            stored = await self.store.append_message_once(conversation_id, MessageRole.USER, utterance)
            if not stored:
                logger.info(f"Orchestrator: Call {call_sid} duplicate utterance not re-stored")

            if self.callers.is_dictation_caller(session.caller):
                stage = "dictation"
                reply = await self._dictation_turn(session, utterance, replay=not stored)
                if reply is not None:
                    return reply

            stage = "engine"
            result = await self.engine.respond(call_sid, conversation_id, utterance)

            if result.needs_escalation:
                stage = "escalation"
                return await self._escalate(session, result.reason)

            return VoiceReply(self.twiml.speak_and_listen(result.text), "reply")

        except StorageError as e:
            logger.error(f"Orchestrator: Call {call_sid} storage failure at {stage}: {e}")
            return VoiceReply(self.twiml.technical_difficulty(), stage)

    async def _dictation_turn(self, session: CallSession, utterance: str, replay: bool = False) -> Optional[VoiceReply]:
        """
        Commit dictated records; None when nothing was accepted

        A replayed utterance was already committed by an earlier delivery,
        so it is confirmed again without saving or storing anything.
        """
        call_sid = session.call.call_sid
        result = await self.pipeline.run(utterance, call_sid)
        if result.is_empty:
            logger.info(f"Orchestrator: Call {call_sid} dictation found no entries, continuing conversation")
            return None

        if replay:
            outcome = self.records.replay(result, call_sid)
            return VoiceReply(self.twiml.dictation_confirmation(outcome.spoken), "dictation")

        outcome = await self.records.commit(session.caller.id, result, call_sid)
        await self.store.append_message(session.conversation.id, MessageRole.ASSISTANT, outcome.confirmation)
        return VoiceReply(self.twiml.dictation_confirmation(outcome.spoken), "dictation")

    async def _escalate(self, session: CallSession, reason: Optional[EscalationReason]) -> VoiceReply:
        call_sid = session.call.call_sid
        summary = await self.summarize(session.conversation.id)
        notes = f"Reason: {reason.value if reason else 'unknown'}\nSummary: {summary}"

        assignment = await self.directory.assign_to_call(call_sid, notes)
        logger.info(f"Orchestrator: Call {call_sid} escalation outcome {assignment.outcome.value}")

        if assignment.should_bridge:
            return VoiceReply(self.twiml.transfer(assignment.specialist.phone_number), "transfer")
        return VoiceReply(self.twiml.no_specialist(), "no_specialist")

    async def summarize(self, conversation_id: str) -> str:
        messages = await self.store.list_messages(conversation_id)
        if not messages:
            return "No conversation history available."
        text = "\n".join(f"{m.role.value}: {m.content}" for m in messages)
        return (
            f"Conversation summary: {len(messages)} messages exchanged. "
            f"Key topics: {text[:SUMMARY_SOURCE_CHARS]}..."
        )


def build_orchestrator(
    store: CallStore,
    settings: Optional[Settings] = None,
    llm: Optional[LLMServiceBase] = None,
    extraction_llm: Optional[LLMServiceBase] = None
) -> CallOrchestrator:
    """
    Wire an orchestrator from settings

    Args:
        store: Call store (postgres or in-memory)
        settings: Defaults to the global settings
        llm: Conversational LLM override
        extraction_llm: Extraction LLM override
    """
    settings = settings or get_settings()
    config = settings.model_dump()

    engine = ResponseEngine(
        llm=llm or create_openai_llm(config),
        store=store,
        timeout_seconds=settings.llm_timeout_seconds,
        temperature=settings.openai_temperature,
        max_tokens=settings.openai_max_tokens,
    )
    pipeline = ExtractionPipeline([
        LLMExtractor(
            extraction_llm or create_extraction_llm(config),
            timeout_seconds=settings.extraction_timeout_seconds,
            max_tokens=settings.openai_extraction_max_tokens,
        ),
        HeuristicExtractor(),
    ])
    directory = SpecialistDirectory(
        store,
        roster_path=settings.specialist_roster_path,
        max_attempts=settings.specialist_assign_attempts,
    )
    return CallOrchestrator(store, engine, pipeline, directory, create_twiml_builder(config))


# Global orchestrator instance
_orchestrator: Optional[CallOrchestrator] = None


def set_orchestrator(orchestrator: Optional[CallOrchestrator]) -> None:
    global _orchestrator
    _orchestrator = orchestrator


def get_orchestrator() -> CallOrchestrator:
    """Get global orchestrator instance (set up by the app lifespan)"""
    if _orchestrator is None:
        raise RuntimeError("Orchestrator not initialized")
    return _orchestrator
