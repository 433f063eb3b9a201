"""
=====================================================
Support Line - Twilio Voice Response Documents
=====================================================
TwiML generation for every answer the webhook can give.

Every document that expects more speech ends in a <Gather> pointing back
at the webhook, followed by a closing <Say> that Twilio plays only when
the caller stays silent.
"""

import re
from typing import Optional

from loguru import logger
from twilio.twiml.voice_response import VoiceResponse


GREETING = "Hello! I'm your mental health support assistant. How are you feeling today?"
LISTEN_PROMPT = "Please speak after the beep, and I'll listen."
NEXT_TOPIC_PROMPT = "What would you like to talk about next?"
GOODBYE = "Thank you for calling. Take care of yourself."

DIDNT_CATCH = "I didn't catch that. Could you please repeat?"
SPEAK_CLEARLY_PROMPT = "Please speak clearly after the beep."

TECHNICAL_DIFFICULTY = "I'm sorry, I'm having trouble responding right now. Please try again."
FATAL_ERROR = "I'm sorry, I'm experiencing technical difficulties. Please try calling again later."

TRANSFER_ANNOUNCEMENT = (
    "I understand you need professional help. I'm connecting you with a licensed counselor. "
    "Please hold while I transfer your call."
)
TRANSFER_FALLBACK = (
    "The counselor is unavailable right now. Please call back later or contact emergency "
    "services if you're in immediate danger."
)
NO_SPECIALIST = (
    "I understand you need professional help. Our counselors are currently unavailable. "
    "Please contact the National Suicide Prevention Lifeline at {emergency_line}, "
    "or visit emergency room if you're in immediate danger."
)

DICTATION_PROMPT = "Please speak the next entries after the beep."
DICTATION_GOODBYE = "Thank you. Goodbye."

DEFAULT_REPLY = "I'm here to listen. How are you feeling?"

# Characters that never reach a <Say>
UNSAFE_SPEECH = re.compile(r"[<>&'\"]")


def sanitize_speech(text: Optional[str], default: str = DEFAULT_REPLY) -> str:
    """Strip markup-significant characters; fall back to default when nothing is left"""
    cleaned = UNSAFE_SPEECH.sub("", text or "").strip()
    return cleaned or default


class TwiMLBuilder:
    """
    Builds voice response documents

    Usage:
        builder = create_twiml_builder(settings.model_dump())
        xml = builder.greeting()
    """

    def __init__(
        self,
        action_url: str = "/api/twilio/webhook",
        voice: str = "alice",
        speech_timeout: str = "3",
        gather_timeout: int = 10,
        dial_timeout: int = 30,
        emergency_line: str = "988"
    ):
        """
        Initialize the builder

        Args:
            action_url: Where Twilio posts gathered speech
            voice: Twilio <Say> voice
            speech_timeout: Silence before speech input ends
            gather_timeout: Seconds to wait for speech to start
            dial_timeout: Seconds to ring the specialist
            emergency_line: Number read out when nobody is available
        """
        self.action_url = action_url
        self.voice = voice
        self.speech_timeout = speech_timeout
        self.gather_timeout = gather_timeout
        self.dial_timeout = dial_timeout
        self.emergency_line = emergency_line

    # ---- helpers ------------------------------------------------

    def _say(self, response: VoiceResponse, text: str) -> None:
        response.say(text, voice=self.voice)

    def _listen(self, response: VoiceResponse, prompt: str, closing: str) -> None:
        gather = response.gather(
            input="speech",
            action=self.action_url,
            method="POST",
            speech_timeout=self.speech_timeout,
            timeout=self.gather_timeout,
        )
        gather.say(prompt, voice=self.voice)
        self._say(response, closing)

    # ---- documents ----------------------------------------------

    def empty(self) -> str:
        """Acknowledgement for status callbacks"""
        return ""

    def greeting(self) -> str:
        response = VoiceResponse()
        self._say(response, GREETING)
        self._listen(response, LISTEN_PROMPT, GOODBYE)
        return str(response)

    def didnt_catch(self) -> str:
        response = VoiceResponse()
        self._say(response, DIDNT_CATCH)
        self._listen(response, SPEAK_CLEARLY_PROMPT, GOODBYE)
        return str(response)

    def speak_and_listen(self, reply: Optional[str]) -> str:
        """Speak an assistant reply and open the next turn"""
        response = VoiceResponse()
        self._say(response, sanitize_speech(reply))
        self._listen(response, NEXT_TOPIC_PROMPT, GOODBYE)
        return str(response)

    def dictation_confirmation(self, spoken: str) -> str:
        response = VoiceResponse()
        self._say(response, sanitize_speech(spoken, default=DICTATION_PROMPT))
        self._listen(response, DICTATION_PROMPT, DICTATION_GOODBYE)
        return str(response)

    def transfer(self, specialist_phone: str) -> str:
        """Announce the transfer and bridge to the specialist"""
        response = VoiceResponse()
        self._say(response, TRANSFER_ANNOUNCEMENT)
        response.dial(specialist_phone, timeout=self.dial_timeout)
        self._say(response, TRANSFER_FALLBACK)
        logger.debug(f"TwiML: Transfer document built for {specialist_phone}")
        return str(response)

    def no_specialist(self) -> str:
        response = VoiceResponse()
        self._say(response, NO_SPECIALIST.format(emergency_line=self.emergency_line))
        return str(response)

    def technical_difficulty(self) -> str:
        """Storage failure mid-turn: apologize and keep listening"""
        response = VoiceResponse()
        self._say(response, TECHNICAL_DIFFICULTY)
        self._listen(response, LISTEN_PROMPT, GOODBYE)
        return str(response)

    def fatal_error(self) -> str:
        response = VoiceResponse()
        self._say(response, FATAL_ERROR)
        return str(response)


# Factory function
def create_twiml_builder(config: dict) -> TwiMLBuilder:
    """
    Factory function to create the TwiML builder from config

    Args:
        config: Configuration dictionary (from Settings)

    Returns:
        Configured TwiMLBuilder instance
    """
    return TwiMLBuilder(
        action_url=config.get('webhook_path', '/api/twilio/webhook'),
        voice=config.get('tts_voice', 'alice'),
        speech_timeout=str(config.get('gather_speech_timeout', '3')),
        gather_timeout=int(config.get('gather_timeout', 10)),
        dial_timeout=int(config.get('dial_timeout', 30)),
        emergency_line=config.get('emergency_line', '988')
    )
