"""Webhook security for Support Line"""

from .middleware import (
    TwilioSignatureValidator,
    validate_twilio_signature,
)

__all__ = [
    "TwilioSignatureValidator",
    "validate_twilio_signature",
]
