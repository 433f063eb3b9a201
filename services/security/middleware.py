"""
=====================================================
Support Line - Webhook Signature Validation
=====================================================
Twilio signs every webhook with X-Twilio-Signature; when validation is
enabled, unsigned or mis-signed deliveries are rejected with 403.
"""

from typing import Dict, Optional

from fastapi import HTTPException, Request, status
from loguru import logger
from twilio.request_validator import RequestValidator

from config.settings import get_settings


class TwilioSignatureValidator:
    """Checks a request against the account auth token"""

    def __init__(self, auth_token: str):
        self.validator = RequestValidator(auth_token)

    @staticmethod
    def signed_url(request: Request, public_domain: Optional[str] = None) -> str:
        """
        The URL Twilio signed

        Behind a proxy Twilio signs the public URL, not the internal one.
        """
        if public_domain:
            return f"https://{public_domain}{request.url.path}"
        proto = request.headers.get("X-Forwarded-Proto", request.url.scheme)
        host = request.headers.get("X-Forwarded-Host", request.headers.get("Host", ""))
        query = f"?{request.url.query}" if request.url.query else ""
        return f"{proto}://{host}{request.url.path}{query}"

    async def validate_request(self, request: Request, url: str) -> bool:
        signature = request.headers.get("X-Twilio-Signature", "")
        if not signature:
            logger.warning("Security: Missing X-Twilio-Signature header")
            return False

        params: Dict[str, str] = {}
        if request.method == "POST":
            form = await request.form()
            params = {key: str(value) for key, value in form.items()}

        is_valid = self.validator.validate(url, params, signature)
        if not is_valid:
            logger.warning(f"Security: Invalid Twilio signature for {url} (params: {sorted(params)})")
        return is_valid


async def validate_twilio_signature(request: Request) -> bool:
    """
    FastAPI dependency guarding the voice webhook

    Usage:
        @app.post("/api/twilio/webhook", dependencies=[Depends(validate_twilio_signature)])
    """
    settings = get_settings()
    if not settings.validate_twilio_signature:
        return True

    if not settings.twilio_auth_token:
        logger.error("Security: Signature validation enabled but TWILIO_AUTH_TOKEN is empty")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid Twilio signature")

    validator = TwilioSignatureValidator(settings.twilio_auth_token)
    url = validator.signed_url(request, settings.public_domain)

    if not await validator.validate_request(request, url):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid Twilio signature")
    return True
