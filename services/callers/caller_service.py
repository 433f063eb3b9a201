"""
=====================================================
Support Line - Caller Service
=====================================================
Caller identity keyed by phone number, with roles.
"""

from typing import Optional
from loguru import logger

from services.storage import Caller, CallerRole, CallStore


class CallerService:
    """
    Resolves callers by phone number.

    Features:
    - Upsert by phone (first contact creates the caller)
    - Private/withheld numbers get a per-call identity so they never
      share a role or history with other anonymous callers
    - Dictation callers and specialists registered by operators
    """

    ANONYMOUS_PREFIX = "anonymous:"

    def __init__(self, store: CallStore):
        self.store = store

    # ---- helpers ------------------------------------------------

    @staticmethod
    def is_private_number(phone_number: Optional[str]) -> bool:
        """Check if number is private/unknown"""
        private_indicators = ["private", "unknown", "anonymous", "restricted", ""]
        if not phone_number:
            return True
        return phone_number.lower().strip() in private_indicators

    def caller_key(self, phone_number: Optional[str], call_sid: str) -> str:
        """Phone number to key the caller on for this call"""
        if self.is_private_number(phone_number):
            return f"{self.ANONYMOUS_PREFIX}{call_sid}"
        return phone_number.strip()

    # ---- public API ---------------------------------------------

    async def register_caller(
        self,
        phone_number: str,
        role: CallerRole = CallerRole.END_USER,
        name: Optional[str] = None
    ) -> Caller:
        """
        Register a caller, or return the existing one for that phone.

        The role of an existing caller is left untouched.
        """
        caller = await self.store.upsert_caller(phone_number, role, name)
        if caller.role != role:
            logger.warning(
                f"Callers: {phone_number} already registered as {caller.role.value}, "
                f"not changing to {role.value}"
            )
        else:
            logger.info(f"Callers: Registered {role.value} {name or ''} ({phone_number})")
        return caller

    async def register_dictation_caller(self, phone_number: str, name: Optional[str] = None) -> Caller:
        """Register a caller whose speech is treated as record dictation"""
        return await self.register_caller(phone_number, CallerRole.DICTATION_CALLER, name)

    @staticmethod
    def is_dictation_caller(caller: Optional[Caller]) -> bool:
        return caller is not None and caller.role == CallerRole.DICTATION_CALLER
