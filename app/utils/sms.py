import asyncio

import telnyx

from config import settings
from app.utils.logging import get_logger

logger = get_logger(__name__)

FROM_NUM = settings.TELNYX_FROM_NUMBER
TELNYX_API_KEY = settings.TELNYX_API_KEY
if TELNYX_API_KEY:
    telnyx.api_key = TELNYX_API_KEY


def send_sms(to: str, body: str) -> bool:
    """Send one SMS; ``True`` once Telnyx has accepted it."""
    if not TELNYX_API_KEY or not FROM_NUM:
        logger.warning("sms_dev_mode", to=to, body=body)
        return True
    try:
        msg = telnyx.Message.create(from_=FROM_NUM, to=to, text=body)
    except Exception as exc:  # noqa: BLE001
        logger.warning("sms_send_failed", to=to, error=str(exc))
        return False
    logger.info("sms_sent", to=to, message_id=getattr(msg, "id", None))
    return True


class SmsChannel:
    """Notification channel for phone contacts."""

    kind = "phone"

    async def send(self, address: str, message: str) -> bool:
        # the Telnyx client is blocking
        return await asyncio.to_thread(send_sms, address, message)
