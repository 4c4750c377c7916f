"""
Booking notifications: confirmation email over an HTTP mail API and the
driver-accepted SMS over Twilio's REST API.

Senders without credentials skip with a log line. Callers wrap sends in
`notify_safely` so a failed notification never touches booking state.
"""
import logging
from typing import Awaitable

import httpx

from app.config import Settings, get_settings
from app.models.booking import Booking
from app.models.driver import Driver

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self._client = httpx.AsyncClient(
            timeout=self.settings.notification_timeout_seconds, transport=transport
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def email_enabled(self) -> bool:
        return bool(self.settings.email_api_url and self.settings.email_api_key)

    @property
    def sms_enabled(self) -> bool:
        s = self.settings
        return bool(s.twilio_account_sid and s.twilio_auth_token and s.twilio_phone_number)

    async def send_booking_created(self, email: str, booking: Booking) -> bool:
        if not self.email_enabled:
            logger.warning("Email API not configured; skipping confirmation for booking=%s", booking.id)
            return False

        body = (
            f"Your booking #{booking.id} has been received.\n"
            f"Pickup: {booking.start_latitude}, {booking.start_longitude}\n"
            f"Dropoff: {booking.end_latitude}, {booking.end_longitude}\n"
            f"Pickup time: {booking.pickup_time.isoformat()}\n"
            f"Fare: {booking.fare:g}"
        )
        resp = await self._client.post(
            self.settings.email_api_url,
            headers={"Authorization": f"Bearer {self.settings.email_api_key}"},
            json={
                "from": self.settings.email_sender,
                "to": email,
                "subject": f"Booking #{booking.id} confirmed",
                "text": body,
            },
        )
        resp.raise_for_status()
        logger.info("Booking confirmation email sent for booking=%s", booking.id)
        return True

    async def send_booking_accepted(self, phone: str, booking: Booking, driver: Driver) -> bool:
        if not self.sms_enabled:
            logger.warning("Twilio not configured; skipping acceptance SMS for booking=%s", booking.id)
            return False

        s = self.settings
        resp = await self._client.post(
            f"{s.twilio_base_url}/Accounts/{s.twilio_account_sid}/Messages.json",
            auth=(s.twilio_account_sid, s.twilio_auth_token),
            data={
                "To": phone,
                "From": s.twilio_phone_number,
                "Body": (
                    f"Your booking #{booking.id} was accepted by driver #{driver.id} "
                    f"(license {driver.license_number})."
                ),
            },
        )
        resp.raise_for_status()
        logger.info("Acceptance SMS sent for booking=%s driver=%s", booking.id, driver.id)
        return True


async def notify_safely(send: Awaitable[bool]) -> bool:
    """Await a send; log and absorb any failure."""
    try:
        return await send
    except Exception as exc:
        logger.error("Notification failed: %s", exc, exc_info=True)
        return False
