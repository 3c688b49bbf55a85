import logging
from functools import lru_cache
from html import escape

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType

from .config import settings

logger = logging.getLogger(__name__)


def build_connection_config() -> ConnectionConfig:
    return ConnectionConfig(
        MAIL_USERNAME=settings.MAIL_USERNAME,
        MAIL_PASSWORD=settings.MAIL_PASSWORD,
        MAIL_FROM=settings.MAIL_FROM,
        MAIL_FROM_NAME=settings.MAIL_FROM_NAME,
        MAIL_PORT=settings.MAIL_PORT,
        MAIL_SERVER=settings.MAIL_SERVER,
        MAIL_STARTTLS=settings.MAIL_STARTTLS,
        MAIL_SSL_TLS=settings.MAIL_SSL_TLS,
        USE_CREDENTIALS=bool(settings.MAIL_USERNAME),
        SUPPRESS_SEND=settings.SUPPRESS_SEND,
    )


class Mailer:
    """Best-effort HTML mail delivery. Failures are logged, never raised."""

    def __init__(self, config: ConnectionConfig):
        self.fm = FastMail(config)

    async def send(self, to: str, subject: str, html: str) -> bool:
        if not to:
            return False
        message = MessageSchema(
            subject=subject,
            recipients=[to],
            body=html,
            subtype=MessageType.html,
        )
        try:
            await self.fm.send_message(message)
        except Exception:
            logger.exception("Email to %s failed (%s)", to, subject)
            return False
        logger.info("Email sent to %s (%s)", to, subject)
        return True


@lru_cache
def get_mailer() -> Mailer:
    return Mailer(build_connection_config())


# ================== TEMPLATES ==================

def _layout(title: str, body: str) -> str:
    return f"""
    <html>
    <body style="font-family: Arial, sans-serif; color: #111827;">
        <h2>{title}</h2>
        {body}
        <hr>
        <p style="color: #9ca3af; font-size: 13px;">Booking Dashboard</p>
    </body>
    </html>
    """


def _when(booking) -> str:
    return f"{escape(booking.date)} at {escape(booking.time)}"


def _with(clinic_name: str) -> str:
    return f"with {escape(clinic_name)} " if clinic_name else ""


def render_invitation_email(invitation_code: str, clinic_name: str = "") -> str:
    invite_url = f"{settings.DOMAIN}/register?code={invitation_code}"
    business = f" for <b>{escape(clinic_name)}</b>" if clinic_name else ""
    return _layout(
        "You're Invited",
        f"""
        <p>You have been invited to create your Booking Dashboard account{business}.</p>
        <p>Set up your account to start managing appointments and keep your business organized.</p>
        <a href="{invite_url}" style="display:inline-block;padding:10px 15px;background-color:#10b981;color:white;text-decoration:none;border-radius:5px;">Create My Account</a>
        <p>Or copy this link: {invite_url}</p>
        <p>This invitation expires in 7 days.</p>
        """,
    )


def render_confirmation_email(booking, clinic_name: str = "") -> str:
    cancel_url = f"{settings.DOMAIN}/cancel/{booking.cancel_token}"
    return _layout(
        f"Hello {escape(booking.name)},",
        f"""
        <p>Your booking for <b>{escape(booking.service)}</b> on <b>{_when(booking)}</b>
        {_with(clinic_name)}is confirmed.</p>
        <p>If you need to cancel, please use the following link:</p>
        <a href="{cancel_url}" style="display:inline-block;padding:10px 15px;background-color:#ff4c4c;color:white;text-decoration:none;border-radius:5px;">Cancel booking</a>
        <p>Thank you for your booking!</p>
        """,
    )


def render_cancellation_email(booking, clinic_name: str = "") -> str:
    return _layout(
        f"Hello {escape(booking.name)},",
        f"""
        <p>Your booking for <b>{escape(booking.service)}</b> on <b>{_when(booking)}</b>
        {_with(clinic_name)}has been cancelled.</p>
        """,
    )


def render_reminder_email(booking, clinic_name: str = "") -> str:
    cancel_url = f"{settings.DOMAIN}/cancel/{booking.cancel_token}"
    return _layout(
        f"Hello {escape(booking.name)},",
        f"""
        <p>This is a reminder of your appointment {_with(clinic_name)}for <b>{escape(booking.service)}</b>
        tomorrow, <b>{_when(booking)}</b>.</p>
        <p>Can't make it? <a href="{cancel_url}">Cancel your booking</a>.</p>
        """,
    )


def render_new_booking_email(booking) -> str:
    return _layout(
        "New booking",
        f"""
        <p>Service: {escape(booking.service)}</p>
        <p>Name: {escape(booking.name)}</p>
        <p>Phone: {escape(booking.phone)}</p>
        <p>Email: {escape(booking.email)}</p>
        <p>Date &amp; time: {_when(booking)}</p>
        """,
    )


def render_client_cancelled_email(booking) -> str:
    return _layout(
        "Booking cancelled by client",
        f"""
        <p>{escape(booking.name)} cancelled their booking for <b>{escape(booking.service)}</b>
        on <b>{_when(booking)}</b>.</p>
        <p>Email: {escape(booking.email)}</p>
        <p>Phone: {escape(booking.phone)}</p>
        """,
    )
