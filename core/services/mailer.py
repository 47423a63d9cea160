"""Outgoing mail: QR code delivery to registered participants.

SMTP calls block, so they run in a worker thread. Delivery failures are logged
and reported back as ``False``; they never undo a registration.
"""
from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

import config
from core.services.qr import data_url_to_png

logger = logging.getLogger("checkpoint.mail")

SUBJECT = "Cricket Event - Your QR Code"


def email_enabled() -> bool:
    return bool(config.EMAIL_HOST and config.EMAIL_USER)


def _smtp() -> smtplib.SMTP:
    smtp = smtplib.SMTP(config.EMAIL_HOST, config.EMAIL_PORT, timeout=30)
    smtp.starttls()
    if config.EMAIL_PASS:
        smtp.login(config.EMAIL_USER, config.EMAIL_PASS)
    return smtp


def build_qr_message(participant_id: str, name: str, email: str, is_player: bool, qr_data_url: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = SUBJECT
    msg["From"] = formataddr((config.APP_NAME, config.EMAIL_USER))
    msg["To"] = email
    kind = "Player" if is_player else "Participant"
    msg.set_content(
        f"Dear {name},\n\nThank you for registering. Your QR code is attached.\n"
        "Show it at the entrance for attendance and at the counters for meals.\n\n"
        f"Participant ID: {participant_id}\nName: {name}\nType: {kind}\n"
    )
    msg.add_alternative(f"""\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Welcome to {config.APP_NAME}!</h2>
  <p>Dear {name},</p>
  <p>Thank you for registering. Your QR code is attached.</p>
  <ul>
    <li>Save this QR code on your phone</li>
    <li>Show at entrance for attendance</li>
    <li>Use for meal distribution</li>
    <li>Do not share with others</li>
  </ul>
  <p><strong>Participant ID:</strong> {participant_id}<br>
     <strong>Name:</strong> {name}<br>
     <strong>Type:</strong> {kind}</p>
  <p>See you at the event!</p>
</div>
""", subtype="html")
    msg.add_attachment(
        data_url_to_png(qr_data_url),
        maintype="image",
        subtype="png",
        filename=f"qr-code-{participant_id}.png",
    )
    return msg


def _send(msg: EmailMessage) -> None:
    with _smtp() as smtp:
        smtp.send_message(msg)


async def send_qr_email(participant_id: str, name: str, email: str, is_player: bool, qr_data_url: str) -> bool:
    """Send the participant's QR code. Returns True if the message was handed to the server."""
    if not email_enabled():
        logger.info("Email disabled, not sending QR code to %s", participant_id)
        return False
    try:
        msg = build_qr_message(participant_id, name, email, is_player, qr_data_url)
        await asyncio.to_thread(_send, msg)
    except (smtplib.SMTPException, OSError, ValueError) as e:
        logger.warning("QR email to %s failed: %s", email, e)
        return False
    logger.info("QR email sent to %s (%s)", email, participant_id)
    return True


def _verify() -> None:
    with _smtp() as smtp:
        smtp.noop()


async def verify_config() -> dict:
    """Connect and authenticate against the configured server without sending anything."""
    if not email_enabled():
        return {"success": False, "error": "EMAIL_HOST and EMAIL_USER are not configured"}
    try:
        await asyncio.to_thread(_verify)
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("Email configuration check failed: %s", e)
        return {"success": False, "error": str(e)}
    return {"success": True}
