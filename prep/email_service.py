"""
Email Service

Sends friend invitations over SMTP.  Delivery problems are logged and
reported as False; they never fail the request that triggered them.
"""

import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from prep.config import settings
from prep.structured_logging import logger

_TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "templates")
_env = Environment(loader=FileSystemLoader(_TEMPLATE_DIR), autoescape=select_autoescape(["html"]))

DEFAULT_INVITE_MESSAGE = "Join me on Prep!"


def invite_link(invite_code: str) -> str:
    return f"{settings.app_url.rstrip('/')}/signup?ref={invite_code}"


def render_invite(from_name: str, message: Optional[str], link: str) -> tuple[str, str, str]:
    """(subject, plain-text body, html body)"""
    subject = f"{from_name} invited you to join Prep!"
    text = (
        f"Hey there!\n\n"
        f"{from_name} thinks you'd love Prep, a place to plan study time around "
        f"your chronotype.\n\n"
        + (f'"{message}"\n\n' if message else "")
        + f"Join here: {link}\n\n"
        f"---\nIf you don't want to receive invitations, you can safely ignore this email.\n"
    )
    html = _env.get_template("email/invite.html").render(from_name=from_name, message=message, link=link)
    return subject, text, html


def send_invite_email(to_email: str, from_name: str, message: Optional[str], invite_code: str) -> bool:
    """
    Send one invitation.

    Returns:
        bool: True if the email was handed to the SMTP server
    """
    if not settings.email_enabled:
        logger.warning("Email credentials not configured; invite not emailed", to_email=to_email)
        return False

    subject, text, html = render_invite(from_name, message, invite_link(invite_code))

    message_obj = MIMEMultipart("alternative")
    message_obj["From"]    = settings.sender_email
    message_obj["To"]      = to_email
    message_obj["Subject"] = subject
    message_obj.attach(MIMEText(text, "plain"))
    message_obj.attach(MIMEText(html, "html"))

    try:
        with smtplib.SMTP(settings.smtp_server, settings.smtp_port, timeout=settings.smtp_timeout) as server:
            server.starttls()
            server.login(settings.sender_email, settings.sender_password)
            server.send_message(message_obj)
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"SMTP error sending invite to {to_email}", exc_info=repr(e))
        return False

    logger.info(f"Invite email sent to {to_email}", to_email=to_email)
    return True
