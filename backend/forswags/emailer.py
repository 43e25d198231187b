# forswags/emailer.py
from __future__ import annotations

import logging
import smtplib
import socket
from email.message import EmailMessage

from forswags.config import env_bool, env_int, env_str

logger = logging.getLogger(__name__)


def send_email_if_configured(to_email: str, subject: str, body: str) -> bool:
    """
    Sends email only if SMTP is configured.
    NEVER raises. Returns True if attempted+sent, False if skipped/failed.
    """
    if not env_bool("EMAIL_ENABLED", False):
        logger.info("Email disabled; skipped %r to %s", subject, to_email)
        return False

    host = env_str("SMTP_HOST", "")
    port = env_int("SMTP_PORT", 587)
    username = env_str("SMTP_USERNAME", "")
    password = env_str("SMTP_PASSWORD", "")
    from_name = env_str("SMTP_FROM_NAME", "ForSWAGs")
    from_email = env_str("SMTP_FROM_EMAIL", username)

    # If not configured, skip quietly
    if not host or not username or not password or not from_email:
        logger.warning("Email skipped: missing SMTP_* env vars (host/username/password/from).")
        return False

    try:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{from_name} <{from_email}>"
        msg["To"] = to_email
        msg.set_content(body)

        with smtplib.SMTP(host, port, timeout=15) as server:
            server.ehlo()
            server.starttls()
            server.login(username, password)
            server.send_message(msg)

        logger.info("Email sent to %s (%s)", to_email, subject)
        return True

    except socket.gaierror as e:
        logger.error("Email failed: DNS/host lookup failed for SMTP_HOST=%r: %s", host, e)
        return False
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Email failed to %s: %s", to_email, e)
        return False
