"""
Email notification of backup results.

Sends the run's ResultLog as a single HTML email, if the relay is configured
and the log contains a message kind the operator opted into. Notification is
best-effort: a failed send is logged and never changes the run outcome.
"""

import socket
import ssl
import smtplib
import logging
from email.message import EmailMessage
from typing import Optional

from s3backup.config import BackupSettings
from .results import ResultLog, SUCCESS, ERROR


logger = logging.getLogger(__name__)

LINE_BREAK = '<br />'

# Port on which the relay expects TLS from the first byte
SMTPS_PORT = 465


class NotifyError(Exception):
    """Raised when a notification email cannot be sent."""
    pass


def render_body(log: ResultLog) -> str:
    """Render every message as '<timestamp> <KIND>: <text>', in log order."""
    return LINE_BREAK.join(message.render() for message in log)


def build_subject(hostname: Optional[str] = None) -> str:
    if hostname is None:
        try:
            hostname = socket.gethostname()
        except OSError:
            hostname = ''
    return f"[{hostname}]: Backup status"


def _ssl_context(verify: bool) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def send_email(settings: BackupSettings, subject: str, html_body: str):
    """
    Send an HTML email through the configured relay.

    Port 465 uses implicit TLS; other ports upgrade with STARTTLS when the
    relay offers it. Login happens only if a username is configured.

    Raises:
        NotifyError: If the email cannot be delivered to the relay
    """
    context = _ssl_context(settings.smtp_verify_tls)

    try:
        # Header values are checked on assignment
        message = EmailMessage()
        message['From'] = settings.smtp_from_email
        message['To'] = settings.notify_email
        message['Subject'] = subject
        message.set_content(html_body, subtype='html')

        if settings.smtp_port == SMTPS_PORT:
            server = smtplib.SMTP_SSL(settings.smtp_hostname, settings.smtp_port, context=context)
        else:
            server = smtplib.SMTP(settings.smtp_hostname, settings.smtp_port)

        with server:
            if settings.smtp_port != SMTPS_PORT:
                server.ehlo()
                if server.has_extn('starttls'):
                    server.starttls(context=context)
                    server.ehlo()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)

    except (smtplib.SMTPException, OSError, ValueError) as e:
        raise NotifyError(f"Failed to send notification via {settings.smtp_hostname}:{settings.smtp_port}: {e}")


class Notifier:
    """Decides whether a run deserves an email, and sends it."""

    def __init__(self, settings: BackupSettings):
        self.settings = settings

    @property
    def configured(self) -> bool:
        s = self.settings
        return bool(s.smtp_hostname and s.smtp_from_email and s.notify_email)

    def should_notify(self, log: ResultLog) -> bool:
        """True if the relay is configured and the log holds an opted-in kind."""
        if not self.configured or len(log) == 0:
            return False

        if self.settings.notify_success and log.has_kind(SUCCESS):
            return True
        if self.settings.notify_error and log.has_kind(ERROR):
            return True

        return False

    def maybe_send(self, log: ResultLog) -> bool:
        """
        Email the log if allowed and possible.

        Returns:
            True if the email was handed to the relay
        """
        if not self.should_notify(log):
            logger.debug("Notification skipped")
            return False

        try:
            send_email(self.settings, build_subject(), render_body(log))
        except NotifyError as e:
            logger.error(str(e))
            return False

        logger.info(f"Notification sent to {self.settings.notify_email}")
        return True
