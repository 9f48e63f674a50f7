"""Notification emails for vote records."""

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from voters.shared import VoteRecord
from .config import Config

logger = logging.getLogger(__name__)

DONE_SUBJECT = "Your vote was registered successfully"
CONFIRM_SUBJECT = "Please confirm your vote"


def done_email_text(record: VoteRecord, app_url: str) -> str:
    """Body of the email sent once a vote is finalized."""
    return (
        "Hello,\n\n"
        "Your vote was registered successfully.\n\n"
        f"Country: {record.nationality}\n"
        f"You are voter number {record.index} for this country.\n"
        f"Registered at: {record.created}\n\n"
        f"See how your country ranks: {app_url}/voters/{record.nationality}\n\n"
        "Thank you for taking part.\n"
    )


def confirm_email_text(record: VoteRecord, app_url: str) -> str:
    """Body of the email asking the voter to complete their vote."""
    return (
        "Hello,\n\n"
        "We received your registration but your vote is not complete yet.\n\n"
        f"Please finish it here: {app_url}/voters\n\n"
        "If you did not request this, you can ignore this message.\n"
    )


def generate_mail(record: VoteRecord, sender: str, sender_name: str, app_url: str) -> EmailMessage:
    """
    Build the notification email for a vote record.

    Finalized records get the completion email, others the confirmation
    request. The choice depends only on the record.

    Args:
        record: Vote record the email is about
        sender: Sender address
        sender_name: Display name of the sender
        app_url: Public URL of the voters app

    Returns:
        EmailMessage: Ready to send
    """
    message = EmailMessage()
    message["From"] = formataddr((sender_name, sender))
    message["To"] = record.identity

    if record.is_finalized:
        message["Subject"] = DONE_SUBJECT
        message.set_content(done_email_text(record, app_url))
    else:
        message["Subject"] = CONFIRM_SUBJECT
        message.set_content(confirm_email_text(record, app_url))

    return message


class Mailer:
    """SMTP delivery of vote notification emails."""

    def __init__(
        self,
        host: str = Config.SMTP_HOST,
        port: int = Config.SMTP_PORT,
        username: str = Config.SMTP_USER,
        password: str = Config.SMTP_PASSWORD,
        starttls: bool = Config.SMTP_STARTTLS,
        timeout: float = Config.SMTP_TIMEOUT
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def send_vote_mail(self, record: VoteRecord) -> None:
        """
        Send the notification email for a vote record.

        Raises:
            RuntimeError: If no SMTP host is configured
            smtplib.SMTPException, OSError: On delivery failure
        """
        if not self.host:
            raise RuntimeError("SMTP_HOST is not configured")

        message = generate_mail(
            record,
            sender=Config.MAIL_SENDER or self.username,
            sender_name=Config.MAIL_SENDER_NAME,
            app_url=Config.APP_URL
        )

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

        logger.info(f"Vote email sent: id={record.id}, subject={message['Subject']!r}")
