"""
Email notifications for LDAP Provision.

A failed synchronization run is reported by email, naming the stage that
failed. A summary of successful runs can be enabled as well.
"""

import smtplib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

FOOTER = "This is an automated message from LDAP Provision."

STAGE_DESCRIPTIONS = {
    'bind': 'Directory connection or bind failed - check endpoint reachability and service credentials',
    'search': 'Directory search failed - check base DN, object filter and server health',
}


@dataclass(frozen=True)
class EmailSettings:
    """The ``notifications`` section of the configuration."""

    enabled: bool = False
    smtp_server: Optional[str] = None
    smtp_port: int = 587
    smtp_tls: bool = True
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    sender: Optional[str] = None
    recipients: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'EmailSettings':
        recipients = config.get('email_to') or []
        if isinstance(recipients, str):
            recipients = [recipients]
        return cls(
            enabled=bool(config.get('enable_email', False)),
            smtp_server=config.get('smtp_server'),
            smtp_port=config.get('smtp_port', 587),
            smtp_tls=config.get('smtp_tls', True),
            smtp_username=config.get('smtp_username'),
            smtp_password=config.get('smtp_password'),
            sender=config.get('email_from', config.get('smtp_username')),
            recipients=list(recipients),
        )


def format_runtime(runtime_seconds: float) -> str:
    if runtime_seconds > 60:
        return f"{int(runtime_seconds // 60)}m {runtime_seconds % 60:.1f}s"
    return f"{runtime_seconds:.2f} seconds"


def send_email(subject: str, body: str, config: Dict[str, Any]) -> bool:
    """
    Send one plain-text email through the configured SMTP relay.

    Delivery problems are logged and reported through the return value; they
    never raise, so a failed notification cannot change a run's outcome.

    Returns:
        True if the relay accepted the message
    """
    settings = EmailSettings.from_config(config)
    if not settings.enabled:
        logger.debug("Email notifications disabled")
        return False
    if not settings.smtp_server:
        logger.error("Cannot send notification: smtp_server not configured")
        return False
    if not settings.recipients:
        logger.error("Cannot send notification: email_to is empty")
        return False

    message = EmailMessage()
    message['From'] = settings.sender
    message['To'] = ', '.join(settings.recipients)
    message['Subject'] = subject
    message.set_content(body)

    try:
        if settings.smtp_port == 465:
            server = smtplib.SMTP_SSL(settings.smtp_server, settings.smtp_port)
        else:
            server = smtplib.SMTP(settings.smtp_server, settings.smtp_port)
            if settings.smtp_tls:
                server.starttls()
        if settings.smtp_username and settings.smtp_password:
            server.login(settings.smtp_username, settings.smtp_password)
        server.sendmail(settings.sender, settings.recipients, message.as_string())
        server.quit()
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email notification '{subject}': {e}")
        return False

    logger.info(f"Email notification sent: {subject}")
    return True


def send_sync_failure(stage: str, error_message: str, config: Dict[str, Any],
                      trigger: Optional[str] = None) -> bool:
    """
    Report a synchronization run that aborted.

    Args:
        stage: Stage that failed ('bind', 'search', or another label)
        error_message: Error description
        config: Notification configuration
        trigger: Which entry point started the run
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure notifications disabled")
        return False

    lines = [
        "LDAP Provision Failure Report",
        f"Timestamp: {datetime.now():%Y-%m-%d %H:%M:%S}",
        "",
        f"Failed stage: {stage}",
        f"Error Message: {error_message}",
    ]
    if trigger:
        lines.append(f"Trigger: {trigger}")
    if stage in STAGE_DESCRIPTIONS:
        lines += ["", STAGE_DESCRIPTIONS[stage]]
    lines += [
        "",
        "Accounts created before the failure remain in place; no counts were reported.",
        "See the application log for details.",
        "",
        FOOTER,
    ]

    return send_email(f"LDAP Provision Alert: Sync failed during {stage}", '\n'.join(lines), config)


def send_sync_summary(result: Dict[str, int], runtime_seconds: float, config: Dict[str, Any],
                      invalid_entries: int = 0) -> bool:
    """Report a completed run's counts when ``email_on_success`` is set."""
    if not config.get('email_on_success', False):
        logger.debug("Success notifications disabled")
        return False

    lines = [
        "LDAP Provision Summary Report",
        f"Timestamp: {datetime.now():%Y-%m-%d %H:%M:%S}",
        "",
        "Directory synchronization completed.",
        "",
        f"  Total runtime: {format_runtime(runtime_seconds)}",
        f"  Accounts created: {result.get('created', 0)}",
        f"  Accounts skipped: {result.get('skipped', 0)}",
        f"  Invalid directory entries: {invalid_entries}",
        "",
        FOOTER,
    ]

    return send_email("LDAP Provision: Sync completed", '\n'.join(lines), config)


def send_test_notification(config: Dict[str, Any]) -> bool:
    """Send a test message that echoes the SMTP settings in use."""
    settings = EmailSettings.from_config(config)
    lines = [
        "This is a test email from LDAP Provision.",
        "",
        "If you receive this message, notification delivery is working.",
        "",
        f"- SMTP Server: {settings.smtp_server or 'not configured'}",
        f"- SMTP Port: {settings.smtp_port}",
        f"- From Address: {settings.sender or 'not configured'}",
        f"- Recipients: {', '.join(settings.recipients)}",
        "",
        FOOTER,
    ]

    sent = send_email("LDAP Provision: Configuration Test", '\n'.join(lines), config)
    if sent:
        logger.info("Test notification sent")
    else:
        logger.error("Test notification failed")
    return sent
