"""
Email notification utilities for Directory Sync.

Failures of a sync run and, optionally, successful run summaries are mailed
to operators. Sending a notification never raises into the run.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)

PRODUCT_NAME = "Directory Group Sync"


def send_email(subject: str, body: str, config: Dict[str, Any]) -> bool:
    """
    Send email notification using SMTP.

    Args:
        subject: Email subject line
        body: Email body content
        config: Notification configuration dictionary

    Returns:
        True if email sent successfully, False otherwise
    """
    if not config.get('enable_email', False):
        logger.debug("Email notifications disabled")
        return False

    smtp_server = config.get('smtp_server')
    smtp_port = config.get('smtp_port', 587)
    smtp_username = config.get('smtp_username')
    smtp_password = config.get('smtp_password')
    smtp_tls = config.get('smtp_tls', True)

    email_from = config.get('email_from', smtp_username)
    email_to = config.get('email_to', [])

    if not smtp_server:
        logger.error("SMTP server not configured")
        return False

    if not email_to:
        logger.error("No email recipients configured")
        return False

    if isinstance(email_to, str):
        email_to = [email_to]

    logger.debug(f"Sending email to {len(email_to)} recipients via {smtp_server}:{smtp_port}")

    msg = MIMEMultipart()
    msg['From'] = email_from
    msg['To'] = ', '.join(email_to)
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    try:
        if smtp_port == 465:
            server = smtplib.SMTP_SSL(smtp_server, smtp_port, timeout=30)
        else:
            server = smtplib.SMTP(smtp_server, smtp_port, timeout=30)
            if smtp_tls:
                server.starttls()

        try:
            if smtp_username and smtp_password:
                server.login(smtp_username, smtp_password)
            server.sendmail(email_from, email_to, msg.as_string())
        finally:
            server.quit()

    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email notification: {e}")
        return False

    logger.info(f"Email notification sent successfully: {subject}")
    return True


def send_failure_notification(
    title: str,
    error_message: str,
    config: Dict[str, Any],
    additional_info: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Send notification for a failed sync run.

    Args:
        title: Failure title/type
        error_message: Error description
        config: Notification configuration
        additional_info: Optional additional context

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    body_lines = [
        f"{PRODUCT_NAME} Failure Report",
        f"Timestamp: {timestamp}",
        "",
        f"Failure Type: {title}",
        f"Error Message: {error_message}",
        ""
    ]

    if additional_info:
        body_lines.append("Additional Information:")
        for key, value in additional_info.items():
            body_lines.append(f"  {key}: {value}")
        body_lines.append("")

    body_lines.extend([
        "No further registry changes were made after the failure.",
        "Please check the application logs for more detailed information.",
        "",
        f"This is an automated message from {PRODUCT_NAME}."
    ])

    return send_email(f"{PRODUCT_NAME} Alert: {title}", '\n'.join(body_lines), config)


def format_runtime(runtime_seconds: float) -> str:
    if runtime_seconds > 60:
        minutes = int(runtime_seconds // 60)
        seconds = runtime_seconds % 60
        return f"{minutes}m {seconds:.1f}s"
    return f"{runtime_seconds:.2f} seconds"


def send_success_summary(sync_stats: Dict[str, Any], config: Dict[str, Any]) -> bool:
    """
    Send summary notification for a successful sync run.

    Args:
        sync_stats: Dictionary containing run statistics
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_success', False):
        logger.debug("Success email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    mode = "dry run" if sync_stats.get('dry_run') else "applied"

    body_lines = [
        f"{PRODUCT_NAME} Summary Report",
        f"Timestamp: {timestamp}",
        "",
        f"Sync completed successfully ({mode}).",
        "",
        "Statistics:",
        f"  Total runtime: {format_runtime(sync_stats.get('runtime_seconds', 0))}",
        f"  Registry organizations: {sync_stats.get('organizations', 0)}",
        f"  Registry users: {sync_stats.get('users', 0)}",
        f"  Registry groups: {sync_stats.get('registry_groups', 0)}",
        f"  Directory groups: {sync_stats.get('directory_groups', 0)}",
        f"  Directory members: {sync_stats.get('directory_members', 0)}",
        f"  Groups updated: {sync_stats.get('groups_updated', 0)}",
        f"  Groups created: {sync_stats.get('groups_created', 0)}",
        f"  Empty directory groups skipped: {sync_stats.get('skipped_empty_groups', 0)}",
        f"  Registry groups without directory counterpart: {sync_stats.get('unmatched_registry_groups', 0)}",
        "",
        f"This is an automated message from {PRODUCT_NAME}."
    ]

    return send_email(f"{PRODUCT_NAME}: Successful Completion", '\n'.join(body_lines), config)


def send_test_notification(config: Dict[str, Any]) -> bool:
    """
    Check the email notification configuration by sending a test email.

    Args:
        config: Notification configuration to test

    Returns:
        True if test email sent successfully
    """
    recipients = config.get('email_to', [])
    if isinstance(recipients, str):
        recipients = [recipients]

    test_body = f"""This is a test email from {PRODUCT_NAME}.

If you receive this message, your email notification configuration is working correctly.

Test details:
- SMTP Server: {config.get('smtp_server', 'not configured')}
- SMTP Port: {config.get('smtp_port', 'not configured')}
- From Address: {config.get('email_from', 'not configured')}
- Recipients: {', '.join(recipients)}

This is an automated test message."""

    result = send_email(f"{PRODUCT_NAME}: Configuration Test", test_body, config)
    if result:
        logger.info("Test notification sent successfully")
    else:
        logger.error("Test notification failed")
    return result
