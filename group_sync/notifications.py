"""
Email notification utilities for AD Cloud Group Sync.

This module sends run reports by email: a failure report when mappings were
aborted or membership changes failed, and an optional summary otherwise.
Notification problems are logged and never interrupt a sync run.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, List, Any, Mapping, Optional
from datetime import datetime

logger = logging.getLogger(__name__)

# Keep reports readable for large failure lists
MAX_LISTED_FAILURES = 20


def send_email(subject: str, body: str, config: Mapping[str, Any]) -> bool:
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
    email_to = list(email_to)

    msg = MIMEMultipart()
    msg['From'] = email_from
    msg['To'] = ', '.join(email_to)
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    try:
        logger.debug(f"Sending email to {len(email_to)} recipients via {smtp_server}:{smtp_port}")
        if smtp_port == 465:
            server = smtplib.SMTP_SSL(smtp_server, smtp_port)
        else:
            server = smtplib.SMTP(smtp_server, smtp_port)

        try:
            if smtp_tls and smtp_port != 465:
                server.starttls()

            if smtp_username and smtp_password:
                server.login(smtp_username, smtp_password)

            server.sendmail(email_from, email_to, msg.as_string())
            server.quit()
        finally:
            server.close()

        logger.info(f"Email notification sent successfully: {subject}")
        return True

    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email notification: {e}")
        return False


def _format_runtime(runtime_seconds: float) -> str:
    if runtime_seconds > 60:
        minutes = int(runtime_seconds // 60)
        seconds = runtime_seconds % 60
        return f"{minutes}m {seconds:.1f}s"
    return f"{runtime_seconds:.2f} seconds"


def _mapping_lines(results: List[Dict[str, Any]]) -> List[str]:
    lines = []
    for result in results:
        lines.append(f"  {result['source_group']} -> {result['cloud_group']}: {result['status']}")
        if result.get('error'):
            lines.append(f"    Error: {result['error']}")
        else:
            lines.append(f"    Source enabled/disabled/skipped: {result['source_enabled']}/"
                         f"{result['source_disabled']}/{result['source_skipped']}")
            lines.append(f"    Cloud members: {result['cloud_members']}")
            lines.append(f"    Added: {result['added']}, Removed: {result['removed']}, "
                         f"Failed: {len(result['failures'])}")
    return lines


def send_failure_report(
    results: List[Dict[str, Any]],
    run_stats: Dict[str, Any],
    config: Mapping[str, Any]
) -> bool:
    """
    Send a report listing aborted mappings and failed membership changes.

    Args:
        results: Flattened SyncResult dictionaries
        run_stats: Run-level statistics
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    subject = (f"Group Sync Alert: {run_stats.get('mappings_aborted', 0)} mappings aborted, "
               f"{run_stats.get('total_failures', 0)} membership changes failed")

    body_lines = [
        "AD Cloud Group Sync Failure Report",
        f"Timestamp: {timestamp}",
        f"Runtime: {_format_runtime(run_stats.get('runtime_seconds', 0))}",
        "",
        "Mappings:"
    ]
    body_lines.extend(_mapping_lines(results))

    failures = [
        (result['cloud_group'], failure)
        for result in results
        for failure in result['failures']
    ]
    if failures:
        body_lines.extend(["", "Failed membership changes:"])
        for cloud_group, failure in failures[:MAX_LISTED_FAILURES]:
            body_lines.append(f"  {failure['operation']} {failure['identity']} ({cloud_group}): {failure['error']}")
        if len(failures) > MAX_LISTED_FAILURES:
            body_lines.append(f"  ... and {len(failures) - MAX_LISTED_FAILURES} more")

    body_lines.extend([
        "",
        "Please check the application logs for more detailed information.",
        "",
        "This is an automated message from AD Cloud Group Sync."
    ])

    return send_email(subject, '\n'.join(body_lines), config)


def send_success_summary(
    results: List[Dict[str, Any]],
    run_stats: Dict[str, Any],
    config: Mapping[str, Any]
) -> bool:
    """
    Send summary notification for a clean sync run.

    Args:
        results: Flattened SyncResult dictionaries
        run_stats: Run-level statistics
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_success', False):
        logger.debug("Success email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    subject = "Group Sync: Successful Completion"

    body_lines = [
        "AD Cloud Group Sync Summary Report",
        f"Timestamp: {timestamp}",
        "",
        "Overall Statistics:",
        f"  Total runtime: {_format_runtime(run_stats.get('runtime_seconds', 0))}",
        f"  Mappings processed: {run_stats.get('mappings_processed', 0)}",
        f"  Users added: {run_stats.get('total_added', 0)}",
        f"  Users removed: {run_stats.get('total_removed', 0)}",
        "",
        "Mappings:"
    ]
    body_lines.extend(_mapping_lines(results))
    body_lines.extend(["", "This is an automated message from AD Cloud Group Sync."])

    return send_email(subject, '\n'.join(body_lines), config)


def send_run_report(
    results: List[Dict[str, Any]],
    run_stats: Dict[str, Any],
    config: Optional[Mapping[str, Any]]
) -> bool:
    """Send the failure report or the success summary, whichever applies to the run."""
    config = config or {}
    if run_stats.get('mappings_aborted', 0) or run_stats.get('total_failures', 0):
        return send_failure_report(results, run_stats, config)
    return send_success_summary(results, run_stats, config)
