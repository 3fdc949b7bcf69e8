"""Scan summaries mailed to an institution's notification address."""

from __future__ import annotations

import logging
from smtplib import SMTPException
from typing import Optional

from django.conf import settings
from django.core.mail import EmailMessage

logger = logging.getLogger(__name__)


def _summary_lines(summary):
    if isinstance(summary, str):
        return [summary]
    lines = [
        f"Files found: {summary.files_found}",
        f"Files processed: {summary.files_processed}",
        f"Files skipped (already handled): {summary.files_skipped}",
        f"Records persisted: {summary.records_persisted}",
        f"Records exported: {summary.records_exported}",
    ]
    if summary.errors:
        lines.append("")
        lines.append(f"Errors ({len(summary.errors)}):")
        for error in summary.errors:
            target = error.get('file') or error.get('institution') or '-'
            lines.append(f"  - {target}: {error.get('error')}")
    return lines


class EmailNotifier:

    def __init__(self, from_email: Optional[str] = None, connection=None):
        self.from_email = from_email or settings.DEFAULT_FROM_EMAIL
        self.connection = connection

    def send(self, institution, summary) -> bool:
        """Mail a scan summary (or a plain message). False when there is no recipient or delivery failed."""
        recipient = (institution.notification_email or "").strip()
        if not recipient:
            return False

        subject = f"[card-ledger] Scan summary for {institution.code}"
        body = "\n".join([f"Institution: {institution.name} ({institution.code})", ""] + _summary_lines(summary))
        message = EmailMessage(
            subject=subject,
            body=body,
            from_email=self.from_email,
            to=[recipient],
            connection=self.connection,
        )
        try:
            message.send()
        except (SMTPException, OSError) as exc:
            logger.warning("Could not mail scan summary to %s: %s", recipient, exc)
            return False
        return True
