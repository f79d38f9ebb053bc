"""Export service for chat sessions.

Renders a session as plain text. The output depends only on the session's
content and timestamps, so repeated exports of an unchanged session match.
"""

import logging
from datetime import datetime

from persistence.models import ChatSession, MessageRole

logger = logging.getLogger(__name__)

RULE = "=" * 50
FOOTER = "Exported from Offline AI Chat"

ROLE_LABELS = {
    MessageRole.USER: "You",
    MessageRole.ASSISTANT: "AI",
    MessageRole.SYSTEM: "System",
}


def format_date(value: datetime) -> str:
    """Format a timestamp as a medium date (e.g. Mar 05, 2025)."""
    return value.strftime("%b %d, %Y")


def format_time(value: datetime) -> str:
    """Format a timestamp as a short 24-hour time (HH:MM)."""
    return value.strftime("%H:%M")


class ExportService:
    """Service for exporting chat sessions."""

    def export_txt(self, session: ChatSession) -> str:
        """Export a session to plain text.

        Args:
            session: Session to render

        Returns:
            Plain text content
        """
        lines = [f"Chat Export - {format_date(session.created_at)}", RULE, ""]

        for message in session.messages:
            lines.append(f"[{format_time(message.created_at)}] {ROLE_LABELS[message.role]}:")
            lines.append(message.content)
            lines.append("")

        lines.append(RULE)
        lines.append(FOOTER)
        return "\n".join(lines) + "\n"
