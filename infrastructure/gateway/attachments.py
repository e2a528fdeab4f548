from __future__ import annotations

from typing import Protocol

from infrastructure.gateway.gateway import Attachment, OutgoingFile


class AttachmentStore(Protocol):
    """Persists attachment blobs and hands back stable URLs."""

    async def save(self, attachment: Attachment) -> str:
        """Store the attachment (idempotent) and return its permanent URL."""

    async def to_file(self, attachment: Attachment) -> OutgoingFile:
        """Load the attachment as a file that can be re-uploaded."""
