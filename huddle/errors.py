"""Error taxonomy for the chat session core.

Everything the core raises derives from ``HuddleError`` so session operations
can catch a single type at their boundary and turn it into a notice.
"""

from __future__ import annotations


class HuddleError(Exception):
    """Base class for all chat core failures."""


class ValidationError(HuddleError):
    """The draft or action is invalid. Surfaced to the user, never retried."""


class AttachmentUploadError(HuddleError):
    """File storage rejected the attachment. No message was created."""


class PersistenceError(HuddleError):
    """The authoritative store rejected an insert/update/delete."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FeedDisconnect(HuddleError):
    """The change feed dropped. Handled by a full resync, not surfaced as fatal."""


class GifSearchError(HuddleError):
    """GIF provider lookup failed or is not configured."""
