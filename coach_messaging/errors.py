"""Error taxonomy of the messaging core.

Routers translate these into HTTP status codes; the conversation session
absorbs ``TransientServiceError`` into its degraded mode.
"""


class MessagingError(Exception):
    """Base class for messaging errors."""


class ValidationError(MessagingError):
    """Input rejected; retrying with the same input fails again."""


class UploadError(MessagingError):
    """Attachment transfer failed; the owning send is aborted."""


class NotFoundError(MessagingError):
    """Conversation or participant does not exist."""


class TransientServiceError(MessagingError):
    """Backing service (database, broker, storage) is unreachable."""


class DuplicateDeliveryError(MessagingError):
    """A realtime event for an already known message id.

    Not a failure: subscribers drop the duplicate and carry on.
    """

    def __init__(self, message_id: object):
        super().__init__(f"Message {message_id} already delivered")
        self.message_id = message_id
