# SQLAlchemy database models
from .conversation_model import ConversationModel
from .message_model import MessageModel

__all__ = ["ConversationModel", "MessageModel"]
