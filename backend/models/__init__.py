"""SQLAlchemy models, re-exported."""

from models.user import User, UserSession  # noqa: F401
from models.conversation import Conversation, Message  # noqa: F401
