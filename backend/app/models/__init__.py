from backend.app.models.message import Message
from backend.app.models.profile import Profile
from backend.app.models.typing_status import TypingStatus
from backend.app.models.user_status import UserStatus

__all__ = ["Message", "Profile", "TypingStatus", "UserStatus"]
