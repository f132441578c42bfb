"""模型集合。"""

from .permission import Permission
from .role import Role
from .user import User

DOCUMENT_MODELS = [Permission, Role, User]

__all__ = ["Permission", "Role", "User", "DOCUMENT_MODELS"]
