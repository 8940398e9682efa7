# Authentication module

from app.modules.auth.dependencies import (
    get_current_user,
    get_current_student,
    get_current_lecturer,
)

__all__ = [
    "get_current_user",
    "get_current_student",
    "get_current_lecturer",
]
