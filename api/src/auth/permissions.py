"""Role-based access control (RBAC) for Lana.

Hierarchical permission system:
- ADMIN (level 3): Full system access
- TEACHER (level 2): Author courses, topics and quizzes
- STUDENT (level 1): Enroll, study, take quizzes and exams
- USER (level 0): Registered user
"""

from enum import Enum


class UserRole(str, Enum):
    """User roles with hierarchical levels. Higher level = more permissions."""

    USER = "user"
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.USER: 0,
    UserRole.STUDENT: 1,
    UserRole.TEACHER: 2,
    UserRole.ADMIN: 3,
}


def get_role_level(role: UserRole | str) -> int:
    """Get the permission level for a role. Unknown roles map to 0."""
    if isinstance(role, str):
        try:
            role = UserRole(role)
        except ValueError:
            return 0
    return ROLE_HIERARCHY.get(role, 0)


def has_permission(user_role: UserRole | str, required_role: UserRole | str) -> bool:
    """Check if user has at least the required permission level.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.TEACHER)
        True
        >>> has_permission("student", "teacher")
        False
    """
    return get_role_level(user_role) >= get_role_level(required_role)


def is_at_least_teacher(role: UserRole | str) -> bool:
    """Check if role is TEACHER or higher (ADMIN)."""
    return has_permission(role, UserRole.TEACHER)
