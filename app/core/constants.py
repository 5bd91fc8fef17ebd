import enum


class UserRole(str, enum.Enum):
    HR_ADMIN = "HR_ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


VALIDATOR_ROLES = {UserRole.HR_ADMIN.value, UserRole.MANAGER.value}

# "Done" is the literal some imported/synced rows still carry
COMPLETED_STATUSES = ("completed", "Done")

TASK_STATUSES = ("todo", "in_progress", "on_hold", "completed")

PRIORITY_WEIGHTS = {"high": 3, "medium": 2, "low": 1}

FEEDBACK_CATEGORIES = ("communication", "delivery", "collaboration")


def is_task_completed(status) -> bool:
    return status in COMPLETED_STATUSES


def priority_weight(priority) -> int:
    """high=3, medium=2, anything else (low, missing, unknown) = 1."""
    return PRIORITY_WEIGHTS.get((priority or "").lower(), 1)
