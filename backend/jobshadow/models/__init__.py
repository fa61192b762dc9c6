from jobshadow.models.lottery import (  # noqa: F401
    GradeOrder,
    LotteryConfiguration,
    LotteryJob,
    LotteryJobStatus,
    LotteryResult,
    ManualAssignment,
    PrefillSetting,
)
from jobshadow.models.position import Position  # noqa: F401
from jobshadow.models.school import Company, Event, School  # noqa: F401
from jobshadow.models.student import Student, StudentChoice  # noqa: F401
from jobshadow.models.user import ADMIN_ROLES, User, UserRole  # noqa: F401
