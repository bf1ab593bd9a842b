from .courses import CourseRepository
from .questions import QuestionRepository
from .task_records import TaskRecordRepository
from .tasks import TaskRepository
from .users import UserRepository

__all__ = [
    "CourseRepository",
    "QuestionRepository",
    "TaskRecordRepository",
    "TaskRepository",
    "UserRepository",
]
