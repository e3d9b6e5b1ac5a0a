"""SQLAlchemy database models for replan."""

from datetime import datetime
import uuid
from sqlalchemy import Column, String, Integer, Boolean, Date, DateTime, JSON

from typing import Union, TypeVar, Type
from replan.database.database import Base
from replan.models.task import Task, TaskStatus, TaskPriority

T = TypeVar('T')


def enum_to_value(enum_obj: Union[str, int, T]) -> Union[str, int]:
    """Convert enum to its stored value (handles both enum and raw value).

    Args:
        enum_obj: Enum instance or raw value

    Returns:
        Value of the enum, or the value itself if already raw
    """
    if hasattr(enum_obj, 'value'):
        return enum_obj.value
    return enum_obj


def value_to_enum(value: Union[str, int, None], enum_class: Type[T], default: T) -> T:
    """Convert a stored value to enum with fallback to default.

    Args:
        value: Stored value to convert
        enum_class: Enum class to convert to
        default: Default enum value if conversion fails

    Returns:
        Enum instance, or default if conversion fails
    """
    if value is None or value == "":
        return default
    if isinstance(value, str):
        value = value.lower()
    try:
        return enum_class(value)
    except (ValueError, AttributeError):
        return default


class TaskDB(Base):
    """Database model for Task."""

    __tablename__ = "tasks"

    # Primary key
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # Basic fields
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    status = Column(String, nullable=False, default=TaskStatus.PENDING.value, index=True)
    priority = Column(Integer, nullable=False, default=TaskPriority.MEDIUM.value)

    # Timestamps (updated_at is the optimistic-concurrency token)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Scheduling fields
    scheduled_date = Column(Date, nullable=True, index=True)
    time_estimate = Column(Integer, nullable=False, default=0)

    # Dependencies (stored as JSON array of task ids)
    dependencies = Column(JSON, nullable=False, default=list)

    # Periodic linkage (optional)
    is_periodic_instance = Column(Boolean, nullable=False, default=False)
    periodic_template_id = Column(String, nullable=True, index=True)
    generation_date = Column(Date, nullable=True)

    def to_pydantic(self) -> Task:
        """Convert database model to Pydantic model."""
        return Task(
            id=self.id,
            title=self.title,
            description=self.description,
            status=value_to_enum(self.status, TaskStatus, TaskStatus.PENDING),
            priority=value_to_enum(self.priority, TaskPriority, TaskPriority.MEDIUM),
            dependencies=self.dependencies or [],
            scheduled_date=self.scheduled_date,
            time_estimate=self.time_estimate or 0,
            created_at=self.created_at,
            updated_at=self.updated_at,
            is_periodic_instance=bool(self.is_periodic_instance),
            periodic_template_id=self.periodic_template_id,
            generation_date=self.generation_date,
        )

    @classmethod
    def from_pydantic(cls, task: Task) -> "TaskDB":
        """Create database model from Pydantic model."""
        # Pydantic with use_enum_values=True returns raw values
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            status=enum_to_value(task.status),
            priority=int(enum_to_value(task.priority)),
            dependencies=list(task.dependencies),
            scheduled_date=task.scheduled_date,
            time_estimate=task.time_estimate,
            created_at=task.created_at,
            updated_at=task.updated_at,
            is_periodic_instance=task.is_periodic_instance,
            periodic_template_id=task.periodic_template_id,
            generation_date=task.generation_date,
        )
