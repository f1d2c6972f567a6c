"""Job processors and queue facade for the agentboard pipeline."""

from .messages import MessageProcessor
from .queue import QueueService
from .task_runs import AssignmentShortcut, TaskRunProcessor

__all__ = [
    "AssignmentShortcut",
    "MessageProcessor",
    "QueueService",
    "TaskRunProcessor",
]
