from .base import CROP_TASK, FRAME_TASK, LLM_TASK, TaskClient, TaskHandle, TaskState, TaskStatus
from .local import LocalTaskClient
from .watcher import TaskResult, TaskWatcher, WatchPhase

__all__ = [
    "CROP_TASK",
    "FRAME_TASK",
    "LLM_TASK",
    "LocalTaskClient",
    "TaskClient",
    "TaskHandle",
    "TaskResult",
    "TaskState",
    "TaskStatus",
    "TaskWatcher",
    "WatchPhase",
]
