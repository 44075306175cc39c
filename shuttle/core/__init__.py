from .scheduler import SchedulerConfig, TaskContext, TaskOptions, TaskRunner

__all__ = ["SchedulerConfig", "TaskContext", "TaskOptions", "TaskRunner"]
