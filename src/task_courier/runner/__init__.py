"""External tool execution with bounded runtime and durable logs."""

from task_courier.runner.backend import (
    CompletionLatch,
    StreamSink,
    ToolLaunchError,
    ToolRunner,
    ToolRunRequest,
    build_tool_command,
    build_tool_env,
)
from task_courier.runner.service import ExecutionOrchestrator
from task_courier.runner.workdir import TaskWorkdirManager, WorkdirError, is_remote_locator

__all__ = [
    "CompletionLatch",
    "ExecutionOrchestrator",
    "StreamSink",
    "TaskWorkdirManager",
    "ToolLaunchError",
    "ToolRunRequest",
    "ToolRunner",
    "WorkdirError",
    "build_tool_command",
    "build_tool_env",
    "is_remote_locator",
]
