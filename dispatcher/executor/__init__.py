from dispatcher.executor.transport import (
    CommandResult,
    LocalTransport,
    SshTransport,
    Transport,
    build_transport,
)
from dispatcher.executor.executor import Executor, TaskResult

__all__ = [
    "CommandResult", "LocalTransport", "SshTransport", "Transport", "build_transport",
    "Executor", "TaskResult",
]
