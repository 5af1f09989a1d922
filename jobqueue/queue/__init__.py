"""
Queue core.
Enqueue, execution coordination, inspection and lifecycle operations.
"""

from jobqueue.queue.coordinator import ExecutionCoordinator, Processor, build_error
from jobqueue.queue.enqueue import EnqueueService, IdempotencyResolver
from jobqueue.queue.inspector import QueueInspector
from jobqueue.queue.lifecycle import LifecycleOperations
from jobqueue.queue.service import JobQueue

__all__ = [
    "JobQueue",
    "EnqueueService",
    "IdempotencyResolver",
    "ExecutionCoordinator",
    "Processor",
    "build_error",
    "QueueInspector",
    "LifecycleOperations",
]
