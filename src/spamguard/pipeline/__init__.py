"""
Intake, prioritization, batching and classification pipeline.
"""

from .assembler import BatchAssembler, BatchPolicy  # noqa: F401
from .dispatcher import BatchState, ClassificationDispatcher, DispatchReport  # noqa: F401
from .enrichment import WebContentResolver  # noqa: F401
from .executor import ActionExecutor, OutcomeLog  # noqa: F401
from .intake import MessageIntake, extract_urls  # noqa: F401
from .lifecycle import LifecycleCoordinator, ShutdownReport  # noqa: F401
from .queue import PriorityQueue, QueueSnapshot  # noqa: F401
from .signals import ShutdownSignal  # noqa: F401
