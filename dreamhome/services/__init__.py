"""
Services module.
"""

from dreamhome.services.orchestrator import BatchOrchestrator, get_orchestrator
from dreamhome.services.pipeline import ItemPipeline
from dreamhome.services.retry import RateLimitedRenderer, RetryPolicy
from dreamhome.services.run_context import RunContext, RunRegistry, get_run_registry

__all__ = [
    "BatchOrchestrator",
    "get_orchestrator",
    "ItemPipeline",
    "RateLimitedRenderer",
    "RetryPolicy",
    "RunContext",
    "RunRegistry",
    "get_run_registry",
]
