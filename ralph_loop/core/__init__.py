"""Core module exports for Ralph Loop."""

from .result import (
    AgentResult,
    DelegatedTask,
    DelegationBatchResult,
    IterationOutcome,
    RunSummary,
)

__all__ = [
    "AgentResult",
    "DelegatedTask",
    "DelegationBatchResult",
    "IterationOutcome",
    "RunSummary",
]
