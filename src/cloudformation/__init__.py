"""
CloudFormation stack lifecycle orchestration.
"""

from .diagnostics import StackDiagnostics
from .models import OperationResult, StackRequest, StackSnapshot, StackStatus
from .orchestrator import StackOrchestrator

__all__ = [
    "OperationResult",
    "StackDiagnostics",
    "StackOrchestrator",
    "StackRequest",
    "StackSnapshot",
    "StackStatus",
]
