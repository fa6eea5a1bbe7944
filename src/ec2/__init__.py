"""
EC2 and auto-scaling utilities used after stack updates.
"""

from .reconciler import ResourceGroupReconciler

__all__ = ["ResourceGroupReconciler"]
