"""Pagevoice pipeline package.

This package contains the book assembly orchestrator and its batch execution and
artifact cleanup helpers.
"""

from .batch import BatchFailure, run_indexed
from .cleanup import CleanupReport, delete_artifacts
from .orchestrator import BookAssemblyOrchestrator

__all__ = [
    "BatchFailure",
    "BookAssemblyOrchestrator",
    "CleanupReport",
    "delete_artifacts",
    "run_indexed",
]
