"""
Worker module.
Contains the worker loop, the command executor and shutdown handling.
"""

from queuectl.worker.main import Worker, run

__all__ = ["Worker", "run"]
