"""
Recovery module.
Contains the startup sweep for jobs orphaned by crashed workers.
"""

from queuectl.recovery.main import RecoveryManager

__all__ = ["RecoveryManager"]
