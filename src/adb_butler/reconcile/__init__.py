"""
Reconciliation of device state across USB, ADB and the device directory.

This module diffs inventory snapshots, executes recovery actions and runs
single-flight reconciliation passes.
"""

__all__ = ["models", "differ", "retry", "actions", "lock", "service"]
