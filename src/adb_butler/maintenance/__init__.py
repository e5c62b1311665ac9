"""
One-shot housekeeping tasks for a provider host.

These run outside the reconciliation pass: removing emulator records left
behind by this host and stamping a note onto the host's directory records.
"""

__all__ = ["models", "cleanup", "annotate"]
