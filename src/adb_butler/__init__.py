"""
adb-butler - self-healing device controller for STF provider hosts

Keeps three views of a host's Android devices in agreement: the USB bus,
the ADB server and the shared device directory (RethinkDB). Each pass reads
all three, diffs them and applies the smallest corrective action.

Main modules:
- inventory: USB, ADB and directory readers producing snapshots
- reconcile: differ, recovery actions and the reconciliation pass
- maintenance: emulator record cleanup and host annotation
- events: pass summaries pushed to Loki
- cli: butlerctl operational CLI
"""

__version__ = "2.0.0"
__author__ = "adb-butler maintainers"

__all__ = ["__version__", "__author__"]
