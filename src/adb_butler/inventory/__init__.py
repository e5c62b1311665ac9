"""
Device inventory readers.

This module captures what the USB bus, the ADB server and the device
directory each believe about the devices of this host.
"""

__all__ = ["models", "identity", "usb", "adb", "directory", "collector"]
