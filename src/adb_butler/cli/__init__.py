"""
Command line interface for adb-butler.
"""
