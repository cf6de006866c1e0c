"""
dojoscheduler - Availability booking and lifecycle statistics on a key-value store.
"""

__version__ = "0.1.0"
