"""
Offline Queue
Resilient request queue and session checkpoints between a client and a remote API
"""

__version__ = "0.3.0"
