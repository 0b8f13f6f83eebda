"""
Shared Kernel Module
====================

Infrastructure used by both bounded contexts (complaints and feedback):
logging, clock, keyed locks, in-memory tables, metrics export, and the
HTTP identity/middleware layer.

No complaint or feedback business rules live here.
"""

__version__ = "1.0.0"
