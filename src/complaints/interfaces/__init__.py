"""
Complaints Interfaces Layer
===========================

Interface adapters (controllers) for the complaints module.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from src.complaints.interfaces.controllers import router as complaints_router

__all__ = ["complaints_router"]
