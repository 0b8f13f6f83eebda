"""
Feedback Interfaces Layer
=========================

HTTP routes for surveys and anonymous feedback.
"""

from src.feedback.interfaces.controllers import router as feedback_router

__all__ = ["feedback_router"]
