"""
Feedback Infrastructure Layer
=============================

Concrete repositories (SQLAlchemy and in-memory) for surveys and anonymous
feedback.
"""
