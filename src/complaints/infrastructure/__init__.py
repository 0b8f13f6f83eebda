"""
Complaints Infrastructure Layer
===============================

Infrastructure implementations for the complaints module:
- Models: SQLAlchemy ORM models
- Repositories: SQLAlchemy data access and unit of work
- Memory: In-process repositories and unit of work
- External: Policy file watcher, webhook notifications, scheduler
"""
