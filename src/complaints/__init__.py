"""
Complaints Module
=================

Bounded Context for the complaint (grievance) ticket lifecycle.

Responsibilities:
- Ticket intake, state transitions and audit history
- SLA deadline computation and breach detection
- Priority-ordered assignment rules
- Manual and SLA-triggered escalation
- Resolution submission, verification and reopening
- Read-only complaint analytics
"""

__version__ = "1.0.0"
