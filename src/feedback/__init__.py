"""
Feedback Module
===============

Bounded Context for post-resolution satisfaction surveys and anonymous
feedback.

Responsibilities:
- Send one satisfaction survey per closed ticket, with reminders
- Accept exactly one survey response
- Accept anonymous feedback that can only be looked up by its token
- Staff handling of anonymous feedback (review, public response, purge)

Shares ticket ids with the complaints module but owns its own records.
"""

__version__ = "1.0.0"
