"""
Feedback Domain Layer
=====================

Pure Python entities for surveys and anonymous feedback.
"""

from src.feedback.domain.entities import (
    SatisfactionSurvey,
    SurveyRatings,
    SurveyResponse,
    AnonymousFeedback,
    generate_lookup_token,
    digest_token,
    TOKEN_PREFIX,
)

__all__ = [
    "SatisfactionSurvey",
    "SurveyRatings",
    "SurveyResponse",
    "AnonymousFeedback",
    "generate_lookup_token",
    "digest_token",
    "TOKEN_PREFIX",
]
