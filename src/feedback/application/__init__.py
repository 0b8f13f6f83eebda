"""
Feedback Application Layer
==========================

Contains:
- Services: SurveyService, AnonymousFeedbackService
- DTOs: Request/response models
- Interfaces: Repository abstractions

Import from the submodules directly; the complaints unit of work depends
on ``interfaces`` and the services depend on the complaints layer.
"""
