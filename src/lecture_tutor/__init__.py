"""
Client-side session engine for AI lecture tutoring.

Import the controller for normal use:
  from lecture_tutor import SessionController
  from lecture_tutor.core.errors import FetchFailure
  from lecture_tutor.logic.session import reduce_session_event
"""

from lecture_tutor.config import TutorSettings, load_settings
from lecture_tutor.controller import SessionController
from lecture_tutor.gateway import HttpSessionGateway, RemoteSessionGateway

__all__ = [
    'SessionController',
    'HttpSessionGateway',
    'RemoteSessionGateway',
    'TutorSettings',
    'load_settings',
]
