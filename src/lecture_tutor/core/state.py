from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from lecture_tutor.core.commands import Command
from lecture_tutor.core.session_models import SessionState


class LogicResult(BaseModel):
    """Functional output from logic layer: new state + commands."""

    model_config = ConfigDict(frozen=False)

    new_state: SessionState
    commands: List[Command] = Field(default_factory=list)
    ui_message: Optional[str] = None
