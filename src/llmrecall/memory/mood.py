# src/llmrecall/memory/mood.py
"""
A small three-axis mood model used for time-away notes.
"""

from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .triggers import is_compliment_trigger

_NEUTRAL = 0.5
_DRIFT = 0.005


class MoodState(BaseModel):
    """
    Energy, cheer and curiosity, each clamped to [0, 1].

    Every update drifts the values toward neutral. Long absences reset
    energy and spike curiosity while eroding cheer; shorter breaks restore
    energy. Compliments lift cheer and energy.
    """
    energy: float = Field(default=_NEUTRAL)
    cheer: float = Field(default=_NEUTRAL)
    curiosity: float = Field(default=_NEUTRAL)

    class Config:
        validate_assignment = True

    @field_validator("energy", "cheer", "curiosity", mode="after")
    @classmethod
    def clamp(cls, v: float) -> float:
        return min(1.0, max(0.0, v))

    def update(self, last_user_message_at: Optional[datetime], now: datetime) -> None:
        self.energy += (_NEUTRAL - self.energy) * _DRIFT
        self.cheer += (_NEUTRAL - self.cheer) * _DRIFT
        self.curiosity += (_NEUTRAL - self.curiosity) * _DRIFT
        if last_user_message_at is None:
            return
        gap = now - last_user_message_at
        days = gap.total_seconds() / 86400.0
        if gap >= timedelta(days=7):
            self.energy = 0.6
            self.curiosity = 1.0
            self.cheer -= 0.05 * days
        elif gap >= timedelta(hours=12):
            self.energy += 0.2 * days
            self.curiosity += 0.02 * days

    def interpret(self, text: str) -> None:
        if is_compliment_trigger(text):
            self.cheer += 0.1
            self.energy += 0.05

    def describe(self, name: str = "{{char}}") -> str:
        if self.energy < 0.35:
            parts = ["tired"]
        elif self.energy > 0.65:
            parts = ["energetic"]
        else:
            parts = ["rested"]
        if self.cheer < 0.15:
            parts.append("sad")
        elif self.cheer < 0.35:
            parts.append("moody")
        elif self.cheer > 0.85:
            parts.append("happy")
        elif self.cheer > 0.65:
            parts.append("joyful")
        if self.curiosity < 0.25:
            parts.append("disinterested")
        elif self.curiosity > 0.65:
            parts.append("curious")
        if len(parts) == 1:
            return f"{name} is currently feeling {parts[0]}."
        return f"{name} is currently feeling {', '.join(parts[:-1])} and {parts[-1]}."
