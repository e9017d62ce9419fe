# src/llmrecall/plugins.py
"""
Context plugins.

A plugin can add text to the system section of every prompt, rewrite or
annotate the user's input before generation, and edit the model's reply
once generation ends. Every hook is optional; the base class does nothing.
"""

from dataclasses import dataclass
from typing import Optional

from .models import Role
from .sessions.chatlog import Chatlog


@dataclass
class PluginResponse:
    """
    Outcome of :meth:`ContextPlugin.replace_user_input`.

    ``replace`` responses take the place of the user's text in the prompt;
    the others are joined into a system message placed after it.
    """
    handled: bool = False
    response: Optional[str] = None
    replace: bool = True
    role: Role = Role.USER


class ContextPlugin:
    plugin_id: str = "plugin"

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def system_addition(self, user_input: str, history: Chatlog) -> Optional[str]:
        """Text appended to the system section, or None."""
        return None

    async def replace_user_input(self, user_input: str) -> PluginResponse:
        return PluginResponse()

    def replace_output(self, output: str, history: Chatlog) -> Optional[str]:
        """Edited reply, or None to keep it unchanged."""
        return None
