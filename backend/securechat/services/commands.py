"""Outgoing chat text, parsed once into one of a few tagged shapes."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

from securechat.services.rooms import ACTIONS


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class AssistantPrompt:
    """Chat text that also asks the assistant; `prompt` has the marker removed."""
    text: str
    prompt: str


@dataclass(frozen=True)
class ModerationCommand:
    action: str
    target: str


@dataclass(frozen=True)
class UnrecognisedCommand:
    name: str
    target: str


Outgoing = Union[PlainText, AssistantPrompt, ModerationCommand, UnrecognisedCommand]


def parse_outgoing(text: str, is_admin: bool, prefix: str = "/", marker: str = "@ai") -> Outgoing:
    """
    Admin text of the form "<prefix><action> <target> ..." is a command.
    A prefix with no target, or from a non-admin, is ordinary chat.
    """
    if is_admin and text.startswith(prefix):
        parts = text.split()
        if len(parts) >= 2:
            name = parts[0][len(prefix):].lower()
            if name in ACTIONS:
                return ModerationCommand(action=name, target=parts[1])
            return UnrecognisedCommand(name=name, target=parts[1])

    if marker and marker.lower() in text.lower():
        prompt = re.sub(re.escape(marker), "", text, flags=re.IGNORECASE).strip()
        return AssistantPrompt(text=text, prompt=prompt)

    return PlainText(text=text)
