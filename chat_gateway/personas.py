"""
System prompts for the product's named AI teammates.
"""

from __future__ import annotations

import re
from typing import Dict, Optional

MR_GYB = "Mr.GYB AI"

_SPECIALTIES: Dict[str, str] = {
    MR_GYB: (
        "all-in-one business growth assistance, digital marketing, media management, "
        "business operations and development, and systems for scaling through "
        "automations and AI"
    ),
    "Chris": "strategy, architecture, and product direction",
    "Devin": "backend systems, AI infrastructure, and data pipelines",
    "Rawan": "UX, frontend, and overall product experience",
    "Jake": "content, copy, and marketing strategy",
    "Charlotte": (
        "human resources management, talent acquisition, employee development, "
        "organizational culture, and performance management"
    ),
    "Alex": (
        "business strategy, operations, client relations, project management, "
        "and growth initiatives"
    ),
    "Sherry": "operations management, process optimization, and operational excellence",
    "Rachel": "marketing strategy, brand development, and customer engagement",
}

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant for a marketing and content platform. "
    "Answer clearly and concisely."
)


def _lookup_key(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


_BY_KEY = {_lookup_key(name): name for name in _SPECIALTIES}


def resolve_persona(agent: Optional[str]) -> Optional[str]:
    """Map a free-form agent key onto a known teammate name."""
    if not agent:
        return None
    key = _lookup_key(agent)
    if "mr" in key and "gyb" in key:
        return MR_GYB
    return _BY_KEY.get(key)


def system_prompt_for(agent: Optional[str]) -> str:
    name = resolve_persona(agent)
    if name is None:
        return DEFAULT_SYSTEM_PROMPT
    return (
        f"You are {name}, a member of the Dream Team. "
        f"Your specialty is {_SPECIALTIES[name]}. "
        "Stay in character, give practical and actionable advice, and keep answers focused."
    )


__all__ = ["DEFAULT_SYSTEM_PROMPT", "resolve_persona", "system_prompt_for"]
