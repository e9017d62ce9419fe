# src/llmrecall/memory/triggers.py
"""
Phrase lists that steer the memory lifecycle.

"Eureka" phrases are open-ended invitations ("what's new?") that make the
Brain surface a queued memory right away. Compliment phrases nudge the mood.
Matching is a case-insensitive substring test.
"""

from typing import Iterable

EUREKA_TRIGGERS = (
    "any updates", "any developments", "any breakthroughs", "any discoveries", "any news",
    "anything interesting", "anything new", "anything exciting", "anything noteworthy",
    "anything remarkable", "pick a topic", "pick something", "something new",
    "something to share", "something interesting", "share something", "share anything",
    "share news", "share updates", "talk about?", "what have you learned",
    "what's going on", "what's happening", "what's the latest", "what's the scoop",
    "what's the buzz", "what's the word", "what's up", "what's new",
)

COMPLIMENT_TRIGGERS = (
    "you look nice", "you look great", "you did well", "good job", "well done", "congrats",
    "bravo", "kudos", "thank you", "thanks", "much appreciated", "i appreciate it",
    "you are amazing", "you are awesome", "you are the best", "you are incredible",
    "you are fantastic", "you are wonderful", "you are impressive", "you are outstanding",
    "you are remarkable", "you are extraordinary", "you are exceptional", "you are brilliant",
    "you are superb", "you're amazing", "you're awesome", "you're the best",
    "you're incredible", "you're fantastic", "you're wonderful", "you're impressive",
    "you're remarkable", "you're extraordinary", "you're exceptional", "you're brilliant",
)


def _contains_any(text: str, phrases: Iterable[str]) -> bool:
    # Typographic apostrophes are common in chat input.
    lowered = text.lower().replace("’", "'")
    return any(phrase in lowered for phrase in phrases)


def is_eureka_trigger(text: str) -> bool:
    return _contains_any(text, EUREKA_TRIGGERS)


def is_compliment_trigger(text: str) -> bool:
    return _contains_any(text, COMPLIMENT_TRIGGERS)
