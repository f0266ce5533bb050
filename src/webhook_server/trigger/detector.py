"""Trigger phrase detection for GitLab comments.

A comment triggers the assistant when it mentions the configured trigger
phrase as a whole word, case-insensitively. The phrase is matched literally:
regex metacharacters in it are escaped before compiling.

Word boundaries are checked explicitly with lookarounds instead of ``\\b``
so that they also hold for phrases that start or end with punctuation
(``@claude``) and so that a hyphenated continuation does not count as a
boundary: ``@claude-bot`` is a different user than ``@claude``.
"""

import re
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class TriggerMatch:
    """Result of looking for the trigger phrase in a comment.

    Attributes:
        matched: True if the phrase was found as a whole word.
        instruction: Text following the phrase, trimmed. Empty when nothing
            follows or when the phrase was not found.
    """

    matched: bool
    instruction: str = ""


NO_MATCH = TriggerMatch(matched=False, instruction="")


@lru_cache(maxsize=32)
def compile_trigger(trigger_phrase: str) -> "re.Pattern[str]":
    """Compile the whole-word, case-insensitive pattern for a phrase."""
    return re.compile(
        r"(?<![\w-])" + re.escape(trigger_phrase) + r"(?![\w-])",
        re.IGNORECASE,
    )


def detect(note: str, trigger_phrase: str) -> TriggerMatch:
    """Look for the trigger phrase in a comment and extract the instruction.

    Args:
        note: The raw comment text.
        trigger_phrase: The configured mention phrase, e.g. "@claude".

    Returns:
        TriggerMatch with the text after the first whole-word occurrence
        of the phrase as the instruction.
    """
    if not note or not trigger_phrase:
        return NO_MATCH

    match = compile_trigger(trigger_phrase).search(note)
    if match is None:
        return NO_MATCH

    return TriggerMatch(matched=True, instruction=note[match.end():].strip())
