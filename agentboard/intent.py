"""
Decides whether an agent reply should go through task extraction.
"""

import re
from enum import Enum
from typing import Protocol


class IntentClassifier(Protocol):
    def requests_work_items(self, text: str) -> bool: ...

    def enumerates_work_items(self, text: str) -> bool: ...


_CREATION_PATTERN = re.compile(
    r"(create|add|make|start|plan|identify)\s+(tasks?|features?)"
    r"|break\s+down"
    r"|divide\s+into\s+tasks?"
    r"|what\s+(tasks|features)",
    re.IGNORECASE,
)

_ENUMERATION_PATTERN = re.compile(
    r"task\s+\d+|step\s+\d+"
    r"|\b(tasks?|features?|steps?|components?|requirements?|stories?|work\s+items?)\s*:"
    r"|\b(task|feature|step|component|requirement|story|item)\b.*?:"
    r"|here\s+are\s+the\s+(tasks|features|steps)"
    r"|(list\s+of|following)\s+(tasks|features)"
    r"|we'll\s+need\s+to"
    r"|steps\s+to\s+implement"
    r"|break\s+this\s+down\s+into"
    r"|implementation\s+steps",
    re.IGNORECASE,
)


class RegexIntentClassifier:
    """Keyword heuristics over the inbound message and the reply text."""

    def requests_work_items(self, text: str) -> bool:
        return bool(_CREATION_PATTERN.search(text or ""))

    def enumerates_work_items(self, text: str) -> bool:
        return bool(_ENUMERATION_PATTERN.search(text or ""))


class ExtractionPolicy(str, Enum):
    ALWAYS = "always"
    INTENT = "intent"


def should_extract(policy: ExtractionPolicy, classifier: IntentClassifier, inbound: str, reply: str) -> bool:
    if policy == ExtractionPolicy.ALWAYS:
        return True
    return classifier.requests_work_items(inbound) or classifier.enumerates_work_items(reply)
