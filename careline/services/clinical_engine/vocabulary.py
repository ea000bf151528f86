"""
Vocabulary matching for free-text condition and medication lists.
"""
from typing import Iterable, Optional, Protocol, Sequence


class VocabularyMatcher(Protocol):
    def matches(self, free_text: Optional[Sequence[str]], terms: Iterable[str]) -> bool:
        ...


class SubstringMatcher:
    """
    Case-insensitive substring containment: "Type 2 diabetes" matches the
    term "diabetes". An unknown list (None) never matches.
    """

    def matches(self, free_text: Optional[Sequence[str]], terms: Iterable[str]) -> bool:
        if not free_text:
            return False
        entries = [entry.lower() for entry in free_text if entry]
        for term in terms:
            needle = term.lower()
            if any(needle in entry for entry in entries):
                return True
        return False


DEFAULT_MATCHER = SubstringMatcher()
