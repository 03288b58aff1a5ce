from typing import Iterable, List, Optional, Pattern
import re


# Inputs that never benefit from recalled context
DEFAULT_SKIP_PATTERNS: List[Pattern[str]] = [
    re.compile(r"^(hi|hello|hey|goodbye|bye|thanks|thank you)[.!?]*$", re.IGNORECASE),
    re.compile(r"^what is \d+(\.\d+)?\s*[+\-*/x]\s*\d+(\.\d+)?\s*\??$", re.IGNORECASE),
    re.compile(r"^\s*tell me a joke\s*[.!?]*$", re.IGNORECASE),
    re.compile(r"^\s*who are you\??\s*$", re.IGNORECASE),
    re.compile(r"^(help|commands?|what can you do)\??$", re.IGNORECASE),
    re.compile(r"^\s*how are you\??\s*$", re.IGNORECASE),
]


class RetrievalGate:
    """Decides whether a user input warrants a memory search"""

    def __init__(
        self,
        enabled: bool = True,
        min_query_length: int = 3,
        important_short_terms: Optional[Iterable[str]] = None,
        skip_patterns: Optional[List[Pattern[str]]] = None
    ):
        self.enabled = enabled
        self.min_query_length = min_query_length
        self.important_short_terms = {t.lower() for t in (important_short_terms or [])}
        self.skip_patterns = skip_patterns if skip_patterns is not None else DEFAULT_SKIP_PATTERNS

    def should_retrieve(self, query: str) -> bool:
        if not self.enabled:
            return False

        text = query.strip()
        if text.lower() in self.important_short_terms:
            return True
        if len(text) < self.min_query_length:
            return False

        return not any(pattern.match(text) for pattern in self.skip_patterns)
