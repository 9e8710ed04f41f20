"""Job-scoped pseudonym map.

One map is created per anonymization job (a single text or one dataset
export run, including resumed chunks of that run) and discarded when
the job completes. Maps are never shared between jobs.
"""
from typing import Any, Dict, Optional


class PseudonymMap:
    """Maps literal PII text to its replacement token.

    Identical literals map to identical tokens within the job. With
    ``numbered`` set, each distinct literal of a category gets its own
    token ([NAME_1], [NAME_2], ...).
    """

    def __init__(self, numbered: bool = False):
        self.numbered = numbered
        self._mappings: Dict[str, str] = {}
        self._counters: Dict[str, int] = {}

    def token_for(self, literal: str, category: str) -> str:
        """Return the replacement token for a literal, creating it once."""
        token = self._mappings.get(literal)
        if token is not None:
            return token

        if self.numbered:
            count = self._counters.get(category, 0) + 1
            self._counters[category] = count
            token = f"[{category}_{count}]"
        else:
            token = f"[{category}]"

        self._mappings[literal] = token
        return token

    def __len__(self) -> int:
        return len(self._mappings)

    def __contains__(self, literal: str) -> bool:
        return literal in self._mappings

    def snapshot(self) -> Dict[str, Any]:
        """Serializable state for export checkpoints.

        Contains raw literals: store checkpoints with raw-data protection.
        """
        return {
            "numbered": self.numbered,
            "mappings": dict(self._mappings),
            "counters": dict(self._counters),
        }

    @classmethod
    def restore(cls, state: Optional[Dict[str, Any]]) -> "PseudonymMap":
        """Rebuild a map from ``snapshot`` output."""
        state = state or {}
        pseudonyms = cls(numbered=bool(state.get("numbered", False)))
        pseudonyms._mappings = dict(state.get("mappings", {}))
        pseudonyms._counters = dict(state.get("counters", {}))
        return pseudonyms
