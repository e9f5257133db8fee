"""
Decoded callback parameters.
"""

import math
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple


class CallbackParams(Mapping[str, str]):
    """
    Ordered, immutable key/value pairs decoded from a callback body.

    Every received pair is kept (signatures cover all of them); lookups by key
    return the first value, matching how form data is read.
    """

    def __init__(self, pairs: Iterable[Tuple[str, str]] = ()):
        self._pairs: Tuple[Tuple[str, str], ...] = tuple((str(k), str(v)) for k, v in pairs)
        self._first: Dict[str, str] = {}
        for key, value in self._pairs:
            self._first.setdefault(key, value)

    def __getitem__(self, key: str) -> str:
        return self._first[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._first)

    def __len__(self) -> int:
        return len(self._first)

    def __repr__(self) -> str:
        return f"CallbackParams({list(self._pairs)!r})"

    @property
    def pairs(self) -> Tuple[Tuple[str, str], ...]:
        return self._pairs

    def text(self, key: str) -> str:
        """Value for key, or an empty string."""
        return self._first.get(key, "")

    def optional(self, key: str) -> Optional[str]:
        """Value for key, or None when absent or empty."""
        return self._first.get(key) or None

    def number(self, key: str, default: float = 0) -> float:
        """Value for key parsed as a number; default when absent, non-numeric or nan."""
        try:
            value = float(self._first.get(key, "").strip())
        except ValueError:
            return default
        return default if math.isnan(value) else value

    def sorted_pairs(self) -> List[Tuple[str, str]]:
        """All pairs ordered by key (code point order), stable for repeated keys."""
        return sorted(self._pairs, key=lambda pair: pair[0])

    def to_dict(self) -> Dict[str, str]:
        """Plain dict of every pair; a repeated key keeps its last value."""
        return dict(self._pairs)
