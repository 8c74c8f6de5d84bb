"""
Case-insensitive identity handling.

Principal names are the join key between the source directory and the cloud
directory. Both sides report them with inconsistent casing, so every identity
is normalized to lower-case before it is compared or stored.
"""

from collections.abc import Set
from typing import Iterable, Iterator, Optional


def normalize_identity(value: str) -> str:
    """
    Return the canonical form of a principal name.

    Args:
        value: Raw principal name as returned by a directory

    Returns:
        Stripped, lower-cased principal name

    Raises:
        ValueError: If the value is empty or whitespace only
    """
    if value is None:
        raise ValueError("Identity cannot be None")
    normalized = str(value).strip().lower()
    if not normalized:
        raise ValueError("Identity cannot be empty")
    return normalized


class IdentitySet(Set):
    """
    Set of unique normalized identities.

    Behaves like a read-only ``set`` for comparisons and set algebra, with
    ``add`` and ``update`` normalizing their input. Identities that differ
    only in case collapse to a single entry.
    """

    def __init__(self, identities: Optional[Iterable[str]] = None):
        self._items = set()
        if identities:
            self.update(identities)

    @classmethod
    def _from_iterable(cls, iterable):
        return cls(iterable)

    def add(self, identity: str) -> bool:
        """
        Add an identity to the set.

        Returns:
            True if the identity was not already present
        """
        normalized = normalize_identity(identity)
        if normalized in self._items:
            return False
        self._items.add(normalized)
        return True

    def update(self, identities: Iterable[str]):
        for identity in identities:
            self.add(identity)

    def __contains__(self, identity) -> bool:
        if not isinstance(identity, str) or not identity.strip():
            return False
        return normalize_identity(identity) in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"IdentitySet({sorted(self._items)!r})"

    def sorted(self) -> list:
        """Return identities in a stable order for reporting."""
        return sorted(self._items)
