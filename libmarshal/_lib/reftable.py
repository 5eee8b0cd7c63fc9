"""
Identity based reference tables, one per top-level marshal or unmarshal call.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple

class PackRefTable:
    """
    Maps the identity of reference-tracked values to sequential ids.
    """

    def __init__(self) -> None:
        self._ids: Dict[int, Tuple[int, object]] = {}
        # the value is kept alive with its id so identities can't be recycled during the call
        self._next = 1

    def lookup(self, value:object) -> Optional[int]:
        entry = self._ids.get(id(value))
        if entry is None:
            return None
        return entry[0]

    def register(self, value:object) -> int:
        """
        Assign the next id to this value.
        """
        assert id(value) not in self._ids, value
        ref = self._next
        self._ids[id(value)] = (ref, value)
        self._next += 1
        return ref

    def __len__(self) -> int:
        return len(self._ids)


_PENDING = object()

class UnpackRefTable:
    """
    Maps ids to reconstructed values, ids are assigned in decoding order.
    """

    def __init__(self) -> None:
        self._values: List[object] = []

    def register(self, value:object) -> int:
        self._values.append(value)
        return len(self._values)

    def reserve(self) -> int:
        """
        Claim the next id for a value that is not created yet, see `bind`.
        """
        return self.register(_PENDING)

    def bind(self, ref:int, value:object) -> None:
        assert self._values[ref-1] is _PENDING, ref
        self._values[ref-1] = value

    def pending(self, ref:int) -> bool:
        return 1 <= ref <= len(self._values) and self._values[ref-1] is _PENDING

    def get(self, ref:int) -> object:
        """
        :raises KeyError: If the id is unknown or not bound yet.
        """
        if ref < 1 or ref > len(self._values):
            raise KeyError(ref)
        v = self._values[ref-1]
        if v is _PENDING:
            raise KeyError(ref)
        return v

    def __len__(self) -> int:
        return len(self._values)
