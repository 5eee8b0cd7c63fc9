"""
Generic data structures.
"""

from __future__ import annotations

from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Mapping,
    MutableMapping,
    Set,
    Tuple,
    TypeVar,
)

_KT = TypeVar("_KT")
_VT = TypeVar("_VT")

class Record(MutableMapping[_KT, _VT]):
    """
    A table: mapping of values to values, compared and hashed by identity.

    Two records are equal only if they are the same object, so records can be
    used as keys of other records. Use `deep_equal` to compare them structurally.

    >>> r = Record({1: 'a', 2: 'b'})
    >>> r[1.0]
    'a'
    >>> r.sequence()
    ['a', 'b']
    >>> Record() == Record()
    False
    """

    __slots__ = ('_d', '__weakref__')

    def __init__(self, *args:Any, **kwargs:Any):
        self._d: Dict[_KT, _VT] = dict(*args, **kwargs)

    @classmethod
    def from_sequence(cls, values:'List[_VT]|Tuple[_VT, ...]') -> 'Record[int, _VT]':
        """
        Create a record holding the values at keys 1 to N.
        """
        return Record(enumerate(values, start=1))

    def sequence(self) -> List[_VT]:
        """
        Values stored at the consecutive integer keys 1..N, stops at the first missing key.
        """
        r: List[_VT] = []
        i = 1
        while i in self._d:
            r.append(self._d[i]) # type:ignore[index]
            i += 1
        return r

    def __getitem__(self, key:_KT) -> _VT:
        return self._d[key]

    def __setitem__(self, key:_KT, value:_VT) -> None:
        self._d[key] = value

    def __delitem__(self, key:_KT) -> None:
        del self._d[key]

    def __iter__(self) -> Iterator[_KT]:
        return iter(self._d)

    def __len__(self) -> int:
        return len(self._d)

    def __contains__(self, key:object) -> bool:
        return key in self._d

    __eq__ = object.__eq__
    __ne__ = object.__ne__
    __hash__ = object.__hash__

    def __repr__(self) -> str:
        return self._repr(set())

    def _repr(self, seen:Set[int]) -> str:
        if id(self) in seen:
            return 'Record(...)'
        seen.add(id(self))
        def r(v:object) -> str:
            if isinstance(v, Record):
                return v._repr(seen)
            return repr(v)
        return 'Record({%s})' % ', '.join(f'{r(k)}: {r(v)}' for k,v in self._d.items())


def deep_equal(a:object, b:object) -> bool:
    """
    Compare two value graphs structurally.

    Mappings (records or dicts) are equal when they have the same entries, sequences
    are compared like records keyed from 1 to N. Cycles are supported: a pair of
    mappings already under comparison is assumed equal.
    Keys that are mappings themselves are matched against the other side's mapping keys.
    """
    return _deep_equal(a, b, set())

def _as_mapping(v:object) -> 'Mapping[object, object]|None':
    if isinstance(v, Mapping):
        return v
    if isinstance(v, (list, tuple)):
        return dict(enumerate(v, start=1))
    return None

def _deep_equal(a:object, b:object, assumed:Set[Tuple[int, int]]) -> bool:
    if a is b:
        return True
    ma, mb = _as_mapping(a), _as_mapping(b)
    if ma is None or mb is None:
        if ma is not None or mb is not None:
            return False
        return bool(a == b)
    pair = (id(a), id(b))
    if pair in assumed:
        return True
    if len(ma) != len(mb):
        return False
    assumed.add(pair)
    if not _entries_equal(ma, mb, assumed):
        assumed.discard(pair)
        return False
    return True

def _entries_equal(ma:Mapping[object, object], mb:Mapping[object, object], 
                   assumed:Set[Tuple[int, int]]) -> bool:
    composite_keys = [k for k in mb if _as_mapping(k) is not None]
    for k, v in ma.items():
        if _as_mapping(k) is None:
            if k not in mb:
                return False
            if not _deep_equal(v, mb[k], assumed):
                return False
        else:
            for i, other in enumerate(composite_keys):
                if _deep_equal(k, other, assumed) and _deep_equal(v, mb[other], assumed):
                    del composite_keys[i]
                    break
            else:
                return False
    return True
