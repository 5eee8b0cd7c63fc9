"""
Extension hooks: let the host persist values the generic algorithm can't introspect.
"""
from __future__ import annotations

from typing import Dict, Optional, Tuple, Type, TYPE_CHECKING

from .exceptions import MarshalInvalidPersistHook
from .model import Tag, classify
from .structures import Record

if TYPE_CHECKING:
    from .interfaces import PersistHook, Reviver

PERSIST_METHOD = '__persist__'

class HookRegistry:
    """
    Per-type persist hooks.

    A hook is called with the value to pack and returns a *reviver*, a function that
    will be called with the captured state at unpack time to re-create the value.
    The hook can return ``(reviver, state)`` or just ``reviver``, in which case the state is an
    empty record. The reviver is packed like any other function, along with its upvalues,
    so it can capture the state as well.

    Lookup follows the MRO of the value's type. Classes can also define a ``__persist__``
    method, it's used when no hook is registered for the type.

    >>> registry = HookRegistry()
    >>> class Point:
    ...     def __init__(self, x, y):
    ...         self.x, self.y = x, y
    >>> registry.register(Point, lambda p: (lambda state: Point(state['x'], state['y']),
    ...                                     {'x': p.x, 'y': p.y}))
    """

    def __init__(self) -> None:
        self._hooks: Dict[type, 'PersistHook'] = {}

    def register(self, cls:Type[object], hook:'PersistHook') -> None:
        self._hooks[cls] = hook

    def unregister(self, cls:Type[object]) -> None:
        del self._hooks[cls]

    def lookup(self, value:object) -> 'PersistHook|None':
        """
        Find the hook to use for this value, if any.
        """
        for cls in type(value).__mro__:
            try:
                return self._hooks[cls]
            except KeyError:
                pass
        method = getattr(type(value), PERSIST_METHOD, None)
        if method is not None:
            return method # type:ignore[no-any-return]
        return None

    def persist(self, value:object, hook:'PersistHook|None'=None) -> 'Optional[Tuple[Reviver, object]]':
        """
        Run the hook for this value and normalize its result.

        :returns: None if no hook applies to this value.
        :raises MarshalInvalidPersistHook: If the hook did not return a callable value (see `classify`),
            dumping the reviver can still fail with `MarshalUnsupportedValue`.
        """
        if hook is None:
            hook = self.lookup(value)
            if hook is None:
                return None
        result = hook(value)
        state: object = None
        if isinstance(result, tuple) and len(result) == 2:
            reviver, state = result
        else:
            reviver = result
        if not callable(reviver) or classify(reviver) is not Tag.CALLABLE:
            raise MarshalInvalidPersistHook(value, got=reviver)
        if state is None:
            state = Record()
        return reviver, state # type:ignore[return-value]

    def __contains__(self, cls:object) -> bool:
        return cls in self._hooks

registry = HookRegistry()
"""
The registry used by default.
"""
