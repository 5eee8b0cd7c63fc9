"""
This module provides interfaces for the capabilities the marshaller depends on.
Making it easy to replace the host specific parts by another implementation, keeping
the same code eveywhere else.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Protocol, TypeAlias
    from .structures import Record
else:
    Protocol = object

class _Msg(Protocol):
    def __call__(
        self, msg: str, ctx: object = None, thresh: int = 0
    ) -> None:
        ...

Reviver: 'TypeAlias' = 'Callable[[Record[object, object]], object]'
"""
A function that receives the captured state and returns the revived value.
"""

PersistResult: 'TypeAlias' = 'Union[Reviver, Tuple[Reviver, Optional[Record[object, object]]]]'

class PersistHook(Protocol):
    """
    Called once per opaque value at pack time.
    Returns a reviver and its captured state, or a reviver alone when the state is empty.
    """
    def __call__(self, value: object) -> PersistResult:...

class IBytecodeService(Protocol):
    """
    Dump and load callables.

    The blob format is defined by the implementation, the marshaller stores it as is.
    Upvalue slots are numbered from 1.
    """
    def dump(self, func: Callable[..., object]) -> bytes:
        """
        :raises MarshalUnsupportedValue: If the callable has no introspectable bytecode.
        """
    def load(self, data: bytes) -> Callable[..., object]:
        """
        Create a fresh callable whose upvalues are all unbound.

        :raises ValueError: If the data can't be loaded.
        """
    def upvalues(self, func: Callable[..., object]) -> List[Tuple[int, object]]:
        """
        The bound upvalues as (slot, value) pairs.
        """
    def nupvalues(self, func: Callable[..., object]) -> int:...
    def set_upvalue(self, func: Callable[..., object], slot: int, value: object) -> None:...
