"""
Default bytecode service, based on python code objects.
"""
from __future__ import annotations

import builtins
import marshal
import sys
import types
from typing import Any, Callable, Dict, List, Optional, Tuple

from .exceptions import MarshalUnsupportedValue

class CodeService:
    """
    Dumps python functions as their marshaled code object along with
    the module, name and qualname of the function.

    Free variables of the function are its upvalues, in ``co_freevars`` order.
    Default argument values are not part of the blob.

    When loading, the globals of the new function are the ones of its module if it's
    already imported, otherwise the fallback globals given at construction time.
    """

    def __init__(self, globals:Optional[Dict[str, Any]]=None) -> None:
        if globals is None:
            globals = {'__builtins__': builtins}
        self.globals = globals

    def dump(self, func:Callable[..., object]) -> bytes:
        if not isinstance(func, types.FunctionType):
            name = getattr(func, '__qualname__', None) or type(func).__name__
            raise MarshalUnsupportedValue(func, f'callable {name!r}: no introspectable bytecode')
        return marshal.dumps((func.__module__, func.__name__,
                              func.__qualname__, func.__code__))

    def _globals_for(self, modname:object) -> Dict[str, Any]:
        mod = sys.modules.get(modname) if isinstance(modname, str) else None
        if mod is None:
            return self.globals
        return mod.__dict__

    def load(self, data:bytes) -> Callable[..., object]:
        try:
            spec = marshal.loads(data)
        except (EOFError, ValueError, TypeError) as e:
            raise ValueError(f'bad function blob: {e}') from e
        if not (isinstance(spec, tuple) and len(spec) == 4
                and isinstance(spec[3], types.CodeType)):
            raise ValueError('bad function blob')
        modname, name, qualname, code = spec
        closure = tuple(types.CellType() for _ in code.co_freevars)
        func = types.FunctionType(code, self._globals_for(modname),
                                  str(name), None, closure or None)
        func.__qualname__ = str(qualname)
        return func

    def upvalues(self, func:Callable[..., object]) -> List[Tuple[int, object]]:
        r: List[Tuple[int, object]] = []
        for i, cell in enumerate(getattr(func, '__closure__', None) or (), start=1):
            try:
                r.append((i, cell.cell_contents))
            except ValueError:
                # unbound
                continue
        return r

    def nupvalues(self, func:Callable[..., object]) -> int:
        return len(getattr(func, '__closure__', None) or ())

    def set_upvalue(self, func:Callable[..., object], slot:int, value:object) -> None:
        closure = getattr(func, '__closure__')
        closure[slot-1].cell_contents = value
