"""
High-level objects.
"""
from __future__ import annotations

import sys
import time
from typing import Any, Optional, TextIO

import attr as attrs

from .._lib.buffer import GrowableBuffer
from .._lib.bytecode import CodeService
from .._lib.decoder import Decoder
from .._lib.encoder import Encoder
from .._lib.envelope import HEADER_SIZE, read_header, write_header
from .._lib.hooks import HookRegistry, registry
from .._lib.interfaces import IBytecodeService
from .._lib.reftable import PackRefTable, UnpackRefTable
from .._lib.structures import Record


@attrs.s(auto_attribs=True, frozen=True, kw_only=True)
class Options:
    byteorder: str = attrs.ib(default=sys.byteorder,
                              validator=attrs.validators.in_(('little', 'big')))
    encoding: Optional[str] = 'utf-8'
    hooks: HookRegistry = registry
    bytecode: IBytecodeService = attrs.Factory(CodeService)
    outstream: TextIO = sys.stdout
    verbosity: int = 0


class Marshaller:
    """
    A marshaller packs value graphs into byte strings and back, according to its `Options`.

    >>> m = Marshaller()
    >>> shared = {'x': 1}
    >>> t = m.clone({'a': shared, 'b': shared})
    >>> t['a'] is t['b']
    True

    Each call uses its own reference table, so a marshaller can be re-used, but not
    concurrently for the same graph.
    """

    def __init__(self, **kw: Any) -> None:
        """
        Create a new marshaller.

        :param kw: All parameters are passed to `Options` constructor.
        """
        self.options = Options(**kw)

    def marshal(self, value: object) -> bytes:
        """
        Serialize the root composite to a byte string.

        :raises MarshalException: If the graph can't be packed.
        """
        t0 = time.time()
        opts = self.options
        buf = GrowableBuffer()
        write_header(buf, opts.byteorder)
        encoder = Encoder(buf, PackRefTable(),
                          byteorder=opts.byteorder,
                          encoding=opts.encoding,
                          hooks=opts.hooks,
                          bytecode=opts.bytecode,
                          msg=self.msg)
        encoder.pack_root(value)
        t1 = time.time()
        self.msg(f"packing {len(encoder.refs)} objects in {len(buf)} bytes took {t1-t0} seconds", thresh=2)
        return buf.getvalue()

    def unmarshal(self, data: 'bytes|bytearray|memoryview') -> Record[object, object]:
        """
        Deserialize a byte string created by `marshal`.

        :raises MarshalCorruptStream: If the data is not a valid stream.
        """
        t0 = time.time()
        opts = self.options
        byteorder = read_header(data)
        if byteorder != sys.byteorder:
            self.msg(f"stream was written by a {byteorder}-endian host, "
                     f"decoding its fields as {byteorder}-endian", ctx=1, thresh=1)
        decoder = Decoder(data, UnpackRefTable(),
                          byteorder=byteorder,
                          encoding=opts.encoding,
                          bytecode=opts.bytecode,
                          msg=self.msg,
                          pos=HEADER_SIZE)
        root = decoder.unpack_root()
        t1 = time.time()
        self.msg(f"unpacking {len(decoder.refs)} objects from {len(data)} bytes took {t1-t0} seconds", thresh=2)
        return root

    def clone(self, value: object) -> Record[object, object]:
        """
        Deep copy of the root composite, as ``unmarshal(marshal(value))``.
        """
        return self.unmarshal(self.marshal(value))

    def msg(self, msg: str, ctx: object = None, thresh: int = 0) -> None:
        """
        Log a message about this stream offset.
        """
        if self.options.verbosity < thresh:
            return
        context = ""
        if isinstance(ctx, int):
            context = f"offset {ctx}: "
        print(f"{context}{msg}", file=self.options.outstream)


def marshal(value: object, **kw: Any) -> bytes:
    """
    Serialize a record, dict, list or tuple to a byte string.

    :param kw: Passed to `Options` constructor.
    """
    return Marshaller(**kw).marshal(value)

def unmarshal(data: 'bytes|bytearray|memoryview', **kw: Any) -> Record[object, object]:
    """
    Deserialize a byte string created by `marshal`.

    :param kw: Passed to `Options` constructor.
    """
    return Marshaller(**kw).unmarshal(data)

def clone(value: object, **kw: Any) -> Record[object, object]:
    """
    Deep copy a record, dict, list or tuple, preserving aliasing and cycles.

    :param kw: Passed to `Options` constructor.
    """
    return Marshaller(**kw).clone(value)
