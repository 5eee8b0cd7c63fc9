import io
import struct
import sys
from unittest import TestCase

import pytest

from libmarshal import (Marshaller, Record, CodeService, marshal, unmarshal,
                        MarshalCorruptStream, MarshalException)
from libmarshal._lib.model import MAGIC, Tag, SubTag

from ._helpers import u32, number, string, composite, reference, stream, nested

OTHER_BYTEORDER = 'big' if sys.byteorder == 'little' else 'little'

class TestWireFormat(TestCase):

    def test_empty_root(self):
        assert marshal({}, byteorder='little') == b'\x8e\x01\x00\x00\x00\x00'
        assert marshal({}, byteorder='big') == b'\x8e\x00\x00\x00\x00\x00'

    def test_host_marker(self):
        data = marshal({})
        assert data[0] == MAGIC
        assert data[1] == (1 if sys.byteorder == 'little' else 0)

    def test_scalars(self):
        data = marshal([True, None, 'ab'], byteorder='little')
        body = (number(1) + bytes((Tag.BOOLEAN, 1)) +
                number(2) + bytes((Tag.NIL,)) +
                number(3) + string(b'ab'))
        assert data == stream(body)

    def test_big_endian_fields(self):
        data = marshal({'k': 0.5}, byteorder='big')
        body = string(b'k', 'big') + number(0.5, 'big')
        assert data == stream(body, 'big')

    def test_nested_and_reference(self):
        inner = Record()
        data = marshal({1: inner, 2: inner}, byteorder='little')
        body = (number(1) + composite(b'') +
                number(2) + reference(2))
        assert data == stream(body)

    def test_root_reference(self):
        root = Record()
        root['self'] = root
        data = marshal(root, byteorder='little')
        assert data == stream(string(b'self') + reference(1))

    def test_opaque_without_hook(self):
        data = marshal([object()], byteorder='little')
        assert data == stream(number(1) + bytes((Tag.OPAQUE, SubTag.VALUE)))

    def test_unsupported(self):
        data = marshal([(x for x in ())], byteorder='little')
        assert data == stream(number(1) + bytes((Tag.UNSUPPORTED,)))

    def test_callable_layout(self):
        up = 'captured'
        f = lambda: up
        data = marshal([f], byteorder='little')
        pos = 6 + len(number(1))
        assert data[pos:pos+2] == bytes((Tag.CALLABLE, SubTag.VALUE))
        n, = struct.unpack('<I', data[pos+2:pos+6])
        blob = data[pos+6:pos+6+n]
        assert CodeService().load(blob).__code__ is not f.__code__
        env = number(1) + string(b'captured')
        assert data[pos+6+n:] == u32(len(env)) + env


class TestEndianness(TestCase):

    def test_foreign_byteorder(self):
        value = {'pi': 3.141592653589793, 'list': [1, 2, 'three'], 'big': 2.0**40}
        data = marshal(value, byteorder=OTHER_BYTEORDER)
        assert data[1] == (1 if OTHER_BYTEORDER == 'little' else 0)
        t = unmarshal(data)
        assert t['pi'] == 3.141592653589793
        assert t['list'].sequence() == [1, 2, 'three']
        assert t['big'] == 2.0**40

    def test_single_scalar_payload(self):
        for byteorder in ('little', 'big'):
            data = stream(number(1, byteorder) + number(-2.5, byteorder), byteorder)
            assert unmarshal(data)[1] == -2.5

    def test_foreign_references(self):
        shared = Record({1: 'x'})
        t = unmarshal(marshal([shared, shared], byteorder=OTHER_BYTEORDER))
        assert t[1] is t[2]

    def test_mismatch_is_reported(self):
        out = io.StringIO()
        Marshaller(verbosity=1, outstream=out).unmarshal(marshal({}, byteorder=OTHER_BYTEORDER))
        assert f'written by a {OTHER_BYTEORDER}-endian host' in out.getvalue()


def _graph():
    c = Record({1: 'cycle'})
    c['this'] = c
    up = 42
    return {'answer': 42, 'here': c, 'again': c, 'f': lambda: up,
            'list': [1.5, True, None, 'str'], 'gen': (x for x in ())}

class TestCorruptStream(TestCase):

    def assertCorrupt(self, data, msg=None):
        with pytest.raises(MarshalCorruptStream) as e:
            unmarshal(data)
        if msg:
            assert msg in str(e.value), str(e.value)
        return e.value

    def test_truncation(self):
        data = marshal(_graph())
        assert unmarshal(data)['answer'] == 42
        for n in range(1, len(data) + 1):
            self.assertCorrupt(data[:-n])

    def test_truncated_nested_range(self):
        body = number(1) + composite(number(1) + number(2))
        data = stream(body)
        broken = data[:-1]
        # keep the root length consistent, the nested length overflows
        broken = broken[:2] + u32(len(body) - 1) + broken[6:]
        self.assertCorrupt(broken, 'overflows its enclosing range')

    def test_trailing_bytes(self):
        self.assertCorrupt(marshal({}) + b'\x00', 'trailing bytes')

    def test_bad_header(self):
        self.assertCorrupt(b'', 'bad header')
        self.assertCorrupt(b'\x8e', 'bad header')
        self.assertCorrupt(b'\x00\x01' + u32(0), 'bad magic')
        self.assertCorrupt(b'\x8e\x07' + u32(0), 'bad endianness marker')

    def test_bad_tags(self):
        self.assertCorrupt(stream(number(1) + bytes((2,))), 'bad type tag 2')
        self.assertCorrupt(stream(number(1) + bytes((42,))), 'bad type tag 42')
        self.assertCorrupt(stream(number(1) + bytes((Tag.COMPOSITE, 9))), 'bad sub tag 9')
        self.assertCorrupt(stream(number(1) + bytes((Tag.CALLABLE, SubTag.OPAQUE))), 'for a callable')

    def test_unknown_reference(self):
        self.assertCorrupt(stream(number(1) + reference(7)), 'unknown reference 7')
        self.assertCorrupt(stream(number(1) + reference(0)), 'unknown reference 0')
        self.assertCorrupt(stream(number(1) + reference(2, Tag.CALLABLE)), 'unknown reference 2')
        self.assertCorrupt(stream(number(1) + reference(2, Tag.OPAQUE)), 'unknown reference 2')

    def test_key_without_value(self):
        self.assertCorrupt(stream(number(1)), 'key without value')
        self.assertCorrupt(stream(number(1) + composite(number(1))), 'key without value')

    def test_bad_callable_blob(self):
        blob = b'\xff\xff'
        body = number(1) + bytes((Tag.CALLABLE, SubTag.VALUE)) + u32(len(blob)) + blob + u32(0)
        self.assertCorrupt(stream(body), 'cannot load callable')
        import marshal as stdlib_marshal
        blob = stdlib_marshal.dumps(1)
        body = number(1) + bytes((Tag.CALLABLE, SubTag.VALUE)) + u32(len(blob)) + blob + u32(0)
        self.assertCorrupt(stream(body), 'bad function blob')

    def test_bad_upvalue_slot(self):
        up = 1
        blob = CodeService().dump(lambda: up)
        for slot in (0, 2, 1.5):
            env = number(slot) + number(3)
            body = (number(1) + bytes((Tag.CALLABLE, SubTag.VALUE)) +
                    u32(len(blob)) + blob + u32(len(env)) + env)
            self.assertCorrupt(stream(body), 'bad upvalue slot')

    def test_persisted_without_reviver(self):
        wrapper = number(1) + string(b'not a function')
        payload = u32(len(wrapper)) + wrapper + bytes((Tag.NIL,))
        body = number(1) + bytes((Tag.OPAQUE, SubTag.OPAQUE)) + u32(len(payload)) + payload
        self.assertCorrupt(stream(body), 'has no reviver')

    def test_error_location(self):
        e = self.assertCorrupt(stream(number(1) + reference(7)))
        assert isinstance(e, MarshalException)
        assert e.offset == 6 + 9 + 2
        assert str(e) == 'offset 17: Corrupt stream, unknown reference 7'

    def test_deeply_nested_stream(self):
        t = unmarshal(stream(nested(number(1) + string(b'bottom'), 10000)))
        depth = 0
        while isinstance(t[1], Record):
            t = t[1]
            depth += 1
        assert depth == 10000
        assert t[1] == 'bottom'

    def test_deeply_nested_corruption(self):
        self.assertCorrupt(stream(nested(number(1) + reference(99999), 10000)),
                           'unknown reference 99999')
        self.assertCorrupt(stream(nested(number(1), 10000)), 'key without value')

    def test_reference_to_value_being_revived(self):
        blob = CodeService().dump(_revive_state)
        reviver = bytes((Tag.CALLABLE, SubTag.VALUE)) + u32(len(blob)) + blob + u32(0)
        wrapper = number(1) + reviver
        payload = u32(len(wrapper)) + wrapper + reference(2, Tag.OPAQUE)
        body = number(1) + bytes((Tag.OPAQUE, SubTag.OPAQUE)) + u32(len(payload)) + payload
        self.assertCorrupt(stream(body), 'reference 2 names a value that is still being revived')


def _revive_state(state):
    return state
