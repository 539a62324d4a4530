"""Tests for the pickle virtual machine: opcodes, stack discipline, memo, errors."""

import collections
import io
import pickle

import pytest

import skpickle
from skpickle import (MalformedLiteral, Record, StackProtocolViolation,
                      TruncatedStream, Unpickler, UnknownType, UnsupportedOpcode)
from picklecomp import *
from picklecomp import _int


PLAIN_DATA = {
    'ints': [0, 1, -1, 255, 256, 65535, 65536, -2 ** 31, 2 ** 31, 2 ** 70, -2 ** 70],
    'floats': (0.0, -1.5, 1e300),
    'text': 'plain',
    'unicode': 'ünïcödé ✓',
    'flags': [True, False, None],
    'nested': {'a': [1, [2, (3, 4)]], (1, 2): 'tuple key'},
    'empty': ([], (), {}),
    'set': {1, 2, 3},
    'frozen': frozenset({'x', 'y'}),
    'bytes': b'\x00\x01\xff',
    'empty_bytes': b'',
}


def _decode(data: bytes, **options):
    return Unpickler(io.BytesIO(data), **options).load()


class TestPlainData:
    """Streams written by the standard library pickler decode to equal values."""

    @pytest.mark.parametrize('protocol', range(0, pickle.HIGHEST_PROTOCOL + 1))
    def test_matches_stdlib(self, protocol):
        data = pickle.dumps(PLAIN_DATA, protocol=protocol)
        assert skpickle.loads(data) == PLAIN_DATA

    @pytest.mark.parametrize('protocol', [2, 4, 5])
    def test_ordered_dict(self, protocol):
        value = collections.OrderedDict([('b', 1), ('a', 2)])
        result = skpickle.loads(pickle.dumps(value, protocol=protocol))
        assert isinstance(result, collections.OrderedDict)
        assert list(result.items()) == [('b', 1), ('a', 2)]

    def test_bytearray(self):
        assert skpickle.loads(pickle.dumps(bytearray(b'abc'), protocol=5)) == bytearray(b'abc')

    def test_large_framed_stream(self):
        value = [str(i) * 10 for i in range(20000)]
        data = pickle.dumps(value, protocol=4)
        assert FRAME in data
        assert skpickle.loads(data) == value

    def test_hand_built_frame(self):
        payload = assemble(binint1(7), STOP)
        assert _decode(assemble(proto(4), frame(payload))) == 7


class TestComposites:

    def test_mark_list(self):
        data = assemble(proto(2), MARK, binint1(1), binint1(2), binint1(3), LIST, STOP)
        assert _decode(data) == [1, 2, 3]

    def test_protocol_0_bools(self):
        assert _decode(assemble(_int(True), STOP)) is True
        assert _decode(assemble(_int(False), STOP)) is False

    def test_long_forms(self):
        assert _decode(assemble(long(-12345678901234567890), STOP)) == -12345678901234567890
        assert _decode(assemble(long1(2 ** 64), STOP)) == 2 ** 64
        assert _decode(assemble(long4(-2 ** 100), STOP)) == -2 ** 100
        assert _decode(assemble(long1(0), STOP)) == 0

    def test_dict_setitems(self):
        data = assemble(proto(2), EMPTY_DICT, MARK,
                        short_binunicode('a'), binint1(1),
                        short_binunicode('b'), binfloat(2.5),
                        SETITEMS, STOP)
        assert _decode(data) == {'a': 1, 'b': 2.5}

    def test_unhashable_key(self):
        data = assemble(proto(2), EMPTY_DICT, EMPTY_LIST, binint1(1), SETITEM, STOP)
        with pytest.raises(MalformedLiteral):
            _decode(data)


class TestMemo:

    def test_shared_reference_keeps_identity(self):
        shared = [1, 2]
        result = skpickle.loads(pickle.dumps([shared, shared], protocol=2))
        assert result[0] is result[1]

    def test_self_referential_list(self):
        data = assemble(proto(2), EMPTY_LIST, binput(0), binget(0), APPEND, STOP)
        result = _decode(data)
        assert result[0] is result

    def test_self_referential_list_stdlib(self):
        value = []
        value.append(value)
        result = skpickle.loads(pickle.dumps(value, protocol=4))
        assert result[0] is result

    def test_self_referential_record(self):
        data = assemble(
            proto(2),
            newobj('sklearn.pipeline', 'Pipeline'), binput(0),
            EMPTY_DICT, short_binunicode('parent'), binget(0), SETITEM,
            BUILD,
            STOP,
        )
        result = _decode(data)
        assert isinstance(result, Record)
        assert result['parent'] is result

    def test_long_memo_indices(self):
        data = assemble(proto(2), binunicode('x'), long_binput(70000), POP,
                        long_binget(70000), STOP)
        assert _decode(data) == 'x'

    def test_missing_memo_slot(self):
        with pytest.raises(StackProtocolViolation):
            _decode(assemble(proto(2), binget(3), STOP))


class TestStackDiscipline:

    def test_two_values_at_stop(self):
        with pytest.raises(StackProtocolViolation):
            _decode(assemble(proto(2), binint1(1), binint1(2), STOP))

    def test_empty_stack_at_stop(self):
        with pytest.raises(StackProtocolViolation):
            _decode(assemble(proto(2), STOP))

    def test_unclosed_mark_at_stop(self):
        with pytest.raises(StackProtocolViolation):
            _decode(assemble(proto(2), binint1(1), MARK, STOP))

    def test_underflow(self):
        with pytest.raises(StackProtocolViolation, match='underflow'):
            _decode(assemble(proto(2), binint1(1), TUPLE2, STOP))

    def test_unmatched_mark(self):
        with pytest.raises(StackProtocolViolation, match='MARK'):
            _decode(assemble(proto(2), binint1(1), LIST, STOP))

    def test_append_to_non_list(self):
        with pytest.raises(StackProtocolViolation):
            _decode(assemble(proto(2), binint1(1), binint1(2), APPEND, STOP))

    def test_build_on_non_record(self):
        with pytest.raises(StackProtocolViolation):
            _decode(assemble(proto(2), EMPTY_LIST, EMPTY_DICT, BUILD, STOP))


class TestErrors:

    def test_unknown_opcode_offset(self):
        with pytest.raises(UnsupportedOpcode) as excinfo:
            _decode(assemble(proto(2), binint1(1), b'\xff', STOP))
        assert excinfo.value.code == 0xff
        assert excinfo.value.offset == 4

    @pytest.mark.parametrize('opcode', [PERSID, BINPERSID, EXT1, EXT2, EXT4, NEXT_BUFFER])
    def test_rejected_opcodes(self, opcode):
        with pytest.raises(UnsupportedOpcode) as excinfo:
            _decode(assemble(proto(5), binint1(0), opcode, STOP))
        assert excinfo.value.code == opcode[0]
        assert excinfo.value.offset == 4

    def test_missing_stop(self):
        with pytest.raises(TruncatedStream) as excinfo:
            _decode(assemble(proto(2), binint1(1)))
        assert excinfo.value.offset == 4

    def test_truncated_argument(self):
        with pytest.raises(TruncatedStream):
            _decode(assemble(proto(2), binint(100000)[:3]))

    def test_truncated_is_malformed(self):
        with pytest.raises(MalformedLiteral):
            _decode(assemble(proto(2), binunicode('abcdef')[:-2]))

    def test_bad_int_literal(self):
        with pytest.raises(MalformedLiteral) as excinfo:
            _decode(assemble(INT, b'12x\n', STOP))
        assert excinfo.value.offset == 0

    def test_bad_protocol(self):
        with pytest.raises(MalformedLiteral):
            _decode(assemble(proto(9), NONE, STOP))

    def test_offset_in_message(self):
        with pytest.raises(UnsupportedOpcode, match='offset 2'):
            _decode(assemble(proto(2), b'\xfe'))

    def test_unknown_type_is_never_imported(self):
        data = assemble(proto(2), global_('os', 'system'), short_binunicode('echo'),
                        TUPLE1, REDUCE, STOP)
        with pytest.raises(UnknownType) as excinfo:
            _decode(data)
        assert excinfo.value.key == ('os', 'system')
        assert excinfo.value.offset == 2

    def test_stack_global_requires_str(self):
        with pytest.raises(StackProtocolViolation):
            _decode(assemble(proto(4), binint1(1), binint1(2), STACK_GLOBAL, STOP))


class TestStrings:
    """Python 2 8-bit strings follow the encoding and errors options."""

    def test_default_ascii(self):
        assert _decode(assemble(short_binstring('abc'), STOP)) == 'abc'

    def test_keep_bytes(self):
        assert _decode(assemble(string('abc'), STOP), encoding='bytes') == b'abc'

    def test_latin1(self):
        data = assemble(SHORT_BINSTRING, b'\x01\xe9', STOP)
        assert _decode(data, encoding='latin-1') == 'é'

    def test_undecodable(self):
        with pytest.raises(MalformedLiteral):
            _decode(assemble(SHORT_BINSTRING, b'\x01\xe9', STOP))

    def test_errors_option(self):
        data = assemble(SHORT_BINSTRING, b'\x01\xe9', STOP)
        assert _decode(data, errors='replace') == '�'

    def test_unquoted_string(self):
        with pytest.raises(MalformedLiteral):
            _decode(assemble(STRING, b'abc\n', STOP))


class TestTrace:

    def test_called_for_every_opcode_but_stop(self):
        calls = []
        data = assemble(proto(2), MARK, binint1(1), LIST, STOP)
        _decode(data, trace=lambda name, offset, unpickler: calls.append((name, offset)))
        assert calls == [('PROTO', 0), ('MARK', 2), ('BININT1', 3), ('LIST', 5)]

    def test_sees_machine_state(self):
        depths = []
        data = assemble(proto(2), binint1(1), binint1(2), TUPLE2, STOP)
        _decode(data, trace=lambda name, offset, unpickler: depths.append(len(unpickler.stack)))
        assert depths == [0, 1, 2, 1]
