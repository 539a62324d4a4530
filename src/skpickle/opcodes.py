"""Opcode tags of the pickle protocol, protocols 0 through 5.

Each tag is a single byte, followed by an argument whose layout the
protocol fixes per opcode.
"""

HIGHEST_PROTOCOL = 5

MARK             = b'('
STOP             = b'.'
POP              = b'0'
POP_MARK         = b'1'
DUP              = b'2'
FLOAT            = b'F'
INT              = b'I'
BININT           = b'J'
BININT1          = b'K'
LONG             = b'L'
BININT2          = b'M'
NONE             = b'N'
PERSID           = b'P'
BINPERSID        = b'Q'
REDUCE           = b'R'
STRING           = b'S'
BINSTRING        = b'T'
SHORT_BINSTRING  = b'U'
UNICODE          = b'V'
BINUNICODE       = b'X'
APPEND           = b'a'
BUILD            = b'b'
GLOBAL           = b'c'
DICT             = b'd'
EMPTY_DICT       = b'}'
APPENDS          = b'e'
GET              = b'g'
BINGET           = b'h'
INST             = b'i'
LONG_BINGET      = b'j'
LIST             = b'l'
EMPTY_LIST       = b']'
OBJ              = b'o'
PUT              = b'p'
BINPUT           = b'q'
LONG_BINPUT      = b'r'
SETITEM          = b's'
TUPLE            = b't'
EMPTY_TUPLE      = b')'
SETITEMS         = b'u'
BINFLOAT         = b'G'

# protocol 2
PROTO            = b'\x80'
NEWOBJ           = b'\x81'
EXT1             = b'\x82'
EXT2             = b'\x83'
EXT4             = b'\x84'
TUPLE1           = b'\x85'
TUPLE2           = b'\x86'
TUPLE3           = b'\x87'
NEWTRUE          = b'\x88'
NEWFALSE         = b'\x89'
LONG1            = b'\x8a'
LONG4            = b'\x8b'

# protocol 3
BINBYTES         = b'B'
SHORT_BINBYTES   = b'C'

# protocol 4
SHORT_BINUNICODE = b'\x8c'
BINUNICODE8      = b'\x8d'
BINBYTES8        = b'\x8e'
EMPTY_SET        = b'\x8f'
ADDITEMS         = b'\x90'
FROZENSET        = b'\x91'
NEWOBJ_EX        = b'\x92'
STACK_GLOBAL     = b'\x93'
MEMOIZE          = b'\x94'
FRAME            = b'\x95'

# protocol 5
BYTEARRAY8       = b'\x96'
NEXT_BUFFER      = b'\x97'
READONLY_BUFFER  = b'\x98'

# INT arguments used by protocol 0/1 for booleans
TRUE             = b'I01\n'
FALSE            = b'I00\n'


def _collect_names() -> dict[int, str]:
    names = {}
    for name, value in globals().items():
        if name.isupper() and isinstance(value, bytes) and len(value) == 1:
            names[value[0]] = name
    return names


# Tag byte -> opcode name, for diagnostics and tracing.
NAMES = _collect_names()


def opcode_name(code: int) -> str:
    return NAMES.get(code, f'<unknown 0x{code:02x}>')
