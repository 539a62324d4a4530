#!/usr/bin/env python3

###############################################################################
#
# skpickle - inspect a pickled scikit-learn / joblib model without loading it
#
# The file is decoded with the skpickle interpreter, so none of the classes it
# names need to be installed and none of their code runs. The decoded object
# graph is printed with the same color scheme the interpreter state is shown
# in when stepping through the opcodes with --trace.
#
###############################################################################


### GLOBAL IMPORTS ###
import argparse
import logging
import sys
from shutil import get_terminal_size


### LOCAL IMPORTS ###
from . import decode, open_storage
from .colors import *
from .errors import DecodeError, UnknownType
from .records import Record


### FUNCTIONS ###
def print_state(name: str, offset: int, unpickler):
    """Prints the Pickle Machine state after one opcode.

    Used as the unpickler's trace callback: shows the opcode that was just
    executed with its stream offset, then the stack, the metastack (when a
    MARK frame is open) and the memo.
    """
    terminal_width = get_terminal_size()[0]
    print(header(f'{offset:>8}: {name}', terminal_width))
    print(blueify("stack     ")+": ", colorize_array(unpickler.stack))
    if unpickler.metastack != []:
        print(blueify("metastack ")+": ", colorize_array(unpickler.metastack))
    print(blueify("memo      ")+": ", colorize_dict(unpickler.memo))


def print_record(record: Record, depth: int, indent: int = 0):
    pad = '  ' * indent
    print(pad + yellowify(record.target) + grayify(f'  ({record.module}.{record.name})'))
    if record.args:
        print(pad + '  ' + blueify('args') + ': ' + colorize_array(record.args))
    for key, value in record.items():
        if isinstance(value, Record) and indent + 1 < depth:
            print(pad + '  ' + blueify(str(key)) + ':')
            print_record(value, depth, indent + 2)
        else:
            print(pad + '  ' + blueify(str(key)) + ': ' + color_by_type(value, strip_comma=True))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='skpickle', description="Decode a pickled model without importing its classes and print it.")
    parser.add_argument('picklefile', help='pickle or joblib file, optionally compressed')
    parser.add_argument('--trace', action='store_true',
                        help='print the stack and memo after every opcode')
    parser.add_argument('--depth', type=int, default=2,
                        help='how many levels of nested records to expand (default: 2)')
    parser.add_argument('--encoding', default='ASCII',
                        help="encoding of Python 2 8-bit strings, or 'bytes' (default: ASCII)")
    parser.add_argument('--no-color', action='store_true', help='disable ANSI colors')
    parser.add_argument('-v', '--verbose', action='store_true', help='log debug messages')
    return parser


### MAIN ###
def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')
    if args.no_color or not sys.stdout.isatty():
        disable_colors()

    try:
        storage = open_storage(args.picklefile)
        final_value = decode(storage, encoding=args.encoding,
                             trace=print_state if args.trace else None)
    except UnknownType as e:
        print(redify(f"[-] {e}"))
        print(redify(f"[-] '{e.module}.{e.name}' is not in the type registry"))
        return 1
    except DecodeError as e:
        print(redify(f"[-] Error: could not decode '{args.picklefile}': {e}"))
        return 1

    print(greenify("[+] Decoding complete. Final value: ") + color_by_type(final_value, strip_comma=True))
    if isinstance(final_value, Record) and args.depth > 0:
        print_record(final_value, args.depth)
    return 0


if __name__ == "__main__":
    sys.exit(main())
