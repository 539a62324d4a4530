import numpy

from .records import Record
from .strategies import TypeRef

# Mapping of ANSI color codes to their respective escape sequences.
colors = {
    "normal"         : "\033[0m",
    "gray"           : "\033[1;38;5;240m",
    "red"            : "\033[31m",
    "green"          : "\033[32m",
    "yellow"         : "\033[33m",
    "blue"           : "\033[34m",
    "pink"           : "\033[35m",
    "cyan"           : "\033[36m",
    "bold"           : "\033[1m",
}

MAX_DEPTH = 3

# switched off by `skpickle --no-color` and when output is not a terminal
enabled = True


def disable_colors():
    global enabled
    enabled = False


def colorify(text: str, attrs: str) -> str:
    """Returns a string with the given text colored according to the specified attributes.

    Args:
        text (str): The text to color.
        attrs (str): A space-separated string of attributes to apply, e.g., "red bold".
    Returns:
        str: The colored text string, or the plain text when coloring is disabled.
    """
    if not enabled:
        return str(text)
    msg = [colors[attr] for attr in attrs.split() if attr in colors]
    msg.append(str(text))
    msg.append(colors["normal"])
    return "".join(msg)


### Color-specific functions for convenience ###
def redify(msg: str) -> str:        return colorify(msg, "red")

def greenify(msg: str) -> str:      return colorify(msg, "green")

def blueify(msg: str) -> str:       return colorify(msg, "blue")

def yellowify(msg: str) -> str:     return colorify(msg, "yellow")

def grayify(msg: str) -> str:       return colorify(msg, "gray")

def pinkify(msg: str) -> str:       return colorify(msg, "pink")

def cyanify(msg: str) -> str:       return colorify(msg, "cyan")

def boldify(msg: str) -> str:       return colorify(msg, "bold")


def color_by_type(element, strip_comma=False, depth=0) -> str:
    """Returns a one-line representation of a decoded value with color based on its type.

    The following types are linked to specific colors:
    - str or bytes: pink
    - int or float: cyan
    - None or bool: blue
    - records and type references: yellow
    - numpy arrays: green

    Containers are shown with their elements down to MAX_DEPTH levels, which
    also keeps self-referencing graphs finite; records and arrays are
    summarized instead of expanded.
    """
    if strip_comma:
        end = ''
    else:
        end = ', '

    if depth > MAX_DEPTH and isinstance(element, (dict, list, tuple, set, frozenset)):
        return grayify('...')+end

    if isinstance(element, (str, bytes, bytearray)):
        text = ascii(element)
        if len(text) > 60:
            text = text[:57] + '...'
        return pinkify(text)+end

    elif element is None or isinstance(element, bool):
        return blueify(ascii(element))+end

    elif isinstance(element, (int, float)):
        return cyanify(ascii(element))+end

    elif isinstance(element, dict):
        return colorize_dict(element, depth+1)+end

    elif isinstance(element, (list, tuple, set, frozenset)):
        return colorize_array(element, depth+1)+end

    elif isinstance(element, numpy.ndarray):
        return greenify(f'ndarray{element.shape} {element.dtype}')+end

    elif isinstance(element, (Record, TypeRef)):
        return yellowify(repr(element))+end

    else:
        return yellowify(ascii(element))+end


def colorize_array(arr, depth=0) -> str:
    """Returns a string representation of a list, tuple or set with colored elements."""
    if isinstance(arr, list):
        BEGIN = '['
        END = ']'
    elif isinstance(arr, tuple):
        BEGIN = '('
        END = ')'
    else:
        BEGIN = '{'
        END = '}'

    retval = BEGIN

    for element in arr:
        retval += color_by_type(element, depth=depth)

    # remove the last comma and space
    if retval != BEGIN:
        retval = retval[:-2]+END
    else:
        retval += END

    return retval


def colorize_dict(arr: dict, depth=0) -> str:
    """Returns a string representation of a dictionary with colored keys and values."""
    retval = '{'

    for key, value in arr.items():
        retval += color_by_type(key, strip_comma=True, depth=depth)+': '
        retval += color_by_type(value, depth=depth)

    if retval != '{':
        retval = retval[:-2]+'}'
    else:
        retval += '}'

    return retval


def header(hdr_name: str, terminal_width: int) -> str:
    """Returns a header with the given name, formatted for the terminal width.

    Args:
        hdr_name (str): The name of the header to print.
        terminal_width (int): The width of the terminal.
    Returns:
        str: The formatted header string.
    """
    header = grayify('─' * max(0, terminal_width-5-len(hdr_name))) +\
            cyanify(' '+hdr_name+' ') +\
            grayify('───')
    return header
