#
#  machpatch | machpatch
#  util.py
#
#  This file contains miscellaneous utilities used around machpatch
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
import sys
import re

from pygments import highlight
from pygments.formatters.terminal import TerminalFormatter
from pygments.lexers.data import JsonLexer

from machpatch.exceptions import MalformedMachOException
from libmach.log import log, LogLevel, print_err

MACHPATCH_VERSION = '0.1.0'

ansi_escape = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')


class ignore:
    MALFORMED = False


class opts:
    DISABLE_COLOR = False


def highlight_json(input):
    if opts.DISABLE_COLOR:
        return input
    formatter = TerminalFormatter()
    return highlight(input, JsonLexer(), formatter)


def macho_is_malformed(msg=""):
    """Raise MalformedMachOException *if* we dont want to ignore bad mach-os

    :return:
    """
    if not ignore.MALFORMED:
        raise MalformedMachOException(msg)
    log.warn(f'Ignoring malformed image: {msg}')


def align_up(value: int, alignment: int) -> int:
    if alignment <= 1:
        return value
    return (value + alignment - 1) & ~(alignment - 1)


def strip_ansi(msg):
    return ansi_escape.sub('', msg)


def machpatch_print(msg, file=None):
    file = file or sys.stdout
    if file.isatty():
        print(msg, file=file)
    else:
        print(strip_ansi(msg), file=file)
