#
#  machpatch | libmach
#  log.py
#
#
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#

from enum import Enum
import sys
import inspect
import os

from libmach.structs import Struct


class LogLevel(Enum):
    NONE = -1
    ERROR = 0
    WARN = 1
    INFO = 2
    DEBUG = 3
    # every struct read and every byte written. pipe it to a file.
    DEBUG_TOO_MUCH = 4


def print_err(msg):
    print(msg, file=sys.stderr)


class log:
    """
    Level-gated logger with swappable output functions.

    LOG_FUNC/LOG_ERR can be replaced to redirect output, which is how the test-suite captures errors.
    """

    LOG_LEVEL = LogLevel.ERROR
    LOG_FUNC = print
    LOG_ERR = print_err

    @staticmethod
    def get_class_from_frame(fr):
        fr: inspect.FrameInfo = fr
        if 'self' in fr.frame.f_locals:
            return type(fr.frame.f_locals["self"]).__name__
        elif 'cls' in fr.frame.f_locals:
            return fr.frame.f_locals['cls'].__name__

        return None

    @staticmethod
    def line():
        stack_frame = inspect.stack()[3]
        filename = os.path.basename(stack_frame[1]).split('.')[0]
        line_name = f'L#{stack_frame[2]}'
        cn = log.get_class_from_frame(stack_frame)
        call_from = cn + ':' if cn is not None else ""
        call_from += stack_frame[3]
        return 'machpatch.' + filename + ":" + line_name + ":" + call_from + '()'

    @staticmethod
    def _emit(level: LogLevel, tag: str, msg, func):
        if log.LOG_LEVEL.value >= level.value:
            if issubclass(msg.__class__, Struct):
                msg = str(msg)
            func(f'{tag} - {log.line()} - {msg}')

    @staticmethod
    def debug(msg=""):
        log._emit(LogLevel.DEBUG, 'DEBUG', msg, log.LOG_FUNC)

    @staticmethod
    def debug_tm(msg=""):
        log._emit(LogLevel.DEBUG_TOO_MUCH, 'DEBUG-2', msg, log.LOG_FUNC)

    @staticmethod
    def info(msg=""):
        log._emit(LogLevel.INFO, 'INFO', msg, log.LOG_FUNC)

    @staticmethod
    def warn(msg=""):
        log._emit(LogLevel.WARN, 'WARN', msg, log.LOG_ERR)

    @staticmethod
    def error(msg=""):
        log._emit(LogLevel.ERROR, 'ERROR', msg, log.LOG_ERR)
