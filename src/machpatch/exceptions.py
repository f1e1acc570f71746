#
#  machpatch | machpatch
#  exceptions.py
#
#  Custom Exceptions for internal (and external) usage
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#


class MalformedMachOException(Exception):
    """
    Raised by the parser when a structure runs past the end of the file or is otherwise unreadable
    """


class UnsupportedFiletypeException(Exception):
    """
    Raised by the parser when the magic isn't a thin or FAT Mach-O magic
    """


class NotFoundError(Exception):
    """
    An address, offset, named segment, or required load command could not be located
    """


class ConversionError(Exception):
    """
    A virtual address could not be translated to a file offset
    """


class InvalidArgumentError(Exception):
    """
    A patch request was rejected before anything was written
    """


class BuildError(Exception):
    """
    The object graph can't be laid out into a valid file
    """
