#
#  machpatch | machpatch
#  machpatch.py
#
#  Outward facing API
#
#  Most of these are thin wrappers, the point is to have a stable set of entrypoints scripts can rely on while the
#   internals move around.
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
import json
from typing import BinaryIO, Union

from machpatch.binary import Binary
from machpatch.parser import MachOFile, MachOParser, Slice
from machpatch.util import highlight_json
from libmach.log import log


def load_macho_file(fp: Union[BinaryIO, bytes, bytearray]) -> MachOFile:
    """
    This function takes a bare file (opened with 'rb') or raw bytes and loads it as a MachOFile.

    :param fp: BinaryIO object or the raw bytes of the file
    :return:
    """
    return MachOFile(fp)


def load_binary(fp: Union[BinaryIO, MachOFile, Slice, bytes, bytearray, str], slice_index=0) -> Binary:
    """
    Take a bare file, a path, raw bytes, a MachOFile or a Slice, and parse it into a Binary

    :param fp: Item to load
    :param slice_index: If a Slice is not being passed and the file is a FAT Mach-O, which slice should be loaded?
    :return: Parsed Binary
    :rtype: Binary
    """
    if isinstance(fp, Slice):
        macho_slice = fp
    else:
        if isinstance(fp, MachOFile):
            macho_file = fp
        elif isinstance(fp, str):
            with open(fp, 'rb') as f:
                macho_file = load_macho_file(f)
        else:
            macho_file = load_macho_file(fp)
        macho_slice = macho_file.slices[slice_index]

    log.debug(f'Parsing {macho_slice}')
    return MachOParser.parse(macho_slice)


def write_binary(binary: Binary, filename: str):
    """
    Rebuild `binary` and write it to `filename`

    :param binary:
    :param filename:
    """
    binary.write(filename)


def dump_binary(binary: Binary, color=True) -> str:
    """
    JSON description of a Binary

    :param binary:
    :param color: Syntax highlight the output (still subject to opts.DISABLE_COLOR)
    :return:
    """
    output = json.dumps(binary.serialize(), indent=4)
    return highlight_json(output) if color else output
