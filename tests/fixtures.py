#
#  machpatch | tests
#  fixtures.py
#
#  Synthetic Mach-O images for the test-suite, assembled field by field, plus the error capture helpers.
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
import os
import struct
import sys
from io import BytesIO

scriptdir = os.path.dirname(os.path.realpath(__file__))
sys.path.extend([f'{scriptdir}/../src'])

from libmach.log import log, LogLevel, print_err

log.LOG_LEVEL = LogLevel.WARN

error_buffer = ""

TEXT_VMADDR = 0x100000000
TEXT_VMSIZE = 0x2000
TEXT_FILESIZE = 0x1000
TEXT_SECT_ADDR = 0x100000F00
TEXT_SECT_OFFSET = 0xF00
TEXT_SECT_SIZE = 0x40
LINKEDIT_VMADDR = 0x100002000
LINKEDIT_VMSIZE = 0x1000
LINKEDIT_FILEOFF = 0x1000
LINKEDIT_FILESIZE = 0x100
SYMOFF = 0x1000
STROFF = 0x1030
STRSIZE = 0x40
ENTRYOFF = 0xF00
FILE_SIZE = 0x1100
HEADER_FLAGS = 0x200085
SIZEOFCMDS = 432
NCMDS = 7

DYLD_PATH = '/usr/lib/dyld'
LIBSYSTEM_PATH = '/usr/lib/libSystem.B.dylib'

# __text is filled with 00 01 02 ... 3f
TEXT_CONTENT = bytes(range(TEXT_SECT_SIZE))

SYMBOLS = [
    # name, n_type, n_sect, n_desc, n_value
    ('__mh_execute_header', 0x0F, 1, 0x10, TEXT_VMADDR),
    ('_main', 0x0F, 1, 0, TEXT_SECT_ADDR),
    ('_printf', 0x01, 0, 0x100, 0),
]

# 32 bit images are laid out like the 64 bit one, only based lower
TEXT_VMADDR_32 = 0x4000
TEXT_SECT_ADDR_32 = TEXT_VMADDR_32 + TEXT_SECT_OFFSET


def _pad(data: bytes, size: int) -> bytes:
    return data + b'\x00' * (size - len(data))


def _align(value: int, alignment: int) -> int:
    return (value + alignment - 1) // alignment * alignment


def _base(bits: int) -> int:
    return TEXT_VMADDR if bits == 64 else TEXT_VMADDR_32


def symbols_for(bits=64):
    rebase = _base(bits) - TEXT_VMADDR
    return [(name, n_type, n_sect, n_desc, value + rebase if value else 0)
            for name, n_type, n_sect, n_desc, value in SYMBOLS]


def _segment(name, vmaddr, vmsize, fileoff, filesize, maxprot, initprot, sections=(), bits=64, endian='<'):
    if bits == 64:
        cmd, word, seg_size, sect_size, sect_tail = 0x19, 'Q', 72, 80, 'IIIIIIII'
    else:
        cmd, word, seg_size, sect_size, sect_tail = 0x1, 'I', 56, 68, 'IIIIIII'
    cmdsize = seg_size + sect_size * len(sections)
    data = struct.pack(f'{endian}II16s{word * 4}IIII', cmd, cmdsize, name.encode(), vmaddr, vmsize, fileoff,
                       filesize, maxprot, initprot, len(sections), 0)
    for sectname, segname, addr, size, offset, align in sections:
        fields = [offset, align, 0, 0, 0x80000400, 0, 0] + ([0] if bits == 64 else [])
        data += struct.pack(f'{endian}16s16s{word * 2}{sect_tail}', sectname.encode(), segname.encode(), addr, size,
                            *fields)
    return data


def _string_command(fixed: bytes, name: str, bits=64) -> bytes:
    data = fixed + name.encode() + b'\x00'
    return _pad(data, _align(len(data), 8 if bits == 64 else 4))


def build_commands(bits=64, endian='<') -> bytes:
    base = _base(bits)
    commands = b''
    commands += _segment('__PAGEZERO', 0, base, 0, 0, 0, 0, bits=bits, endian=endian)
    commands += _segment('__TEXT', base, TEXT_VMSIZE, 0, TEXT_FILESIZE, 5, 5,
                         [('__text', '__TEXT', base + TEXT_SECT_OFFSET, TEXT_SECT_SIZE, TEXT_SECT_OFFSET, 2)],
                         bits=bits, endian=endian)
    commands += _segment('__LINKEDIT', base + (LINKEDIT_VMADDR - TEXT_VMADDR), LINKEDIT_VMSIZE, LINKEDIT_FILEOFF,
                         LINKEDIT_FILESIZE, 1, 1, bits=bits, endian=endian)
    commands += struct.pack(f'{endian}IIIIII', 0x2, 24, SYMOFF, len(SYMBOLS), STROFF, STRSIZE)

    dyld_size = len(_string_command(b'\x00' * 12, DYLD_PATH, bits))
    commands += _string_command(struct.pack(f'{endian}III', 0xE, dyld_size, 12), DYLD_PATH, bits)
    commands += struct.pack(f'{endian}IIQQ', 0x80000028, 24, ENTRYOFF, 0)
    dylib_size = len(_string_command(b'\x00' * 24, LIBSYSTEM_PATH, bits))
    commands += _string_command(struct.pack(f'{endian}IIIIII', 0xC, dylib_size, 24, 2, 0x051F0000, 0x00010000),
                                LIBSYSTEM_PATH, bits)
    if bits == 64 and endian == '<':
        assert len(commands) == SIZEOFCMDS
    return commands


def build_string_table() -> bytes:
    strings = b'\x00'
    for name, *_ in SYMBOLS:
        strings += name.encode() + b'\x00'
    return _pad(strings, STRSIZE)


def build_symbol_table(bits=64, endian='<') -> bytes:
    strings = build_string_table()
    entry = f'{endian}IBBH' + ('Q' if bits == 64 else 'I')
    table = b''
    for name, n_type, n_sect, n_desc, n_value in symbols_for(bits):
        table += struct.pack(entry, strings.index(name.encode() + b'\x00'), n_type, n_sect, n_desc, n_value)
    return table


def build_executable(flags=HEADER_FLAGS, bits=64, endian='<') -> bytes:
    """
    Executable image, arm64 by default:

        __PAGEZERO  0x0         - 0x100000000   file none
        __TEXT      0x100000000 - 0x100002000   file 0x0    - 0x1000    (__text at 0x100000f00, 0x40 bytes)
        __LINKEDIT  0x100002000 - 0x100003000   file 0x1000 - 0x1100    (symtab, strtab)

    plus LC_SYMTAB, LC_LOAD_DYLINKER, LC_MAIN and LC_LOAD_DYLIB libSystem.

    With bits=32 the image is armv7 and the virtual addresses are based at TEXT_VMADDR_32 instead; the file layout
        stays the same. endian='>' produces a big endian image.
    """
    commands = build_commands(bits, endian)
    image = bytearray(FILE_SIZE)
    if bits == 64:
        header = struct.pack(f'{endian}IIIIIIII', 0xFEEDFACF, 0x0100000C, 0, 0x2, NCMDS, len(commands), flags, 0)
    else:
        header = struct.pack(f'{endian}IIIIIII', 0xFEEDFACE, 12, 9, 0x2, NCMDS, len(commands), flags)
    image[0:len(header)] = header
    image[len(header):len(header) + len(commands)] = commands
    image[TEXT_SECT_OFFSET:TEXT_SECT_OFFSET + TEXT_SECT_SIZE] = TEXT_CONTENT
    symbols = build_symbol_table(bits, endian)
    image[SYMOFF:SYMOFF + len(symbols)] = symbols
    image[STROFF:STROFF + STRSIZE] = build_string_table()
    return bytes(image)


def build_fat(*slices: bytes, align=0x1000) -> bytes:
    """Wrap thin images into a FAT file; each slice starts on an `align` boundary"""
    header = struct.pack('>II', 0xCAFEBABE, len(slices))
    offset = align
    archs = b''
    body = b''
    for data in slices:
        archs += struct.pack('>IIIII', 0x0100000C, 0, offset, len(data), 12)
        body += _pad(data, ((len(data) + align - 1) // align) * align)
        offset += ((len(data) + align - 1) // align) * align
    return _pad(header + archs, align) + body


def as_file(data: bytes) -> BytesIO:
    fp = BytesIO(data)
    fp.seek(0)
    return fp


def error_remap(msg):
    global error_buffer
    error_buffer += msg + '\n'


def enable_error_capture():
    log.LOG_ERR = error_remap
    global error_buffer
    error_buffer = ""


def captured_errors() -> str:
    return error_buffer


def disable_error_capture():
    log.LOG_ERR = print_err
