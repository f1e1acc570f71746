#
#  machpatch | machpatch
#  parser.py
#
#  This file contains the file container (thin or FAT Mach-O) and the parser turning a single slice into a Binary.
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
import os
from enum import Enum
from typing import BinaryIO, List, Union

from machpatch_macho import (MH_MAGIC, MH_CIGAM, MH_MAGIC_64, MH_CIGAM_64, FAT_MAGIC, FAT_CIGAM, CPUType, fat_header,
                             fat_arch, mach_header, mach_header_64, nlist, nlist_64, Struct)
from machpatch.binary import Binary
from machpatch.exceptions import MalformedMachOException, UnsupportedFiletypeException
from machpatch.header import Header
from machpatch.load_commands import LoadCommand, SegmentCommand, SymbolCommand, LOAD_COMMAND_CLASSES, command_tag
from machpatch.symbols import Symbol
from machpatch.util import macho_is_malformed
from libmach.log import log

THIN_MAGICS = [MH_MAGIC, MH_CIGAM, MH_MAGIC_64, MH_CIGAM_64]


class MachOFileType(Enum):
    FAT = 0
    THIN = 1


class Slice:
    """
    A single Mach-O image inside of a file. Thin files contain exactly one; FAT files one per architecture.

    :ivar bytes data: Bytes of this slice alone
    :ivar int offset: Offset of the slice in the containing file
    :ivar arch_struct: fat_arch entry describing this slice, or None for a thin file
    """

    def __init__(self, macho_file: 'MachOFile', data: bytes, offset=0, arch_struct: fat_arch = None):
        self.macho_file = macho_file
        self.data = data
        self.offset = offset
        self.arch_struct = arch_struct

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def cpu_type(self) -> Union[CPUType, int, None]:
        if self.arch_struct is None:
            return None
        try:
            return CPUType(self.arch_struct.cpu_type)
        except ValueError:
            return self.arch_struct.cpu_type

    def __str__(self):
        cpu = self.cpu_type
        cpu = cpu.name if isinstance(cpu, CPUType) else cpu
        return f'Slice at {hex(self.offset)} ({hex(self.size)} bytes{", " + str(cpu) if cpu is not None else ""})'


class MachOFile:
    """
    Container level view of a Mach-O file, thin or FAT.

    :ivar MachOFileType type:
    :ivar List[Slice] slices: Every readable image in the file. FAT slices with a bad magic are skipped.
    """

    def __init__(self, file: Union[BinaryIO, bytes, bytearray]):
        if isinstance(file, (bytes, bytearray)):
            self.filename = ''
            self.data = bytes(file)
        else:
            self.filename = os.path.basename(file.name) if hasattr(file, 'name') else ''
            file.seek(0)
            self.data = file.read()

        self.slices: List[Slice] = []

        if len(self.data) < 4:
            log.error(f'File is too small to be a Mach-O ({len(self.data)} bytes)')
            raise UnsupportedFiletypeException

        self.magic = int.from_bytes(self.data[0:4], "big")

        if self.magic in [FAT_MAGIC, FAT_CIGAM]:
            self.type = MachOFileType.FAT
        elif self.magic in THIN_MAGICS:
            self.type = MachOFileType.THIN
        else:
            log.error(f'Bad Magic: {hex(self.magic)}')
            raise UnsupportedFiletypeException

        if self.type == MachOFileType.FAT:
            self.header: fat_header = self._load_struct(0, fat_header, "big")
            for index in range(self.header.nfat_archs):
                offset = fat_header.size() + index * fat_arch.size()
                arch_struct: fat_arch = self._load_struct(offset, fat_arch, "big")

                magic = int.from_bytes(self.data[arch_struct.offset:arch_struct.offset + 4], "big")
                if magic not in THIN_MAGICS:
                    log.error(f'Slice {index} has bad magic {hex(magic)}')
                    continue

                log.debug_tm(str(arch_struct))
                data = self.data[arch_struct.offset:arch_struct.offset + arch_struct.size]
                self.slices.append(Slice(self, data, arch_struct.offset, arch_struct))
        else:
            self.slices.append(Slice(self, self.data))

    def _load_struct(self, address: int, struct_type, byte_order="little"):
        try:
            struct = Struct.create_with_bytes(struct_type, self.data[address:address + struct_type.size()],
                                              byte_order)
        except ValueError:
            raise MalformedMachOException(f'{struct_type.__name__} at {hex(address)} runs past the end of the file')
        struct.off = address
        return struct


class MachOParser:
    """
    Builds a Binary out of a Slice.

    Every command with a known tag is parsed into its model class; the rest are kept as raw LoadCommands so they
        survive a rebuild unchanged.
    """

    @classmethod
    def parse(cls, macho_slice: Union[Slice, bytes, bytearray]) -> Binary:
        data = macho_slice.data if isinstance(macho_slice, Slice) else bytes(macho_slice)
        parser = cls(data)
        return parser.binary

    def __init__(self, data: bytes):
        self.data = data

        if len(data) < 4:
            raise MalformedMachOException('Image is too small to contain a Mach-O header')

        # magic as the host of a little endian machine would read it; a swapped magic means a big endian image
        magic = int.from_bytes(data[0:4], "little")
        if magic not in THIN_MAGICS:
            log.error(f'Bad Magic: {hex(magic)}')
            raise UnsupportedFiletypeException

        self.byte_order = "big" if magic in [MH_CIGAM, MH_CIGAM_64] else "little"
        self.is64 = magic in [MH_MAGIC_64, MH_CIGAM_64]

        header_struct = self._load_struct(0, mach_header_64 if self.is64 else mach_header)
        self.header = Header.from_struct(header_struct, magic)

        log.debug(f'Loading {"64" if self.is64 else "32"} bit {self.byte_order} endian image: {self.header}')

        self.commands: List[LoadCommand] = []
        self.symbols: List[Symbol] = []

        self._parse_load_commands()
        self._load_segment_contents()
        self._parse_symbols()

        self.binary = Binary(self.header, self.commands, self.symbols, original=self.data)

    def _load_struct(self, address: int, struct_type):
        end = address + struct_type.size()
        if end > len(self.data):
            raise MalformedMachOException(f'{struct_type.__name__} at {hex(address)} runs past the end of the image')
        struct = Struct.create_with_bytes(struct_type, self.data[address:end], self.byte_order)
        struct.off = address
        return struct

    def _parse_load_commands(self):
        offset = self.header.size
        commands_end = offset + self.header.sizeof_cmds

        for index in range(self.header.nb_cmds):
            if offset + 8 > len(self.data):
                raise MalformedMachOException(f'Load command {index} at {hex(offset)} runs past the end of the image')

            cmd = int.from_bytes(self.data[offset:offset + 4], self.byte_order)
            cmdsize = int.from_bytes(self.data[offset + 4:offset + 8], self.byte_order)

            if cmdsize < 8:
                raise MalformedMachOException(f'Load command {index} at {hex(offset)} has size {cmdsize}')
            if offset + cmdsize > len(self.data):
                raise MalformedMachOException(f'Load command {index} at {hex(offset)} (size {hex(cmdsize)}) runs '
                                              f'past the end of the image')

            raw = self.data[offset:offset + cmdsize]
            tag = command_tag(cmd)
            command_class = LOAD_COMMAND_CLASSES.get(tag, LoadCommand)

            try:
                lc = command_class.from_bytes(raw, self.is64, self.byte_order, offset)
            except ValueError:
                raise MalformedMachOException(f'Load command {index} ({tag}) at {hex(offset)} is truncated')

            log.debug_tm(f'Loaded {lc}')
            self.commands.append(lc)
            offset += cmdsize

        if offset != commands_end:
            macho_is_malformed(f'Load commands end at {hex(offset)}, header says {hex(commands_end)}')

    def _load_segment_contents(self):
        for segment in self.commands:
            if not isinstance(segment, SegmentCommand) or segment.file_size == 0:
                continue
            end = segment.file_offset + segment.file_size
            if end > len(self.data):
                raise MalformedMachOException(f'Segment {segment.name} ({hex(segment.file_offset)}-{hex(end)}) runs '
                                              f'past the end of the image')
            segment.content = self.data[segment.file_offset:end]

    def _read_cstr(self, offset: int, limit: int) -> str:
        end = self.data.find(b'\x00', offset, limit)
        if end == -1:
            end = limit
        return self.data[offset:end].decode('utf-8', errors='surrogateescape')

    def _parse_symbols(self):
        symtab = next((cmd for cmd in self.commands if isinstance(cmd, SymbolCommand)), None)
        if symtab is None:
            return

        entry_type = nlist_64 if self.is64 else nlist
        strings_end = symtab.strings_offset + symtab.strings_size

        if symtab.symbol_offset + symtab.numberof_symbols * entry_type.size() > len(self.data):
            raise MalformedMachOException(f'Symbol table at {hex(symtab.symbol_offset)} runs past the end of the image')
        if strings_end > len(self.data):
            raise MalformedMachOException(f'String table at {hex(symtab.strings_offset)} runs past the end of the '
                                          f'image')

        for index in range(symtab.numberof_symbols):
            entry = self._load_struct(symtab.symbol_offset + index * entry_type.size(), entry_type)
            if entry.str_index == 0:
                name = ''
            elif entry.str_index >= symtab.strings_size:
                macho_is_malformed(f'Symbol {index} name index {hex(entry.str_index)} is outside of the string table')
                name = ''
            else:
                name = self._read_cstr(symtab.strings_offset + entry.str_index, strings_end)
            self.symbols.append(Symbol.from_struct(entry, name))

        log.debug(f'Loaded {len(self.symbols)} symbols')
