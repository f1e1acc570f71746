#
#  machpatch | machpatch
#  load_commands.py
#
#  Load command models. Each known command kind gets its own class; anything else is kept as a bare
#    LoadCommand carrying its raw bytes, and is written back out untouched.
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
from typing import List, Union, Dict, Type

from machpatch_macho import (LOAD_COMMAND, Struct, unk_command, segment_command, segment_command_64, section,
                             section_64, dylib_command, dylinker_command, entry_point_command, symtab_command,
                             VM_PROT)
from machpatch_macho.base import Constructable
from machpatch.exceptions import NotFoundError
from machpatch.util import align_up
from libmach.log import log


def command_tag(value: int) -> Union[LOAD_COMMAND, int]:
    try:
        return LOAD_COMMAND(value)
    except ValueError:
        return value


def _tag_name(command) -> str:
    return command.name if isinstance(command, LOAD_COMMAND) else hex(command)


def _read_cstr(raw: bytes, offset: int) -> str:
    end = raw.find(b'\x00', offset)
    if end == -1:
        end = len(raw)
    return raw[offset:end].decode('utf-8', errors='surrogateescape')


def _format_version(version: int) -> str:
    return f'{version >> 16}.{(version >> 8) & 0xff}.{version & 0xff}'


class LoadCommand(Constructable):
    """
    Base load command.

    Commands we don't model in detail stay instances of this class, and `data` (the full raw command, header
        included) is written back verbatim.

    :ivar Union[LOAD_COMMAND, int] command: Command tag (cmd)
    :ivar int size: cmdsize as found in the file (or as computed when inserted)
    :ivar int command_offset: Offset of the command from the start of the image
    :ivar bytes data: Raw bytes of the command
    """

    @classmethod
    def from_bytes(cls, raw: bytes, is64=True, byte_order="little", command_offset=0) -> 'LoadCommand':
        header = Struct.create_with_bytes(unk_command, raw, byte_order)
        lc = cls(command=command_tag(header.cmd), data=raw)
        lc.size = header.cmdsize
        lc.command_offset = command_offset
        return lc

    @classmethod
    def from_values(cls, command, data: bytes = b'') -> 'LoadCommand':
        return cls(command=command_tag(int(command)), data=data)

    def __init__(self, command: Union[LOAD_COMMAND, int] = 0, data: bytes = b''):
        self.command = command
        self.data = bytes(data)
        self.size = len(self.data)
        self.command_offset = 0

    def encoded_size(self, is64=True) -> int:
        return len(self.data)

    def raw_bytes(self, is64=True, byte_order="little") -> bytes:
        return bytes(self.data)

    def serialize(self):
        return {
            'command': _tag_name(self.command),
            'command_offset': self.command_offset,
            'size': self.size
        }

    def __str__(self):
        return f'{_tag_name(self.command)} @ {hex(self.command_offset)} (size {hex(self.size)})'


class _StringCommand(LoadCommand):
    """
    Commands whose fixed part is followed by a null terminated string, padded to pointer alignment
    """

    STRUCT: Type[Struct] = None

    def encoded_size(self, is64=True) -> int:
        name = self.name.encode('utf-8', errors='surrogateescape')
        needed = align_up(self.STRUCT.size() + len(name) + 1, 8 if is64 else 4)
        return max(needed, self.size)

    def _string_payload(self, is64=True) -> bytes:
        size = self.encoded_size(is64)
        payload = self.name.encode('utf-8', errors='surrogateescape') + b'\x00'
        return payload.ljust(size - self.STRUCT.size(), b'\x00')


class Section:
    """
    A named sub-region of a segment. Sections are owned by their segment and are never created on their own by
        the parser.

    :ivar str name:
    :ivar str segment_name: Segment name as written in the section header
    :ivar int virtual_address:
    :ivar int size:
    :ivar int offset: File offset
    """

    @classmethod
    def from_struct(cls, sect: Union[section, section_64]) -> 'Section':
        return cls(name=sect.sectname, segment_name=sect.segname, virtual_address=sect.addr, size=sect.size,
                   offset=sect.offset, alignment=sect.align, relocation_offset=sect.reloff,
                   numberof_relocations=sect.nreloc, flags=sect.flags, reserved1=sect.reserved1,
                   reserved2=sect.reserved2, reserved3=getattr(sect, 'reserved3', 0))

    def __init__(self, name='', segment_name='', virtual_address=0, size=0, offset=0, alignment=0,
                 relocation_offset=0, numberof_relocations=0, flags=0, reserved1=0, reserved2=0, reserved3=0):
        self.name = name
        self.segment_name = segment_name
        self.virtual_address = virtual_address
        self.size = size
        self.offset = offset
        self.alignment = alignment
        self.relocation_offset = relocation_offset
        self.numberof_relocations = numberof_relocations
        self.flags = flags
        self.reserved1 = reserved1
        self.reserved2 = reserved2
        self.reserved3 = reserved3

        self.segment: Union['SegmentCommand', None] = None

    @property
    def content(self) -> bytes:
        """
        Bytes of the section, sliced out of the owning segment's current content.
        Zerofill sections (and orphaned ones) have no file content.
        """
        if self.segment is None:
            return b''
        start = self.offset - self.segment.file_offset
        if start < 0:
            return b''
        return self.segment.content[start:start + self.size]

    def to_struct(self, is64=True, byte_order="little") -> Struct:
        segment_name = self.segment_name or (self.segment.name if self.segment else '')
        values = [self.name, segment_name, self.virtual_address, self.size, self.offset, self.alignment,
                  self.relocation_offset, self.numberof_relocations, self.flags, self.reserved1, self.reserved2]
        if is64:
            values.append(self.reserved3)
        return Struct.create_with_values(section_64 if is64 else section, values, byte_order)

    def serialize(self):
        return {
            'name': self.name,
            'segment_name': self.segment_name,
            'virtual_address': self.virtual_address,
            'size': self.size,
            'offset': self.offset
        }

    def __str__(self):
        return f'Section {self.segment_name},{self.name} at {hex(self.virtual_address)} ' \
               f'(file {hex(self.offset)}, size {hex(self.size)})'


class SegmentCommand(LoadCommand):
    """
    LC_SEGMENT / LC_SEGMENT_64.

    `content` is a copy of the segment's file region. Reading it returns a fresh copy and assigning it stores a
        copy, so edits go through an explicit read-modify-write:

        data = bytearray(segment.content)
        data[0x10:0x14] = b'\\xde\\xad\\xbe\\xef'
        segment.content = data
    """

    @classmethod
    def from_bytes(cls, raw: bytes, is64=True, byte_order="little", command_offset=0) -> 'SegmentCommand':
        struct_type = segment_command_64 if is64 else segment_command
        section_type = section_64 if is64 else section

        cmd = Struct.create_with_bytes(struct_type, raw, byte_order)

        lc = cls(name=cmd.segname, virtual_address=cmd.vmaddr, virtual_size=cmd.vmsize, file_offset=cmd.fileoff,
                 file_size=cmd.filesize, max_protection=cmd.maxprot, init_protection=cmd.initprot,
                 flags=cmd.flags, command=command_tag(cmd.cmd))
        lc.size = cmd.cmdsize
        lc.command_offset = command_offset
        lc.data = bytes(raw)

        ea = struct_type.size()
        for _ in range(cmd.nsects):
            sect = Struct.create_with_bytes(section_type, raw[ea:ea + section_type.size()], byte_order)
            lc.add_section(Section.from_struct(sect))
            ea += section_type.size()

        return lc

    @classmethod
    def from_values(cls, is64, name, vm_addr, vm_size, file_addr, file_size, maxprot, initprot, flags, sections,
                    content=b'') -> 'SegmentCommand':
        assert len(name) <= 16
        return cls(name=name, virtual_address=vm_addr, virtual_size=vm_size, file_offset=file_addr,
                   file_size=file_size, max_protection=maxprot, init_protection=initprot, flags=flags,
                   sections=sections, content=content,
                   command=LOAD_COMMAND.SEGMENT_64 if is64 else LOAD_COMMAND.SEGMENT)

    def __init__(self, name='', virtual_address=0, virtual_size=0, file_offset=0, file_size=0,
                 max_protection=VM_PROT.READ, init_protection=VM_PROT.READ, flags=0, sections: List[Section] = None,
                 content=b'', command: Union[LOAD_COMMAND, int] = LOAD_COMMAND.SEGMENT_64):
        super().__init__(command)
        self.name = name
        self.virtual_address = virtual_address
        self.virtual_size = virtual_size
        self.file_offset = file_offset
        self.file_size = file_size
        self.max_protection = int(max_protection)
        self.init_protection = int(init_protection)
        self.flags = flags

        self.sections: List[Section] = []
        for sect in sections or []:
            self.add_section(sect)

        self._content = bytearray(content)
        self.size = self.encoded_size(self.command == LOAD_COMMAND.SEGMENT_64)

    @property
    def content(self) -> bytes:
        return bytes(self._content)

    @content.setter
    def content(self, data: Union[bytes, bytearray]):
        if len(data) != len(self._content):
            log.debug(f'Segment {self.name} content resized from {hex(len(self._content))} to {hex(len(data))}')
        self._content = bytearray(data)

    @property
    def is64(self) -> bool:
        return self.command == LOAD_COMMAND.SEGMENT_64

    def add_section(self, sect: Section) -> Section:
        sect.segment = self
        if not sect.segment_name:
            sect.segment_name = self.name
        self.sections.append(sect)
        return sect

    def has_section(self, name: str) -> bool:
        return any(sect.name == name for sect in self.sections)

    def get_section(self, name: str) -> Section:
        for sect in self.sections:
            if sect.name == name:
                return sect
        raise NotFoundError(f'Section {name} not found in segment {self.name}')

    def encoded_size(self, is64=True) -> int:
        struct_type = segment_command_64 if is64 else segment_command
        section_type = section_64 if is64 else section
        return struct_type.size() + len(self.sections) * section_type.size()

    def raw_bytes(self, is64=True, byte_order="little") -> bytes:
        struct_type = segment_command_64 if is64 else segment_command
        cmd = LOAD_COMMAND.SEGMENT_64 if is64 else LOAD_COMMAND.SEGMENT

        header = Struct.create_with_values(struct_type, [cmd, self.encoded_size(is64), self.name,
                                                         self.virtual_address, self.virtual_size, self.file_offset,
                                                         self.file_size, self.max_protection, self.init_protection,
                                                         len(self.sections), self.flags], byte_order)
        data = bytearray(header.raw)
        for sect in self.sections:
            data += sect.to_struct(is64, byte_order).raw

        return bytes(data)

    def serialize(self):
        segment = super().serialize()
        segment.update({
            'name': self.name,
            'virtual_address': self.virtual_address,
            'virtual_size': self.virtual_size,
            'file_offset': self.file_offset,
            'file_size': self.file_size,
            'sections': [sect.serialize() for sect in self.sections]
        })
        return segment

    def __str__(self):
        return f'Segment {self.name} at {hex(self.virtual_address)} (vm size {hex(self.virtual_size)}, ' \
               f'file {hex(self.file_offset)}+{hex(self.file_size)}, {len(self.sections)} sections)'


class DylibCommand(_StringCommand):
    """
    A library load command (LC_LOAD_DYLIB and friends, LC_ID_DYLIB).
    """

    STRUCT = dylib_command

    @classmethod
    def from_bytes(cls, raw: bytes, is64=True, byte_order="little", command_offset=0) -> 'DylibCommand':
        cmd = Struct.create_with_bytes(dylib_command, raw, byte_order)
        lc = cls(name=_read_cstr(raw, cmd.name), timestamp=cmd.timestamp, current_version=cmd.current_version,
                 compatibility_version=cmd.compatibility_version, command=command_tag(cmd.cmd))
        lc.size = cmd.cmdsize
        lc.command_offset = command_offset
        lc.data = bytes(raw)
        return lc

    @classmethod
    def from_values(cls, name, command=LOAD_COMMAND.LOAD_DYLIB, timestamp=2, current_version=0,
                    compatibility_version=0) -> 'DylibCommand':
        return cls(name=name, timestamp=timestamp, current_version=current_version,
                   compatibility_version=compatibility_version, command=command)

    def __init__(self, name='', timestamp=2, current_version=0, compatibility_version=0,
                 command: Union[LOAD_COMMAND, int] = LOAD_COMMAND.LOAD_DYLIB):
        super().__init__(command)
        self.name = name
        self.timestamp = timestamp
        self.current_version = current_version
        self.compatibility_version = compatibility_version
        self.size = 0

    @property
    def weak(self) -> bool:
        return self.command == LOAD_COMMAND.LOAD_WEAK_DYLIB

    def raw_bytes(self, is64=True, byte_order="little") -> bytes:
        header = Struct.create_with_values(dylib_command, [int(self.command), self.encoded_size(is64),
                                                           dylib_command.size(), self.timestamp,
                                                           self.current_version, self.compatibility_version],
                                           byte_order)
        return header.raw + self._string_payload(is64)

    def serialize(self):
        dylib = super().serialize()
        dylib.update({
            'name': self.name,
            'current_version': _format_version(self.current_version),
            'compatibility_version': _format_version(self.compatibility_version)
        })
        return dylib

    def __str__(self):
        return f'{_tag_name(self.command)} {self.name} (current {_format_version(self.current_version)}, ' \
               f'compatibility {_format_version(self.compatibility_version)})'


class DylinkerCommand(_StringCommand):
    """
    LC_LOAD_DYLINKER / LC_ID_DYLINKER / LC_DYLD_ENVIRONMENT; `name` is the path to the dynamic loader.
    """

    STRUCT = dylinker_command

    @classmethod
    def from_bytes(cls, raw: bytes, is64=True, byte_order="little", command_offset=0) -> 'DylinkerCommand':
        cmd = Struct.create_with_bytes(dylinker_command, raw, byte_order)
        lc = cls(name=_read_cstr(raw, cmd.name), command=command_tag(cmd.cmd))
        lc.size = cmd.cmdsize
        lc.command_offset = command_offset
        lc.data = bytes(raw)
        return lc

    @classmethod
    def from_values(cls, name='/usr/lib/dyld', command=LOAD_COMMAND.LOAD_DYLINKER) -> 'DylinkerCommand':
        return cls(name=name, command=command)

    def __init__(self, name='', command: Union[LOAD_COMMAND, int] = LOAD_COMMAND.LOAD_DYLINKER):
        super().__init__(command)
        self.name = name
        self.size = 0

    def raw_bytes(self, is64=True, byte_order="little") -> bytes:
        header = Struct.create_with_values(dylinker_command, [int(self.command), self.encoded_size(is64),
                                                              dylinker_command.size()], byte_order)
        return header.raw + self._string_payload(is64)

    def serialize(self):
        dylinker = super().serialize()
        dylinker['name'] = self.name
        return dylinker

    def __str__(self):
        return f'{_tag_name(self.command)} {self.name}'


class MainCommand(LoadCommand):
    """
    LC_MAIN. `entrypoint` is relative to the imagebase.
    """

    @classmethod
    def from_bytes(cls, raw: bytes, is64=True, byte_order="little", command_offset=0) -> 'MainCommand':
        cmd = Struct.create_with_bytes(entry_point_command, raw, byte_order)
        lc = cls(entrypoint=cmd.entryoff, stack_size=cmd.stacksize)
        lc.size = cmd.cmdsize
        lc.command_offset = command_offset
        lc.data = bytes(raw)
        return lc

    @classmethod
    def from_values(cls, entrypoint, stack_size=0) -> 'MainCommand':
        return cls(entrypoint=entrypoint, stack_size=stack_size)

    def __init__(self, entrypoint=0, stack_size=0):
        super().__init__(LOAD_COMMAND.MAIN)
        self.entrypoint = entrypoint
        self.stack_size = stack_size
        self.size = entry_point_command.size()

    def encoded_size(self, is64=True) -> int:
        return entry_point_command.size()

    def raw_bytes(self, is64=True, byte_order="little") -> bytes:
        return Struct.create_with_values(entry_point_command, [int(self.command), self.encoded_size(is64),
                                                               self.entrypoint, self.stack_size], byte_order).raw

    def serialize(self):
        main = super().serialize()
        main.update({'entrypoint': self.entrypoint, 'stack_size': self.stack_size})
        return main

    def __str__(self):
        return f'MAIN entrypoint offset {hex(self.entrypoint)} (stack size {hex(self.stack_size)})'


class SymbolCommand(LoadCommand):
    """
    LC_SYMTAB. Locates the nlist array and the string table the builder re-emits the symbols into.
    """

    @classmethod
    def from_bytes(cls, raw: bytes, is64=True, byte_order="little", command_offset=0) -> 'SymbolCommand':
        cmd = Struct.create_with_bytes(symtab_command, raw, byte_order)
        lc = cls(symbol_offset=cmd.symoff, numberof_symbols=cmd.nsyms, strings_offset=cmd.stroff,
                 strings_size=cmd.strsize)
        lc.size = cmd.cmdsize
        lc.command_offset = command_offset
        lc.data = bytes(raw)
        return lc

    @classmethod
    def from_values(cls, symbol_offset, numberof_symbols, strings_offset, strings_size) -> 'SymbolCommand':
        return cls(symbol_offset, numberof_symbols, strings_offset, strings_size)

    def __init__(self, symbol_offset=0, numberof_symbols=0, strings_offset=0, strings_size=0):
        super().__init__(LOAD_COMMAND.SYMTAB)
        self.symbol_offset = symbol_offset
        self.numberof_symbols = numberof_symbols
        self.strings_offset = strings_offset
        self.strings_size = strings_size
        self.size = symtab_command.size()

    def encoded_size(self, is64=True) -> int:
        return symtab_command.size()

    def raw_bytes(self, is64=True, byte_order="little") -> bytes:
        return Struct.create_with_values(symtab_command, [int(self.command), self.encoded_size(is64),
                                                          self.symbol_offset, self.numberof_symbols,
                                                          self.strings_offset, self.strings_size], byte_order).raw

    def serialize(self):
        symtab = super().serialize()
        symtab.update({
            'symbol_offset': self.symbol_offset,
            'numberof_symbols': self.numberof_symbols,
            'strings_offset': self.strings_offset,
            'strings_size': self.strings_size
        })
        return symtab

    def __str__(self):
        return f'SYMTAB {self.numberof_symbols} symbols at {hex(self.symbol_offset)}, ' \
               f'strings at {hex(self.strings_offset)}+{hex(self.strings_size)}'


LOAD_COMMAND_CLASSES: Dict[LOAD_COMMAND, Type[LoadCommand]] = {
    LOAD_COMMAND.SEGMENT: SegmentCommand,
    LOAD_COMMAND.SEGMENT_64: SegmentCommand,
    LOAD_COMMAND.SYMTAB: SymbolCommand,
    LOAD_COMMAND.LOAD_DYLIB: DylibCommand,
    LOAD_COMMAND.ID_DYLIB: DylibCommand,
    LOAD_COMMAND.LOAD_WEAK_DYLIB: DylibCommand,
    LOAD_COMMAND.REEXPORT_DYLIB: DylibCommand,
    LOAD_COMMAND.LAZY_LOAD_DYLIB: DylibCommand,
    LOAD_COMMAND.LOAD_UPWARD_DYLIB: DylibCommand,
    LOAD_COMMAND.LOAD_DYLINKER: DylinkerCommand,
    LOAD_COMMAND.ID_DYLINKER: DylinkerCommand,
    LOAD_COMMAND.DYLD_ENVIRONMENT: DylinkerCommand,
    LOAD_COMMAND.MAIN: MainCommand,
}
