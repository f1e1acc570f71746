#
#  machpatch | machpatch
#  header.py
#
#  Mach-O header model
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
from typing import List, Set, Tuple, Union

from machpatch_macho import (MH_MAGIC, MH_MAGIC_64, MH_CIGAM, MH_CIGAM_64, MH_FLAGS, MH_FILETYPE, CPUType,
                             mach_header, mach_header_64, Struct)
from machpatch.abstract import ARCHITECTURES, MODES

_ARCHITECTURE_MAP = {
    CPUType.X86: (ARCHITECTURES.X86, {MODES.MODE_32}),
    CPUType.X86_64: (ARCHITECTURES.X86, {MODES.MODE_64}),
    CPUType.ARM: (ARCHITECTURES.ARM, {MODES.MODE_32}),
    CPUType.ARM64: (ARCHITECTURES.ARM64, {MODES.MODE_64}),
    CPUType.ARM64_32: (ARCHITECTURES.ARM64, {MODES.MODE_32}),
    CPUType.POWERPC: (ARCHITECTURES.PPC, {MODES.MODE_32}),
    CPUType.POWERPC64: (ARCHITECTURES.PPC, {MODES.MODE_64}),
    CPUType.SPARC: (ARCHITECTURES.SPARC, {MODES.MODE_32}),
}


class Header:
    """
    The Mach-O header of an image.

    Field writes here have no side effects on anything else in the Binary. The builder recomputes `nb_cmds` and
        `sizeof_cmds` from the command list when serializing.

    :ivar int magic: One of MH_MAGIC, MH_MAGIC_64, or their byte-swapped counterparts
    :ivar Union[CPUType, int] cpu_type: CPU type; left as a plain int if it isn't one we know
    :ivar int cpu_subtype: CPU subtype, including capability bits
    :ivar Union[MH_FILETYPE, int] file_type: Kind of image (executable, dylib, ...); a plain int if unknown
    :ivar int nb_cmds: Number of load commands
    :ivar int sizeof_cmds: Total size of the load commands
    :ivar int flags: MH_FLAGS bitset
    :ivar int reserved: 64 bit header padding
    """

    @classmethod
    def from_struct(cls, header: Union[mach_header, mach_header_64], magic: int) -> 'Header':
        try:
            cpu_type = CPUType(header.cpu_type)
        except ValueError:
            cpu_type = header.cpu_type

        try:
            file_type = MH_FILETYPE(header.filetype)
        except ValueError:
            file_type = header.filetype

        return cls(magic=magic, cpu_type=cpu_type, cpu_subtype=header.cpu_subtype, file_type=file_type,
                   nb_cmds=header.loadcnt, sizeof_cmds=header.loadsize, flags=header.flags,
                   reserved=getattr(header, 'reserved', 0))

    def __init__(self, magic=MH_MAGIC_64, cpu_type: Union[CPUType, int] = CPUType.ARM64, cpu_subtype=0,
                 file_type: Union[MH_FILETYPE, int] = MH_FILETYPE.EXECUTE, nb_cmds=0, sizeof_cmds=0, flags=0,
                 reserved=0):
        self.magic = magic
        self.cpu_type = cpu_type
        self.cpu_subtype = cpu_subtype
        self.file_type = file_type
        self.nb_cmds = nb_cmds
        self.sizeof_cmds = sizeof_cmds
        self.flags = flags
        self.reserved = reserved

    @property
    def is64(self) -> bool:
        return self.magic in [MH_MAGIC_64, MH_CIGAM_64]

    @property
    def byte_order(self) -> str:
        return "big" if self.magic in [MH_CIGAM, MH_CIGAM_64] else "little"

    @property
    def struct_type(self):
        return mach_header_64 if self.is64 else mach_header

    @property
    def size(self) -> int:
        return self.struct_type.size()

    @property
    def flags_list(self) -> List[MH_FLAGS]:
        return [flag for flag in MH_FLAGS if self.flags & flag.value]

    def has_flag(self, flag: MH_FLAGS) -> bool:
        return (self.flags & flag) == flag

    def add_flag(self, flag: MH_FLAGS):
        self.flags |= flag

    def remove_flag(self, flag: MH_FLAGS):
        self.flags &= ~flag & 0xFFFFFFFF

    @property
    def abstract_architecture(self) -> Tuple[ARCHITECTURES, Set[MODES]]:
        try:
            architecture, modes = _ARCHITECTURE_MAP[self.cpu_type]
        except KeyError:
            return ARCHITECTURES.NONE, set()
        return architecture, set(modes)

    def to_struct(self, nb_cmds=None, sizeof_cmds=None) -> Struct:
        """
        On-disk header. The in-file magic is always the native magic; byte order goes into the packing instead.

        :param nb_cmds: Override for the command count
        :param sizeof_cmds: Override for the command area size
        """
        nb_cmds = self.nb_cmds if nb_cmds is None else nb_cmds
        sizeof_cmds = self.sizeof_cmds if sizeof_cmds is None else sizeof_cmds
        magic = MH_MAGIC_64 if self.is64 else MH_MAGIC

        values = [magic, int(self.cpu_type), self.cpu_subtype, int(self.file_type), nb_cmds, sizeof_cmds, self.flags]
        if self.is64:
            values.append(self.reserved)

        return Struct.create_with_values(self.struct_type, values, self.byte_order)

    def serialize(self):
        return {
            'magic': self.magic,
            'cpu_type': self.cpu_type.name if isinstance(self.cpu_type, CPUType) else self.cpu_type,
            'cpu_subtype': self.cpu_subtype,
            'file_type': self.file_type.name if isinstance(self.file_type, MH_FILETYPE) else self.file_type,
            'nb_cmds': self.nb_cmds,
            'sizeof_cmds': self.sizeof_cmds,
            'flags': [flag.name for flag in self.flags_list],
            'is_64_bit': self.is64
        }

    def __str__(self):
        cpu = self.cpu_type.name if isinstance(self.cpu_type, CPUType) else hex(self.cpu_type)
        file_type = self.file_type.name if isinstance(self.file_type, MH_FILETYPE) else hex(self.file_type)
        return f'MachO Header - 64 bit: {self.is64} | CPU: {cpu} | File Type: {file_type} | ' \
               f'Flags: {"|".join(flag.name for flag in self.flags_list)} | Load Cmd Count: {self.nb_cmds} | ' \
               f'Load Cmd Size: {hex(self.sizeof_cmds)}'
