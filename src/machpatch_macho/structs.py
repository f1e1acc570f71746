#
#  machpatch | machpatch_macho
#  structs.py
#
#  On-disk Mach-O structures. Field names follow <mach-o/loader.h> where it doesn't hurt readability.
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#

from libmach.structs import Struct, uint8_t, uint16_t, uint32_t, uint64_t, char_t


class fat_header(Struct):
    """
    First 8 Bytes of a FAT MachO File

    Attributes:
        self.magic: FAT MachO Magic

        self.nfat_archs: Number of Fat Arch entries after these bytes
    """
    FIELDS = {
        'magic': uint32_t,
        'nfat_archs': uint32_t
    }


class fat_arch(Struct):
    """
    Struct representing a slice in a FAT MachO
    """
    FIELDS = {
        'cpu_type': uint32_t,
        'cpu_subtype': uint32_t,
        'offset': uint32_t,
        'size': uint32_t,
        'align': uint32_t
    }


class mach_header(Struct):
    FIELDS = {
        'magic': uint32_t,
        'cpu_type': uint32_t,
        'cpu_subtype': uint32_t,
        'filetype': uint32_t,
        'loadcnt': uint32_t,
        'loadsize': uint32_t,
        'flags': uint32_t
    }


class mach_header_64(Struct):
    FIELDS = {
        'magic': uint32_t,
        'cpu_type': uint32_t,
        'cpu_subtype': uint32_t,
        'filetype': uint32_t,
        'loadcnt': uint32_t,
        'loadsize': uint32_t,
        'flags': uint32_t,
        'reserved': uint32_t
    }


class unk_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t
    }


class segment_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'segname': char_t[16],
        'vmaddr': uint32_t,
        'vmsize': uint32_t,
        'fileoff': uint32_t,
        'filesize': uint32_t,
        'maxprot': uint32_t,
        'initprot': uint32_t,
        'nsects': uint32_t,
        'flags': uint32_t
    }


class segment_command_64(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'segname': char_t[16],
        'vmaddr': uint64_t,
        'vmsize': uint64_t,
        'fileoff': uint64_t,
        'filesize': uint64_t,
        'maxprot': uint32_t,
        'initprot': uint32_t,
        'nsects': uint32_t,
        'flags': uint32_t
    }


class section(Struct):
    FIELDS = {
        'sectname': char_t[16],
        'segname': char_t[16],
        'addr': uint32_t,
        'size': uint32_t,
        'offset': uint32_t,
        'align': uint32_t,
        'reloff': uint32_t,
        'nreloc': uint32_t,
        'flags': uint32_t,
        'reserved1': uint32_t,
        'reserved2': uint32_t
    }


class section_64(Struct):
    FIELDS = {
        'sectname': char_t[16],
        'segname': char_t[16],
        'addr': uint64_t,
        'size': uint64_t,
        'offset': uint32_t,
        'align': uint32_t,
        'reloff': uint32_t,
        'nreloc': uint32_t,
        'flags': uint32_t,
        'reserved1': uint32_t,
        'reserved2': uint32_t,
        'reserved3': uint32_t
    }


class symtab_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'symoff': uint32_t,
        'nsyms': uint32_t,
        'stroff': uint32_t,
        'strsize': uint32_t
    }


class dylib_command(Struct):
    """
    dylib_command with its embedded `struct dylib` flattened in.

    `name` is the offset of the install name string from the start of the command.
    """
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'name': uint32_t,
        'timestamp': uint32_t,
        'current_version': uint32_t,
        'compatibility_version': uint32_t
    }


class dylinker_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'name': uint32_t
    }


class entry_point_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'entryoff': uint64_t,
        'stacksize': uint64_t
    }


class nlist(Struct):
    FIELDS = {
        'str_index': uint32_t,
        'type': uint8_t,
        'sect': uint8_t,
        'desc': uint16_t,
        'value': uint32_t
    }


class nlist_64(Struct):
    FIELDS = {
        'str_index': uint32_t,
        'type': uint8_t,
        'sect': uint8_t,
        'desc': uint16_t,
        'value': uint64_t
    }
