#
#  machpatch | machpatch
#  binary.py
#
#  The Binary aggregate: owns the header, the load commands and the symbols of an image, and provides address
#    resolution, derived views, patching, and (re-)serialization on top of them.
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
from typing import List, Union

from machpatch_macho import LOAD_COMMAND, MH_FLAGS, SEG_TEXT
from machpatch.abstract import AbstractBinary, AbstractHeader
from machpatch.builder import Builder
from machpatch.exceptions import NotFoundError, ConversionError, InvalidArgumentError
from machpatch.header import Header
from machpatch.load_commands import LoadCommand, SegmentCommand, Section, DylibCommand, DylinkerCommand, MainCommand
from machpatch.symbols import Symbol, SymbolView
from libmach.log import log

MAX_PATCH_WIDTH = 8


class Binary(AbstractBinary):
    """
    This class represents a single Mach-O image as a whole.

    It's the root object of the tree: it owns the Header, the ordered list of load commands (segments and their
        sections included) and the ordered list of symbols. Everything else - segments, sections, libraries,
        exported/imported symbols - is derived from those three on every access, and is never cached.

    The parser populates it; the builder turns it back into bytes.

    :ivar Header header: Mach-O header of this image
    :ivar bytes original: Raw image this Binary was parsed from. Used by the builder for bytes the model doesn't
        describe (e.g. linkedit blobs outside of any segment). Empty for images created from scratch.
    """

    def __init__(self, header: Header = None, commands: List[LoadCommand] = None, symbols: List[Symbol] = None,
                 original: bytes = b''):
        self.header: Header = header if header is not None else Header()
        self._commands: List[LoadCommand] = list(commands or [])
        self._symbols: List[Symbol] = list(symbols or [])
        self.original = bytes(original)

    # Entity graph
    # ============

    @property
    def commands(self) -> List[LoadCommand]:
        return list(self._commands)

    @property
    def symbols(self) -> List[Symbol]:
        return list(self._symbols)

    def insert_command(self, command: LoadCommand) -> LoadCommand:
        """
        Append a load command to the end of the command list and update the header bookkeeping.

        The command is placed right after the current last command. No page alignment or file layout changes
            are applied; the builder will refuse to emit the image if the commands no longer fit in front of the
            first section.

        :param command: Command to take ownership of
        :return: The inserted command
        """
        log.debug(f'Insert command {command}')

        if any(cmd is command for cmd in self._commands):
            raise InvalidArgumentError('Command is already part of this binary')

        command.size = command.encoded_size(self.header.is64)
        command.command_offset = self.header.size + sum(cmd.size for cmd in self._commands)

        self.header.nb_cmds += 1
        self.header.sizeof_cmds += command.size

        self._commands.append(command)

        log.debug(f'Inserted at {hex(command.command_offset)}, header now has {self.header.nb_cmds} commands '
                  f'({hex(self.header.sizeof_cmds)} bytes)')
        return command

    # Views
    # =====

    @property
    def segments(self) -> List[SegmentCommand]:
        return [cmd for cmd in self._commands if isinstance(cmd, SegmentCommand)]

    @property
    def sections(self) -> List[Section]:
        return [sect for segment in self.segments for sect in segment.sections]

    @property
    def libraries(self) -> List[DylibCommand]:
        return [cmd for cmd in self._commands if isinstance(cmd, DylibCommand)]

    @staticmethod
    def is_exported(symbol: Symbol) -> bool:
        return not symbol.is_external

    @staticmethod
    def is_imported(symbol: Symbol) -> bool:
        return symbol.is_external

    def get_exported_symbols(self) -> SymbolView:
        return SymbolView(self._symbols, Binary.is_exported)

    def get_imported_symbols(self) -> SymbolView:
        return SymbolView(self._symbols, Binary.is_imported)

    @property
    def exported_symbols(self) -> SymbolView:
        return self.get_exported_symbols()

    @property
    def imported_symbols(self) -> SymbolView:
        return self.get_imported_symbols()

    # Address resolution
    # ==================

    def segment_from_virtual_address(self, virtual_address: int) -> SegmentCommand:
        for segment in self.segments:
            if segment.virtual_address <= virtual_address < segment.virtual_address + segment.virtual_size:
                return segment
        raise NotFoundError(f'Unable to find a segment containing {hex(virtual_address)}')

    def segment_from_offset(self, offset: int) -> SegmentCommand:
        # Upper bound is inclusive here, unlike the virtual address lookup.
        for segment in self.segments:
            if segment.file_offset <= offset <= segment.file_offset + segment.file_size:
                return segment
        raise NotFoundError(f'Unable to find a segment containing offset {hex(offset)}')

    def section_from_offset(self, offset: int) -> Section:
        for sect in self.sections:
            if sect.offset <= offset < sect.offset + sect.size:
                return sect
        raise NotFoundError(f'Unable to find a section containing offset {hex(offset)}')

    def virtual_address_to_offset(self, virtual_address: int) -> int:
        for segment in self.segments:
            # noinspection PyChainedComparisons
            if segment.virtual_address <= virtual_address and \
                    segment.virtual_address + segment.virtual_size >= virtual_address:
                base_address = segment.virtual_address - segment.file_offset
                return virtual_address - base_address
        raise ConversionError(f'Unable to convert virtual address {hex(virtual_address)} to offset')

    def imagebase(self) -> int:
        for segment in self.segments:
            if segment.name == SEG_TEXT:
                return segment.virtual_address
        raise NotFoundError(f'Unable to find {SEG_TEXT}')

    @property
    def has_entrypoint(self) -> bool:
        return any(isinstance(cmd, MainCommand) for cmd in self._commands)

    def entrypoint(self) -> int:
        """
        Absolute entrypoint address, from LC_MAIN.

        LC_THREAD / LC_UNIXTHREAD style entrypoints are not resolved.
        """
        for cmd in self._commands:
            if isinstance(cmd, MainCommand):
                return self.imagebase() + cmd.entrypoint
        raise NotFoundError('Entrypoint not found')

    def get_loader(self) -> str:
        for cmd in self._commands:
            if isinstance(cmd, DylinkerCommand) and cmd.command == LOAD_COMMAND.LOAD_DYLINKER:
                return cmd.name
        raise NotFoundError('LC_LOAD_DYLINKER not found')

    # Patching
    # ========

    def patch_address(self, address: int, patch_value: Union[bytes, bytearray, List[int], int], size=MAX_PATCH_WIDTH):
        """
        Overwrite bytes of the segment covering `address`.

        With a bytes-like `patch_value`, those bytes are written as-is. With an int, its low `size` bytes are
            written in the image's byte order: least significant byte first for little-endian images, most
            significant byte first for big-endian (MH_CIGAM/MH_CIGAM_64) ones. Pass bytes to control the exact
            layout.

        Everything is validated before the segment is touched; a rejected patch leaves the image unchanged.

        :param address: Virtual address to write at
        :param patch_value: Bytes to write, or an integer
        :param size: Width in bytes when patch_value is an int (0-8)
        :raises InvalidArgumentError: size out of range, or the patch would run past the segment content
        :raises NotFoundError: no segment covers address
        """
        if isinstance(patch_value, int):
            if size > MAX_PATCH_WIDTH or size < 0:
                raise InvalidArgumentError(f'Invalid size ({size})')
            patch_value = (patch_value & ((1 << (size * 8)) - 1)).to_bytes(size, self.header.byte_order)
        else:
            patch_value = bytes(patch_value)

        segment = self.segment_from_virtual_address(address)
        offset = address - segment.virtual_address
        content = bytearray(segment.content)

        if offset + len(patch_value) > len(content):
            raise InvalidArgumentError(f'Patch of {len(patch_value)} bytes at {hex(address)} runs past the end of '
                                       f'{segment.name} content ({hex(len(content))} bytes)')

        content[offset:offset + len(patch_value)] = patch_value
        segment.content = content

        log.debug(f'Patched {len(patch_value)} bytes in {segment.name} at {hex(address)}')
        log.debug_tm(f'Wrote {patch_value.hex()} @ {hex(address)}')

    def get_content_from_virtual_address(self, virtual_address: int, size: int) -> bytes:
        """
        Read up to `size` bytes at `virtual_address`. Reads running past the end of the segment content are
            truncated rather than rejected.
        """
        segment = self.segment_from_virtual_address(virtual_address)
        offset = virtual_address - segment.virtual_address
        return segment.content[offset:offset + size]

    def disable_pie(self) -> bool:
        if self.header.has_flag(MH_FLAGS.PIE):
            self.header.remove_flag(MH_FLAGS.PIE)
            return True
        return False

    # Serialization
    # =============

    def raw(self) -> bytes:
        return Builder(self).build()

    def write(self, filename: str):
        Builder.write(self, filename)

    # Abstract interface
    # ==================

    def get_abstract_header(self) -> AbstractHeader:
        architecture, modes = self.header.abstract_architecture
        return AbstractHeader(architecture, modes, self.entrypoint())

    def get_abstract_sections(self) -> List[Section]:
        return self.sections

    def get_abstract_symbols(self) -> List[Symbol]:
        return self.symbols

    def get_abstract_exported_functions(self) -> List[str]:
        return [symbol.name for symbol in self.get_exported_symbols()]

    def get_abstract_imported_functions(self) -> List[str]:
        return [symbol.name for symbol in self.get_imported_symbols()]

    def get_abstract_imported_libraries(self) -> List[str]:
        return [library.name for library in self.libraries]

    def serialize(self):
        binary_dict = {
            'header': self.header.serialize(),
            'commands': [cmd.serialize() for cmd in self._commands],
            'libraries': self.get_abstract_imported_libraries(),
            'symbols': [symbol.serialize() for symbol in self._symbols]
        }
        if self.has_entrypoint:
            try:
                binary_dict['entrypoint'] = self.entrypoint()
            except NotFoundError:
                pass
        return binary_dict

    def __str__(self):
        text = "Header\n======\n"
        text += f'{self.header}\n\n'

        text += "Commands\n========\n"
        for cmd in self._commands:
            text += f'{cmd}\n'
        text += '\n'

        text += "Sections\n========\n"
        for sect in self.sections:
            text += f'{sect}\n'
        text += '\n'

        text += "Symbols\n=======\n"
        for symbol in self._symbols:
            text += f'{symbol}\n'

        return text
