#
#  machpatch | machpatch
#  builder.py
#
#  Serializes a Binary back into a Mach-O image.
#
#  The original image bytes are used as the canvas; segment contents, the symbol table and finally the header and
#    load commands are written over it, in that order. Anything the model doesn't describe is left as it was.
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
from typing import Dict, List, Tuple

from machpatch_macho import nlist, nlist_64
from machpatch.exceptions import BuildError
from machpatch.load_commands import SymbolCommand
from libmach.log import log

# offsetof(mach_header, sizeofcmds); identical for the 32 and 64 bit headers
SIZEOFCMDS_OFFSET = 20


class Builder:
    """
    Rebuilds the raw bytes of a Binary.

    The builder also brings the bookkeeping of the Binary up to date (header command count and size, command
        offsets, symbol count), so a built Binary describes exactly the bytes that were produced.
    """

    def __init__(self, binary):
        self.binary = binary
        self.is64 = binary.header.is64
        self.byte_order = binary.header.byte_order

    @staticmethod
    def write(binary, filename: str):
        raw = Builder(binary).build()
        with open(filename, 'wb') as fp:
            fp.write(raw)
        log.info(f'Wrote {hex(len(raw))} bytes to {filename}')

    def build(self) -> bytes:
        log.debug('Building image')

        canvas = bytearray(self.binary.original)

        self._build_segments(canvas)
        self._build_symbols(canvas)
        self._build_header(canvas)

        log.debug(f'Built image of {hex(len(canvas))} bytes')
        return bytes(canvas)

    @staticmethod
    def _reserve(canvas: bytearray, end: int):
        if len(canvas) < end:
            canvas.extend(b'\x00' * (end - len(canvas)))

    def _build_segments(self, canvas: bytearray):
        for segment in self.binary.segments:
            if segment.file_size == 0:
                continue

            content = segment.content
            if len(content) > segment.file_size:
                raise BuildError(f'Content of {segment.name} ({hex(len(content))} bytes) does not fit its file size '
                                 f'({hex(segment.file_size)} bytes)')

            end = segment.file_offset + segment.file_size
            self._reserve(canvas, end)
            canvas[segment.file_offset:end] = content.ljust(segment.file_size, b'\x00')
            log.debug_tm(f'Wrote {segment.name} at {hex(segment.file_offset)}')

    def _build_string_table(self, symbols) -> Tuple[bytes, Dict[str, int]]:
        table = bytearray(b'\x00')
        indices = {'': 0}

        for symbol in symbols:
            if symbol.name in indices:
                continue
            indices[symbol.name] = len(table)
            table += symbol.name.encode('utf-8', errors='surrogateescape') + b'\x00'

        return bytes(table), indices

    def _build_symbols(self, canvas: bytearray):
        symtabs: List[SymbolCommand] = [cmd for cmd in self.binary.commands if isinstance(cmd, SymbolCommand)]
        symbols = self.binary.symbols

        if not symtabs:
            if symbols:
                log.warn(f'No LC_SYMTAB, {len(symbols)} symbols will not be written')
            return

        symtab = symtabs[0]
        entry_size = nlist_64.size() if self.is64 else nlist.size()

        # an empty symtab may have no string table at all, not even the leading NUL
        if not symbols and symtab.strings_size == 0:
            old_end = symtab.symbol_offset + symtab.numberof_symbols * entry_size
            self._reserve(canvas, old_end)
            canvas[symtab.symbol_offset:old_end] = b'\x00' * (old_end - symtab.symbol_offset)
            symtab.numberof_symbols = 0
            return

        strings, indices = self._build_string_table(symbols)
        if len(strings) > symtab.strings_size:
            raise BuildError(f'String table needs {hex(len(strings))} bytes, only {hex(symtab.strings_size)} '
                             f'available')

        table = bytearray()
        for symbol in symbols:
            table += symbol.raw_bytes(indices[symbol.name], self.is64, self.byte_order)

        symbols_end = symtab.symbol_offset + len(table)
        if symtab.symbol_offset < symtab.strings_offset < symbols_end:
            raise BuildError(f'{len(symbols)} symbols at {hex(symtab.symbol_offset)} overlap the string table at '
                             f'{hex(symtab.strings_offset)}')

        # clear the previous entries, there may have been more of them
        old_end = symtab.symbol_offset + symtab.numberof_symbols * entry_size
        self._reserve(canvas, max(old_end, symbols_end))
        canvas[symtab.symbol_offset:old_end] = b'\x00' * (old_end - symtab.symbol_offset)
        canvas[symtab.symbol_offset:symbols_end] = table

        strings_end = symtab.strings_offset + symtab.strings_size
        self._reserve(canvas, strings_end)
        canvas[symtab.strings_offset:strings_end] = strings.ljust(symtab.strings_size, b'\x00')

        symtab.numberof_symbols = len(symbols)
        log.debug(f'Wrote {len(symbols)} symbols, {hex(len(strings))} bytes of strings')

    def _first_section_offset(self) -> int:
        offsets = [sect.offset for sect in self.binary.sections if sect.offset > 0]
        return min(offsets) if offsets else 0

    def _build_header(self, canvas: bytearray):
        header = self.binary.header
        commands = self.binary.commands

        payload = bytearray()
        offset = header.size
        for cmd in commands:
            data = cmd.raw_bytes(self.is64, self.byte_order)
            cmd.size = len(data)
            cmd.command_offset = offset
            offset += len(data)
            payload += data

        commands_end = header.size + len(payload)
        limit = self._first_section_offset()
        if limit and commands_end > limit:
            raise BuildError(f'Load commands end at {hex(commands_end)}, past the first section at {hex(limit)}')

        old_end = 0
        if len(canvas) >= SIZEOFCMDS_OFFSET + 4:
            old_sizeof_cmds = int.from_bytes(canvas[SIZEOFCMDS_OFFSET:SIZEOFCMDS_OFFSET + 4], self.byte_order)
            old_end = min(header.size + old_sizeof_cmds, limit or len(canvas))

        self._reserve(canvas, commands_end)
        if old_end > commands_end:
            self._reserve(canvas, old_end)
            canvas[commands_end:old_end] = b'\x00' * (old_end - commands_end)

        header.nb_cmds = len(commands)
        header.sizeof_cmds = len(payload)

        canvas[0:header.size] = header.to_struct().raw
        canvas[header.size:commands_end] = payload

        log.debug(f'Wrote header and {header.nb_cmds} load commands ({hex(header.sizeof_cmds)} bytes)')
