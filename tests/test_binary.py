#
#  machpatch | tests
#  test_binary.py
#
#  Address resolution, views, patching and mutation on a parsed Binary.
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
import unittest

import fixtures

import machpatch
from machpatch_macho import LOAD_COMMAND, MH_FLAGS
from machpatch.abstract import ARCHITECTURES, MODES
from machpatch.binary import Binary
from machpatch.exceptions import NotFoundError, ConversionError, InvalidArgumentError
from machpatch.header import Header
from machpatch.load_commands import SegmentCommand, DylibCommand, DylinkerCommand, MainCommand
from machpatch.symbols import Symbol


def load_fixture(**kwargs) -> Binary:
    return machpatch.load_binary(fixtures.build_executable(**kwargs))


def text_only_binary() -> Binary:
    """__TEXT at 0x100000000, 0x2000 bytes of vm, 0x100 bytes of file content starting at offset 0x4000"""
    text = SegmentCommand('__TEXT', 0x100000000, 0x2000, 0x4000, 0x100, content=bytes(0x100))
    return Binary(Header(), [text])


class ResolverTestCase(unittest.TestCase):
    def setUp(self):
        self.binary = load_fixture()

    def test_segment_from_virtual_address(self):
        self.assertEqual(self.binary.segment_from_virtual_address(0x1000).name, '__PAGEZERO')
        self.assertEqual(self.binary.segment_from_virtual_address(fixtures.TEXT_VMADDR).name, '__TEXT')
        self.assertEqual(self.binary.segment_from_virtual_address(0x100001FFF).name, '__TEXT')
        self.assertEqual(self.binary.segment_from_virtual_address(0x100002FFF).name, '__LINKEDIT')

    def test_segment_from_virtual_address_end_is_exclusive(self):
        # first byte past __TEXT belongs to __LINKEDIT, first byte past __LINKEDIT to nothing
        self.assertEqual(self.binary.segment_from_virtual_address(0x100002000).name, '__LINKEDIT')
        with self.assertRaises(NotFoundError):
            self.binary.segment_from_virtual_address(0x100003000)

    def test_overlapping_segments_first_wins(self):
        first = SegmentCommand('__TEXT', 0x100000000, 0x2000, 0, 0x100, content=bytes(0x100))
        second = SegmentCommand('__DATA', 0x100001000, 0x2000, 0x100, 0x100, content=bytes(0x100))
        binary = Binary(Header(), [first, second])

        self.assertIs(binary.segment_from_virtual_address(0x100001800), first)
        self.assertIs(binary.segment_from_virtual_address(0x100002800), second)

        binary = Binary(Header(), [second, first])
        self.assertIs(binary.segment_from_virtual_address(0x100001800), second)
        self.assertIs(binary.segment_from_virtual_address(0x100000800), first)

    def test_every_address_in_a_segment_resolves_to_it(self):
        for segment in self.binary.segments:
            if segment.virtual_size == 0:
                continue
            step = max(segment.virtual_size // 64, 1)
            for address in range(segment.virtual_address, segment.virtual_address + segment.virtual_size, step):
                self.assertIs(self.binary.segment_from_virtual_address(address), segment)
            last = segment.virtual_address + segment.virtual_size - 1
            self.assertIs(self.binary.segment_from_virtual_address(last), segment)

    def test_segment_from_offset_end_is_inclusive(self):
        self.assertEqual(self.binary.segment_from_offset(0xF00).name, '__TEXT')
        # 0x1000 is one past the end of __TEXT's file range, and still resolves to __TEXT
        self.assertEqual(self.binary.segment_from_offset(0x1000).name, '__TEXT')
        self.assertEqual(self.binary.segment_from_offset(0x1001).name, '__LINKEDIT')
        self.assertEqual(self.binary.segment_from_offset(0x1100).name, '__LINKEDIT')
        with self.assertRaises(NotFoundError):
            self.binary.segment_from_offset(0x1101)

    def test_segment_from_offset_empty_segment(self):
        # __PAGEZERO maps no file bytes, but its inclusive [0, 0] range still claims offset 0
        self.assertEqual(self.binary.segment_from_offset(0).name, '__PAGEZERO')

    def test_section_from_offset_end_is_exclusive(self):
        self.assertEqual(self.binary.section_from_offset(fixtures.TEXT_SECT_OFFSET).name, '__text')
        self.assertEqual(self.binary.section_from_offset(0xF3F).name, '__text')
        with self.assertRaises(NotFoundError):
            self.binary.section_from_offset(0xF40)
        with self.assertRaises(NotFoundError):
            self.binary.section_from_offset(0xEFF)

    def test_virtual_address_to_offset(self):
        self.assertEqual(self.binary.virtual_address_to_offset(fixtures.TEXT_SECT_ADDR), fixtures.TEXT_SECT_OFFSET)
        self.assertEqual(self.binary.virtual_address_to_offset(0x100002010), 0x1010)

    def test_virtual_address_to_offset_end_is_inclusive(self):
        # one past the end of __TEXT still maps through __TEXT
        self.assertEqual(self.binary.virtual_address_to_offset(0x100002000), 0x2000)
        self.assertEqual(self.binary.virtual_address_to_offset(0x100003000), 0x2000)
        with self.assertRaises(ConversionError):
            self.binary.virtual_address_to_offset(0x100003001)

    def test_text_segment_example(self):
        binary = text_only_binary()
        self.assertEqual(binary.imagebase(), 0x100000000)
        self.assertEqual(binary.segment_from_virtual_address(0x100000010).name, '__TEXT')
        self.assertEqual(binary.virtual_address_to_offset(0x100000010), 0x4010)

    def test_imagebase_and_entrypoint(self):
        self.assertEqual(self.binary.imagebase(), fixtures.TEXT_VMADDR)
        self.assertTrue(self.binary.has_entrypoint)
        self.assertEqual(self.binary.entrypoint(), fixtures.TEXT_VMADDR + fixtures.ENTRYOFF)

    def test_missing_entrypoint(self):
        binary = text_only_binary()
        self.assertFalse(binary.has_entrypoint)
        with self.assertRaises(NotFoundError):
            binary.entrypoint()

    def test_missing_text_segment(self):
        binary = Binary(Header(), [SegmentCommand('__DATA', 0x4000, 0x1000, 0, 0), MainCommand(0x10)])
        with self.assertRaises(NotFoundError):
            binary.imagebase()
        # the entrypoint is relative to the imagebase, so it can't be resolved either
        with self.assertRaises(NotFoundError):
            binary.entrypoint()

    def test_loader(self):
        self.assertEqual(self.binary.get_loader(), fixtures.DYLD_PATH)
        with self.assertRaises(NotFoundError):
            text_only_binary().get_loader()

    def test_loader_ignores_other_dylinker_commands(self):
        binary = Binary(Header(), [DylinkerCommand('DYLD_LIBRARY_PATH=/tmp', LOAD_COMMAND.DYLD_ENVIRONMENT)])
        with self.assertRaises(NotFoundError):
            binary.get_loader()


class ViewTestCase(unittest.TestCase):
    def setUp(self):
        self.binary = load_fixture()

    def test_segments_and_sections(self):
        self.assertEqual([s.name for s in self.binary.segments], ['__PAGEZERO', '__TEXT', '__LINKEDIT'])
        self.assertEqual([s.name for s in self.binary.sections], ['__text'])
        self.assertEqual([lib.name for lib in self.binary.libraries], [fixtures.LIBSYSTEM_PATH])

    def test_views_are_fresh(self):
        segments = self.binary.segments
        segments.clear()
        self.assertEqual(len(self.binary.segments), 3)

        commands = self.binary.commands
        self.binary.insert_command(DylibCommand.from_values('/usr/lib/libobjc.A.dylib'))
        self.assertEqual(len(commands), fixtures.NCMDS)
        self.assertEqual([lib.name for lib in self.binary.libraries],
                         [fixtures.LIBSYSTEM_PATH, '/usr/lib/libobjc.A.dylib'])

    def test_symbol_partition(self):
        exported = list(self.binary.get_exported_symbols())
        imported = list(self.binary.get_imported_symbols())

        self.assertEqual([s.name for s in exported], ['__mh_execute_header', '_main'])
        self.assertEqual([s.name for s in imported], ['_printf'])

        for symbol in self.binary.symbols:
            self.assertNotEqual(Binary.is_exported(symbol), Binary.is_imported(symbol))
        self.assertEqual(len(exported) + len(imported), len(self.binary.symbols))

    def test_symbol_views_are_restartable(self):
        view = self.binary.get_imported_symbols()
        self.assertEqual(len(list(view)), 1)
        self.assertEqual(len(list(view)), 1)

    def test_abstract_projections(self):
        header = self.binary.abstract_header
        self.assertEqual(header.architecture, ARCHITECTURES.ARM64)
        self.assertEqual(header.modes, {MODES.MODE_64})
        self.assertEqual(header.entrypoint, fixtures.TEXT_VMADDR + fixtures.ENTRYOFF)

        self.assertEqual(self.binary.exported_functions, ['__mh_execute_header', '_main'])
        self.assertEqual(self.binary.imported_functions, ['_printf'])
        self.assertEqual(self.binary.imported_libraries, [fixtures.LIBSYSTEM_PATH])
        self.assertEqual(len(self.binary.abstract_sections), 1)
        self.assertEqual(len(self.binary.abstract_symbols), 3)

    def test_abstract_header_needs_entrypoint(self):
        with self.assertRaises(NotFoundError):
            _ = text_only_binary().abstract_header

    def test_dump(self):
        text = str(self.binary)
        for title in ['Header', 'Commands', 'Sections', 'Symbols']:
            self.assertIn(title, text)
        self.assertIn('_printf', text)

        serialized = self.binary.serialize()
        self.assertEqual(serialized['entrypoint'], fixtures.TEXT_VMADDR + fixtures.ENTRYOFF)
        self.assertEqual(len(serialized['commands']), fixtures.NCMDS)


class PatchTestCase(unittest.TestCase):
    def setUp(self):
        self.binary = load_fixture()

    def test_patch_bytes(self):
        self.binary.patch_address(fixtures.TEXT_SECT_ADDR, b'\xde\xad\xbe\xef')
        self.assertEqual(self.binary.get_content_from_virtual_address(fixtures.TEXT_SECT_ADDR, 6),
                         b'\xde\xad\xbe\xef\x04\x05')
        self.assertEqual(self.binary.sections[0].content[:4], b'\xde\xad\xbe\xef')

    def test_patch_list_of_ints(self):
        self.binary.patch_address(fixtures.TEXT_SECT_ADDR, [0x1F, 0x20, 0x03, 0xD5])
        self.assertEqual(self.binary.get_content_from_virtual_address(fixtures.TEXT_SECT_ADDR, 4), b'\x1f\x20\x03\xd5')

    def test_patch_integer_is_written_low_byte_first(self):
        binary = text_only_binary()
        binary.patch_address(0x100000010, 0xAABB, 2)
        self.assertEqual(binary.segments[0].content[0x10:0x12], b'\xbb\xaa')

    def test_patch_integer_default_width(self):
        self.binary.patch_address(fixtures.TEXT_SECT_ADDR, 0x1122334455667788)
        self.assertEqual(self.binary.get_content_from_virtual_address(fixtures.TEXT_SECT_ADDR, 8),
                         bytes.fromhex('8877665544332211'))

    def test_patch_integer_big_endian_image(self):
        binary = text_only_binary()
        binary.header.magic = 0xCFFAEDFE
        binary.patch_address(0x100000010, 0xAABB, 2)
        self.assertEqual(binary.segments[0].content[0x10:0x12], b'\xaa\xbb')

    def test_patch_invalid_size(self):
        binary = text_only_binary()
        before = binary.segments[0].content

        with self.assertRaises(InvalidArgumentError):
            binary.patch_address(0x100000010, 0xAABB, 9)
        with self.assertRaises(InvalidArgumentError):
            binary.patch_address(0x100000010, 0xAABB, -1)

        self.assertEqual(binary.segments[0].content, before)

    def test_patch_past_end_of_content(self):
        binary = text_only_binary()
        before = binary.segments[0].content

        # 0x100 bytes of content; a 4 byte write at 0xfe would run past it
        with self.assertRaises(InvalidArgumentError):
            binary.patch_address(0x1000000FE, b'\x01\x02\x03\x04')
        # mapped, but not backed by file content
        with self.assertRaises(InvalidArgumentError):
            binary.patch_address(0x100001000, b'\x01')

        self.assertEqual(binary.segments[0].content, before)
        binary.patch_address(0x1000000FC, b'\x01\x02\x03\x04')

    def test_patch_unmapped_address(self):
        with self.assertRaises(NotFoundError):
            self.binary.patch_address(0x200000000, b'\x00')

    def test_patch_is_idempotent(self):
        self.binary.patch_address(fixtures.TEXT_SECT_ADDR + 4, b'\xaa\xbb')
        once = self.binary.segments[1].content
        self.binary.patch_address(fixtures.TEXT_SECT_ADDR + 4, b'\xaa\xbb')
        self.assertEqual(self.binary.segments[1].content, once)

    def test_read_is_truncated(self):
        binary = text_only_binary()
        data = binary.get_content_from_virtual_address(0x1000000F6, 100)
        self.assertEqual(len(data), 10)

        self.assertEqual(binary.get_content_from_virtual_address(0x100001000, 4), b'')
        with self.assertRaises(NotFoundError):
            binary.get_content_from_virtual_address(0x100002000, 4)


class MutationTestCase(unittest.TestCase):
    def setUp(self):
        self.binary = load_fixture()

    def test_insert_command(self):
        dylib = DylibCommand.from_values('/usr/lib/libobjc.A.dylib', current_version=0x00E40000)
        returned = self.binary.insert_command(dylib)

        self.assertIs(returned, dylib)
        self.assertIs(self.binary.commands[-1], dylib)
        self.assertEqual(dylib.command_offset, 32 + fixtures.SIZEOFCMDS)
        self.assertEqual(dylib.size, 56)
        self.assertEqual(self.binary.header.nb_cmds, fixtures.NCMDS + 1)
        self.assertEqual(self.binary.header.sizeof_cmds, fixtures.SIZEOFCMDS + 56)

    def test_insert_command_twice(self):
        dylib = self.binary.insert_command(DylibCommand.from_values('/usr/lib/libobjc.A.dylib'))
        with self.assertRaises(InvalidArgumentError):
            self.binary.insert_command(dylib)

    def test_insert_command_logs(self):
        previous_func, previous_level = machpatch.log.LOG_FUNC, machpatch.log.LOG_LEVEL
        messages = []
        machpatch.log.LOG_FUNC = messages.append
        machpatch.log.LOG_LEVEL = machpatch.LogLevel.DEBUG
        try:
            self.binary.insert_command(MainCommand.from_values(0x10))
        finally:
            machpatch.log.LOG_FUNC, machpatch.log.LOG_LEVEL = previous_func, previous_level

        self.assertTrue(any('Insert command' in message for message in messages))

    def test_disable_pie(self):
        self.assertTrue(self.binary.disable_pie())
        self.assertFalse(self.binary.header.has_flag(MH_FLAGS.PIE))
        self.assertFalse(self.binary.disable_pie())

    def test_disable_pie_not_pie(self):
        binary = load_fixture(flags=0x85)
        self.assertFalse(binary.disable_pie())
        self.assertEqual(binary.header.flags, 0x85)

    def test_symbols_are_owned(self):
        symbols = self.binary.symbols
        symbols.append(Symbol.from_values('_extra'))
        self.assertEqual(len(self.binary.symbols), 3)


if __name__ == '__main__':
    unittest.main()
