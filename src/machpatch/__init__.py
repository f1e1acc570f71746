from machpatch.machpatch import load_macho_file, load_binary, write_binary, dump_binary

from machpatch.abstract import AbstractBinary, AbstractHeader, ARCHITECTURES, MODES
from machpatch.binary import Binary
from machpatch.builder import Builder
from machpatch.exceptions import (MalformedMachOException, UnsupportedFiletypeException, NotFoundError,
                                  ConversionError, InvalidArgumentError, BuildError)
from machpatch.header import Header
from machpatch.load_commands import (LoadCommand, SegmentCommand, Section, DylibCommand, DylinkerCommand,
                                     MainCommand, SymbolCommand)
from machpatch.parser import MachOFile, MachOFileType, MachOParser, Slice
from machpatch.symbols import Symbol, SymbolView
from machpatch.util import MACHPATCH_VERSION, ignore, opts, log, LogLevel
