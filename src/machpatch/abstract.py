#
#  machpatch | machpatch
#  abstract.py
#
#  Format-agnostic views over an executable image. Higher level code that wants to treat images the same
#    regardless of their container format should only rely on what's declared here.
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Set


class ARCHITECTURES(Enum):
    NONE = 0
    ARM = 1
    ARM64 = 2
    MIPS = 3
    X86 = 4
    PPC = 5
    SPARC = 6


class MODES(Enum):
    MODE_16 = 1
    MODE_32 = 2
    MODE_64 = 3
    ARM = 4
    THUMB = 5


class AbstractHeader:
    """
    Generic summary of an image header.

    :ivar ARCHITECTURES architecture:
    :ivar Set[MODES] modes:
    :ivar int entrypoint: Absolute virtual address execution starts at
    """

    def __init__(self, architecture=ARCHITECTURES.NONE, modes: Set[MODES] = None, entrypoint=0):
        self.architecture = architecture
        self.modes = set(modes) if modes else set()
        self.entrypoint = entrypoint

    @property
    def is_32(self) -> bool:
        return MODES.MODE_32 in self.modes

    @property
    def is_64(self) -> bool:
        return MODES.MODE_64 in self.modes

    def serialize(self):
        return {
            'architecture': self.architecture.name,
            'modes': sorted(mode.name for mode in self.modes),
            'entrypoint': self.entrypoint
        }

    def __eq__(self, other):
        if not isinstance(other, AbstractHeader):
            return False
        return (self.architecture, self.modes, self.entrypoint) == (other.architecture, other.modes, other.entrypoint)

    def __str__(self):
        return f'Architecture: {self.architecture.name} | Modes: {sorted(m.name for m in self.modes)} | ' \
               f'Entrypoint: {hex(self.entrypoint)}'


class AbstractBinary(ABC):
    """
    Read-only, format independent projections. Implementations derive all of these from their own state on every
        call; nothing here holds state of its own.
    """

    @abstractmethod
    def get_abstract_header(self) -> AbstractHeader:
        """
        Architecture, modes, and entrypoint of the image
        """

    @abstractmethod
    def get_abstract_sections(self) -> List:
        """
        Every section of the image, in file order
        """

    @abstractmethod
    def get_abstract_symbols(self) -> List:
        """
        Every symbol of the image, in symbol table order
        """

    @abstractmethod
    def get_abstract_exported_functions(self) -> List[str]:
        pass

    @abstractmethod
    def get_abstract_imported_functions(self) -> List[str]:
        pass

    @abstractmethod
    def get_abstract_imported_libraries(self) -> List[str]:
        pass

    @property
    def abstract_header(self) -> AbstractHeader:
        return self.get_abstract_header()

    @property
    def abstract_sections(self) -> List:
        return self.get_abstract_sections()

    @property
    def abstract_symbols(self) -> List:
        return self.get_abstract_symbols()

    @property
    def exported_functions(self) -> List[str]:
        return self.get_abstract_exported_functions()

    @property
    def imported_functions(self) -> List[str]:
        return self.get_abstract_imported_functions()

    @property
    def imported_libraries(self) -> List[str]:
        return self.get_abstract_imported_libraries()
