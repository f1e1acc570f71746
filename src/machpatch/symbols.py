#
#  machpatch | machpatch
#  symbols.py
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
from typing import Callable, Iterator, List, Union

from machpatch_macho import N_TYPE, N_EXT, N_TYPE_VALUES, nlist, nlist_64, Struct
from machpatch_macho.base import Constructable


class Symbol(Constructable):
    """
    A symbol table entry.

    `is_external` is the single classifier used to split symbols into imports and exports: a symbol is external
        when it is undefined in this image (its definition lives elsewhere and gets bound at load time).
    """

    @classmethod
    def from_bytes(cls, raw: bytes, name='', is64=True, byte_order="little") -> 'Symbol':
        entry = Struct.create_with_bytes(nlist_64 if is64 else nlist, raw, byte_order)
        return cls.from_struct(entry, name)

    @classmethod
    def from_struct(cls, entry: Union[nlist, nlist_64], name='') -> 'Symbol':
        return cls(name=name, type=entry.type, sect=entry.sect, desc=entry.desc, value=entry.value)

    @classmethod
    def from_values(cls, name, value=0, external=False, sect=0, desc=0) -> 'Symbol':
        """
        :param external: True for an undefined (imported) symbol, False for one defined in a section
        """
        if external:
            sym_type = N_TYPE_VALUES.UNDF | N_EXT
        else:
            sym_type = N_TYPE_VALUES.SECT | N_EXT
        return cls(name=name, type=int(sym_type), sect=sect, desc=desc, value=value)

    def __init__(self, name='', type=0, sect=0, desc=0, value=0):
        self.name = name
        self.type = type
        self.sect = sect
        self.desc = desc
        self.value = value

    @property
    def is_external(self) -> bool:
        return (self.type & N_TYPE) == N_TYPE_VALUES.UNDF

    @property
    def types(self) -> List[str]:
        try:
            return [N_TYPE_VALUES(self.type & N_TYPE).name]
        except ValueError:
            return []

    def raw_bytes(self, str_index=0, is64=True, byte_order="little") -> bytes:
        return Struct.create_with_values(nlist_64 if is64 else nlist,
                                         [str_index, self.type, self.sect, self.desc, self.value], byte_order).raw

    def serialize(self):
        return {'name': self.name, 'value': self.value, 'type': self.type, 'external': self.is_external}

    def __str__(self):
        kind = 'imported' if self.is_external else 'exported'
        return f'{self.name} ({kind}) value={hex(self.value)} type={hex(self.type)} sect={self.sect}'


class SymbolView:
    """
    Lazily filtered, restartable view of a symbol list. Each iteration re-filters the list it was created over,
        so it reflects whatever is in that list at the time of iteration.
    """

    def __init__(self, symbols: List[Symbol], predicate: Callable[[Symbol], bool]):
        self._symbols = symbols
        self._predicate = predicate

    def __iter__(self) -> Iterator[Symbol]:
        return (symbol for symbol in self._symbols if self._predicate(symbol))

    def __len__(self):
        return sum(1 for _ in self)

    def __bool__(self):
        return any(True for _ in self)

    def __getitem__(self, index):
        return list(self)[index]
