#
#  machpatch | machpatch_macho
#  base.py
#
#
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#

from abc import ABC, abstractmethod


class Constructable(ABC):
    """
    Standardized API for objects we load and may want to create or re-emit.

    All objects should be loadable and serializable in both directions, to allow patching, creation,
        and standard loading, with hopefully not too much overhead being shared between the three.
    """

    @classmethod
    @abstractmethod
    def from_bytes(cls, *args, **kwargs):
        """
        Build an instance of the subclass from raw bytes

        Implementation/Args left up to implementations, but should usually follow `from_bytes(raw: bytes)`

        :return:
        """

    @classmethod
    @abstractmethod
    def from_values(cls, *args, **kwargs):
        """
        Build an instance of the subclass from the set of values required to create it.

        :return:
        """

    @abstractmethod
    def raw_bytes(self, *args, **kwargs) -> bytes:
        """
        Built raw byte representation of this item

        :return:
        """
