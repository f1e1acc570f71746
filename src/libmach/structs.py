#
#  machpatch | libmach
#  structs.py
#
#  Struct representation behaving like a mutable named tuple, which handles packing/unpacking to raw bytes
#    behind the scenes.
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#

# Field sizes double as type tags; the upper half of the value holds the type, the lower half the byte count.
type_mask = 0xffff0000
size_mask = 0xffff

type_uint = 0
type_str = 0x20000
type_bytes = 0x30000

uint8_t = 1
uint16_t = 2
uint32_t = 4
uint64_t = 8

# char_t[16] is a 16 byte, null padded string field. bytes_t[n] is an n byte opaque field.
char_t = [type_str | i for i in range(65)]
bytes_t = [type_bytes | i for i in range(65)]


def _uint_to_int(uint, bits):
    """
    Assume an int was read from binary as an unsigned int,

    decode it as a two's compliment signed integer

    :param uint:
    :param bits:
    :return:
    """
    if (uint & (1 << (bits - 1))) != 0:
        uint = uint - (1 << bits)
    return uint


class Struct:
    """
    Namedtuple-esque Struct representation. Can be unpacked from bytes or manually created with existing
        field values.

    Subclasses declare a ``FIELDS`` dict mapping field names to sizes (``uint32_t``, ``char_t[16]``, ...).

    Fields are exposed as read-write attributes. The ``.raw`` attribute is rebuilt from the current field values
        every time it is read, so writes to fields are always reflected in it.
    """

    FIELDS = {}

    @classmethod
    def size(cls) -> int:
        if '_SIZE' not in cls.__dict__:
            cls._SIZE = sum(value & size_mask for value in cls.FIELDS.values())
        return cls._SIZE

    @staticmethod
    def create_with_bytes(struct_class, raw, byte_order="little"):
        """
        Unpack a struct from raw bytes

        :param struct_class: Struct subclass
        :param raw: Bytes, at least struct_class.size() long
        :param byte_order: Little/Big Endian Struct Unpacking
        :return: struct_class Instance
        """
        instance = struct_class(byte_order)
        raw = bytes(raw[:struct_class.size()])

        if len(raw) < struct_class.size():
            raise ValueError(f'{struct_class.__name__} needs {struct_class.size()} bytes, got {len(raw)}')

        current_off = 0
        for field, value in struct_class.FIELDS.items():
            field_type = value & type_mask
            size = value & size_mask
            data = raw[current_off:current_off + size]

            if field_type == type_str:
                field_value = data.split(b'\x00')[0].decode('utf-8', errors='surrogateescape')
            elif field_type == type_bytes:
                field_value = data
            else:
                field_value = int.from_bytes(data, byte_order)

            instance._field_offsets[field] = current_off
            setattr(instance, field, field_value)
            current_off += size

        return instance

    @staticmethod
    def create_with_values(struct_class, values, byte_order="little"):
        """
        Pack/Create a struct given field values

        :param struct_class: Struct subclass
        :param values: List of values, in field order
        :param byte_order:
        :return: struct_class Instance
        """
        instance = struct_class(byte_order)

        if len(values) != len(struct_class.FIELDS):
            raise ValueError(f'{struct_class.__name__} takes {len(struct_class.FIELDS)} values, got {len(values)}')

        current_off = 0
        for field, value in zip(struct_class.FIELDS, values):
            instance._field_offsets[field] = current_off
            setattr(instance, field, value)
            current_off += struct_class.FIELDS[field] & size_mask

        return instance

    @property
    def raw(self) -> bytes:
        raw = bytearray()
        for field, value in self.FIELDS.items():
            field_type = value & type_mask
            size = value & size_mask
            field_dat = getattr(self, field)

            if field_type == type_str:
                data = field_dat.encode('utf-8', errors='surrogateescape')
                if len(data) > size:
                    raise ValueError(f'{field}: "{field_dat}" does not fit in {size} bytes')
                data += b'\x00' * (size - len(data))
            elif field_type == type_bytes:
                data = bytes(field_dat).ljust(size, b'\x00')[:size]
            else:
                data = (field_dat & ((1 << (size * 8)) - 1)).to_bytes(size, byteorder=self.byte_order)

            raw += data

        return bytes(raw)

    def field_offset(self, field) -> int:
        return self._field_offsets[field]

    def signed(self, field) -> int:
        return _uint_to_int(getattr(self, field), (self.FIELDS[field] & size_mask) * 8)

    def serialize(self):
        struct_dict = {'type': self.__class__.__name__}

        for field in self.FIELDS:
            field_item = getattr(self, field)
            if isinstance(field_item, (bytes, bytearray)):
                field_item = field_item.hex()
            struct_dict[field] = field_item

        return struct_dict

    def __eq__(self, other):
        if not isinstance(other, Struct) or other.FIELDS.keys() != self.FIELDS.keys():
            return False
        return all(getattr(self, field) == getattr(other, field) for field in self.FIELDS)

    def __ne__(self, other):
        return not self.__eq__(other)

    def __repr__(self):
        return str(self)

    def __str__(self):
        text = f'{self.__class__.__name__}('
        for field in self.FIELDS:
            attr = getattr(self, field)
            field_item = hex(attr) if isinstance(attr, int) else attr
            text += f'{field}={field_item}, '
        return text[:-2] + ')'

    def __init__(self, byte_order="little"):
        if not self.FIELDS:
            raise AssertionError("Do not use the bare Struct class; it must be implemented in an actual type")

        self.byte_order = byte_order
        self._field_offsets = {}

        for field, value in self.FIELDS.items():
            field_type = value & type_mask
            if field_type == type_str:
                setattr(self, field, '')
            elif field_type == type_bytes:
                setattr(self, field, b'')
            else:
                setattr(self, field, 0)

        self.off = 0
