"""
gsdfile - Reader for GSD (Global Section Datafile) files

A Python implementation for reading the binary GSD format written by the
telescope control systems of JCMT and UKIRT. A GSD file holds a fixed header,
a table of named items and a data segment with the raw values of all items.
Item values are only decoded when they are requested, so large spectra can
be inspected without reading the whole data segment.

Features:
- Decoding of the fixed file header and of the item descriptor table
- A single read-only mapping of the data segment shared by all items
- Resolution of array dimensions from the scalar items they refer to
- NumPy arrays for array items, native Python types for scalar items
- Case-insensitive lookup by item name and lookup by 1-based item number
- Memory-efficient partial loading of array elements

License: MIT
"""

__version__ = "0.1.0"

import logging
import mmap
import os
import struct
import sys
import numpy as np
from typing import Any, BinaryIO, Dict, Iterator, List, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)


# Layout of the GSD format
# All numbers are little-endian, strings are blank padded.

# <file>         ::= <header> <item_table> <data_segment>
# <header>       ::= version:R max_items:I no_items:I start_data:I end_data:I
#                    label:C40 size:I
# <item_table>   ::= <item_record> | <item_record> <item_table>
# <item_record>  ::= array:L name:C15 namelen:W unit:C10 unitlen:W data_type:W
#                    location:I length:I no_dims:I dimnumbers:I*5
# <data_segment> ::= all bytes from start_data to end_data (inclusive)

# Fixed string widths and the maximum number of dimensions of an array item
LABEL_SIZE = 40
NAME_SIZE = 15
UNIT_SIZE = 10
MAX_DIMS = 5

# Every element of a character array occupies this many bytes
CHAR_SIZE = 16

HEADER_SIZE = 4 + 4 * 4 + LABEL_SIZE + 4
ITEM_RECORD_SIZE = 1 + NAME_SIZE + 2 + UNIT_SIZE + 2 + 2 + 4 + 4 + 4 + 4 * MAX_DIMS

# Type codes in the order of the data_type field of the item record (1-based)
GSD_TYPES = ('B', 'L', 'W', 'I', 'R', 'D', 'C')

TYPE_NAMES = {
    'B': 'byte',
    'L': 'logical',
    'W': 'word',
    'I': 'integer',
    'R': 'real',
    'D': 'double',
    'C': 'char',
}

# Size in bytes of one element of each type code
TYPE_SIZES = {
    'B': 1, 'L': 1, 'W': 2, 'I': 4,
    'R': 4, 'D': 8,
    'C': CHAR_SIZE,
}

# Types that may hold the extent of an array dimension
INTEGER_TYPES = ('B', 'W', 'I')

# Data segments smaller than this are read into memory when access='auto'
MMAP_THRESHOLD = 64 * 1024

ACCESS_MODES = ('auto', 'mmap', 'read')


class GSDError(Exception):
    """Base class of all errors raised by gsdfile."""


class FormatError(GSDError, ValueError):
    """The file does not follow the GSD layout."""


class MappingError(GSDError, IOError):
    """The data segment could not be mapped."""


class DecodeError(GSDError, ValueError):
    """A single value could not be decoded."""


class BufferUnderrun(DecodeError):
    """A decode request needs more bytes than the region provides."""


class NotFound(GSDError, KeyError):
    """No item with the requested name."""


class OutOfRange(GSDError, IndexError):
    """Item number outside the range 1..number of items."""


class GSDHeader(NamedTuple):
    """Global file descriptor at the start of every GSD file."""
    version: float
    max_items: int
    no_items: int
    start_data: int
    end_data: int
    label: str
    size: int


class Dimension(NamedTuple):
    """One axis of an array item, taken from the scalar item it refers to."""
    name: str
    unit: str
    size: int


class ByteDecoder:
    """
    Decodes primitive values from a little-endian byte region.

    GSD files are always written in little-endian byte order. Scalar values
    are converted with struct/int.from_bytes, arrays are created with NumPy
    in native byte order and byteswapped when the host is big-endian.
    """

    byteorder = 'little'
    struct_byteorder = '<'

    # Map GSD type codes to NumPy dtypes
    # Character and logical arrays are handled separately
    dtype_map = {
        'B': np.int8,      # 8-bit signed integer
        'W': np.int16,     # 16-bit signed integer
        'I': np.int32,     # 32-bit signed integer
        'R': np.float32,   # 32-bit single-precision float
        'D': np.float64,   # 64-bit double-precision float
    }

    def __init__(self):
        self.need_byteswap = sys.byteorder != self.byteorder

    def _check_region(self, data, offset: int, width: int, what: str):
        if offset < 0 or offset + width > len(data):
            raise BufferUnderrun(
                f"Cannot read {width} bytes of {what} at offset {offset}, "
                f"region has {len(data)} bytes")

    def _read_int(self, data, offset: int, width: int, what: str) -> int:
        self._check_region(data, offset, width, what)
        return int.from_bytes(data[offset:offset + width], byteorder=self.byteorder, signed=True)

    def read_byte(self, data, offset: int = 0) -> int:
        return self._read_int(data, offset, 1, 'byte')

    def read_int16(self, data, offset: int = 0) -> int:
        return self._read_int(data, offset, 2, 'word')

    def read_int32(self, data, offset: int = 0) -> int:
        return self._read_int(data, offset, 4, 'integer')

    def read_bool(self, data, offset: int = 0) -> bool:
        self._check_region(data, offset, 1, 'logical')
        return data[offset] != 0

    def read_float32(self, data, offset: int = 0) -> float:
        self._check_region(data, offset, 4, 'real')
        return struct.unpack_from(f'{self.struct_byteorder}f', data, offset)[0]

    def read_float64(self, data, offset: int = 0) -> float:
        self._check_region(data, offset, 8, 'double')
        return struct.unpack_from(f'{self.struct_byteorder}d', data, offset)[0]

    def read_string(self, data, offset: int, maxlen: int, length: Optional[int] = None) -> str:
        """
        Read a fixed-width, blank padded string.

        Args:
            data: The byte region
            offset: Start of the string in the region
            maxlen: Width of the string field
            length: Explicit length stored next to the field. The trimmed
                    string is truncated to this many characters.

        Returns:
            str: The string without trailing blanks and NULs
        """
        self._check_region(data, offset, maxlen, 'string')
        text = bytes(data[offset:offset + maxlen]).decode('latin-1').rstrip(' \x00')
        if length is not None:
            text = text[:max(length, 0)]
        return text

    def read_scalar(self, type_code: str, data, offset: int = 0) -> Any:
        """
        Read a single value of the given GSD type.

        Character values use the whole region as the string width.
        """
        if type_code == 'B':
            return self.read_byte(data, offset)
        elif type_code == 'L':
            return self.read_bool(data, offset)
        elif type_code == 'W':
            return self.read_int16(data, offset)
        elif type_code == 'I':
            return self.read_int32(data, offset)
        elif type_code == 'R':
            return self.read_float32(data, offset)
        elif type_code == 'D':
            return self.read_float64(data, offset)
        elif type_code == 'C':
            return self.read_string(data, offset, len(data) - offset)
        else:
            raise DecodeError(f"Unsupported type code: {type_code}")

    def read_array(self, type_code: str, data, offset: int, count: int) -> np.ndarray:
        """
        Read a flat array of count elements of the given GSD type.

        Args:
            type_code: The GSD type code
            data: The byte region
            offset: Start of the first element in the region
            count: Number of elements

        Returns:
            np.ndarray: 1D array in native byte order
        """
        if type_code not in TYPE_SIZES:
            raise DecodeError(f"Unsupported type code: {type_code}")

        self._check_region(data, offset, count * TYPE_SIZES[type_code], f'{count} x {TYPE_NAMES[type_code]}')

        if type_code == 'C':
            raw = np.frombuffer(data, dtype=f'S{CHAR_SIZE}', count=count, offset=offset)
            return np.array([s.decode('latin-1').rstrip(' ') for s in raw], dtype=f'U{CHAR_SIZE}')
        elif type_code == 'L':
            # 0x00 for False, anything else for True
            return np.frombuffer(data, dtype=np.uint8, count=count, offset=offset) != 0

        flat_array = np.frombuffer(data, dtype=self.dtype_map[type_code], count=count, offset=offset)
        if self.need_byteswap:
            flat_array = flat_array.byteswap()
        return flat_array


class DataSegment:
    """
    Read-only view over the data segment of a GSD file.

    The segment is either a memory mapping of the file or a bytes object
    for small segments. All items of a file share one DataSegment and only
    remember their own offset and length within it.
    """

    def __init__(self, buffer, mapping: Optional[mmap.mmap] = None, delta: int = 0, length: Optional[int] = None):
        """
        Initialize a DataSegment.

        Args:
            buffer: Object supporting the buffer protocol (bytes or mmap)
            mapping: The mmap object that has to be closed with the segment
            delta: Position of the segment start within buffer
            length: Length of the segment, defaults to the rest of buffer
        """
        self._mapping = mapping
        self._base = memoryview(buffer)
        if length is None:
            length = len(self._base) - delta
        self._view = self._base[delta:delta + length]
        self.is_mapped = mapping is not None

    def __len__(self):
        if self._view is None:
            return 0
        return len(self._view)

    @property
    def closed(self) -> bool:
        return self._view is None

    def read(self, offset: int, length: int) -> bytes:
        """
        Return a copy of length bytes starting at offset.

        Raises:
            BufferUnderrun: If the range is not inside the segment
            IOError: If the segment has been closed
        """
        if self._view is None:
            raise IOError("Data segment is closed")

        if offset < 0 or length < 0 or offset + length > len(self._view):
            raise BufferUnderrun(
                f"Range of {length} bytes at offset {offset} is outside the "
                f"data segment of {len(self._view)} bytes")

        return self._view[offset:offset + length].tobytes()

    def close(self):
        """Release the view and the underlying mapping."""
        if self._view is not None:
            self._view.release()
            self._base.release()
            self._view = None
            self._base = None
        if self._mapping is not None:
            self._mapping.close()
            self._mapping = None


class GSDItem:
    """
    Descriptor of a single GSD item with lazy access to its value.

    The value is decoded from the shared data segment only when the item is
    called (or value() is used). Array items additionally support indexing,
    which reads only the bytes of the requested elements.
    """

    def __init__(self, number: int, name: str, unit: str, type_code: str, is_array: bool,
                 offset: int, nbytes: int, ndims: int, dimnumbers: Tuple[int, ...]):
        self._number = number
        self._name = name
        self._unit = unit
        self._type = type_code
        self._is_array = is_array
        self._offset = offset
        self._nbytes = nbytes
        self._ndims = ndims
        self._dimnumbers = tuple(dimnumbers)
        self._dimensions = None
        self._segment = None
        self._decoder = None

    @property
    def number(self) -> int:
        """Item number, starting at 1"""
        return self._number

    @property
    def name(self) -> str:
        return self._name

    @property
    def unit(self) -> str:
        return self._unit

    @property
    def type(self) -> str:
        """GSD type code: one of B, L, W, I, R, D, C"""
        return self._type

    @property
    def type_name(self) -> str:
        return TYPE_NAMES[self._type]

    @property
    def is_array(self) -> bool:
        return self._is_array

    @property
    def offset(self) -> int:
        """Byte offset of the value relative to the start of the data segment"""
        return self._offset

    @property
    def nbytes(self) -> int:
        return self._nbytes

    @property
    def ndims(self) -> int:
        return self._ndims

    @property
    def dimnumbers(self) -> Tuple[int, ...]:
        """Item numbers of the scalar items holding the dimension sizes"""
        return self._dimnumbers

    @property
    def dimensions(self) -> Tuple[Dimension, ...]:
        """Resolved dimensions of an array item, empty for scalars"""
        return self._dimensions or ()

    @property
    def dimnames(self) -> Tuple[str, ...]:
        return tuple(d.name for d in self.dimensions)

    @property
    def dimunits(self) -> Tuple[str, ...]:
        return tuple(d.unit for d in self.dimensions)

    @property
    def shape(self) -> Tuple[int, ...]:
        """
        Shape of the value.

        Scalars have the shape (). An array item without declared dimensions
        is treated as a flat array filling its byte length.
        """
        if not self._is_array:
            return ()
        if self._dimensions:
            return tuple(d.size for d in self._dimensions)
        return (self._nbytes // TYPE_SIZES[self._type],)

    @property
    def size(self) -> int:
        """Number of elements"""
        size = 1
        for dim in self.shape:
            size *= dim
        return size

    def __repr__(self):
        kind = 'x'.join(str(d) for d in self.shape) if self._is_array else 'scalar'
        return f"<GSDItem {self._number} {self._name!r} {self._type} {kind}>"

    def _attach(self, segment: DataSegment, decoder: ByteDecoder):
        """Attach the shared data segment. Only called while the file is loaded."""
        self._segment = segment
        self._decoder = decoder

    def _set_dimensions(self, dimensions: Tuple[Dimension, ...]):
        if self._dimensions is not None:
            raise AttributeError(f"Dimensions of item {self._number} are already resolved")
        self._dimensions = tuple(dimensions)

    def _read_elements(self, first: int, count: int) -> np.ndarray:
        """Read count elements starting at the flat element index first."""
        width = TYPE_SIZES[self._type]
        end = (first + count) * width
        if end > self._nbytes:
            raise BufferUnderrun(
                f"Item '{self._name}' needs {end} bytes for {first + count} elements "
                f"but has only {self._nbytes} bytes")

        binary_data = self._segment.read(self._offset + first * width, count * width)
        return self._decoder.read_array(self._type, binary_data, 0, count)

    def value(self) -> Any:
        """
        Decode the value of the item.

        Returns:
            For scalar items: int, bool, float or str depending on the type
            For array items: np.ndarray with the resolved shape (column-major
                             element order, as written to the file)

        Raises:
            BufferUnderrun: If the item is shorter than its type or shape needs
            IOError: If the file has been closed
        """
        if self._segment is None:
            raise IOError(f"Item '{self._name}' is not attached to a data segment")

        if not self._is_array:
            binary_data = self._segment.read(self._offset, self._nbytes)
            return self._decoder.read_scalar(self._type, binary_data, 0)

        shape = self.shape
        flat_array = self._read_elements(0, self.size)
        return flat_array.reshape(shape, order='F')

    def __call__(self) -> Any:
        return self.value()

    def __getitem__(self, item):
        """
        Access elements of an array item without decoding the whole array.

        Args:
            item: The index specifier, which can be:
                - Integer index into the flat element sequence (storage order)
                - Tuple with one integer per dimension
                - Slice over the flat element sequence

        Returns:
            A single element for integer and tuple indices, a 1D np.ndarray
            for slices

        Raises:
            TypeError: If the item is a scalar or the index has the wrong type
            IndexError: If an index is out of bounds
        """
        if not self._is_array:
            raise TypeError(f"Scalar item '{self._name}' does not support indexing")

        if self._segment is None:
            raise IOError(f"Item '{self._name}' is not attached to a data segment")

        size = self.size

        if isinstance(item, tuple):
            shape = self.shape
            if len(item) != len(shape):
                raise IndexError(f"Item '{self._name}' has {len(shape)} dimensions, got {len(item)} indices")

            # First dimension varies fastest
            index = 0
            stride = 1
            for axis, (idx, dim_size) in enumerate(zip(item, shape)):
                if not _is_integer(idx):
                    raise TypeError(f"Indices must be integers, not {type(idx).__name__}")
                if idx < 0:
                    idx += dim_size
                if idx < 0 or idx >= dim_size:
                    raise IndexError(f"Index {idx} out of bounds for dimension {axis} with size {dim_size}")
                index += idx * stride
                stride *= dim_size
            return self._read_elements(index, 1)[0].item()

        elif _is_integer(item):
            index = item + size if item < 0 else item
            if index < 0 or index >= size:
                raise IndexError(f"Index {item} out of range for item '{self._name}' with {size} elements")
            return self._read_elements(index, 1)[0].item()

        elif isinstance(item, slice):
            indices = range(*item.indices(size))
            if len(indices) == 0:
                return self._read_elements(0, 0)

            # Read the contiguous block covering the slice and pick the elements
            first = min(indices[0], indices[-1])
            last = max(indices[0], indices[-1])
            block = self._read_elements(first, last - first + 1)
            return block[np.asarray(indices) - first]

        else:
            raise TypeError(f"Invalid index type: {type(item).__name__}")


def _is_integer(value) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


class ItemIndex:
    """Lookup of items by case-insensitive name and by 1-based number."""

    def __init__(self, items):
        self._items = tuple(items)
        self._by_name: Dict[str, GSDItem] = {}
        for item in self._items:
            key = item.name.upper()
            if key in self._by_name:
                logger.warning("Duplicate item name '%s' (items %d and %d), keeping the first",
                               item.name, self._by_name[key].number, item.number)
                continue
            self._by_name[key] = item

    def __len__(self):
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def __contains__(self, name):
        return isinstance(name, str) and name.upper() in self._by_name

    def names(self) -> List[str]:
        return [item.name for item in self._items]

    def by_name(self, name: str) -> GSDItem:
        try:
            return self._by_name[name.upper()]
        except KeyError:
            raise NotFound(f"Item {name.upper()} is not present in the file") from None

    def by_number(self, number: int) -> GSDItem:
        if not _is_integer(number):
            raise TypeError(f"Item numbers must be integers, not {type(number).__name__}")
        if number < 1 or number > len(self._items):
            raise OutOfRange(f"Requested item, {number}, is outside the file limits of 1 and {len(self._items)}")
        return self._items[number - 1]


class GSDFileReader:
    """
    A class for decoding the structure of a GSD file.

    The reader is used once while a File is loaded: it reads the header and
    the item table from the open file object, maps the data segment and
    resolves the dimensions of the array items. The items it produces are
    not modified after resolve_dimensions() returns.
    """

    def __init__(self, file: BinaryIO):
        """
        Initialize a GSDFileReader object.

        Args:
            file: The binary file object to read from, positioned at the header
        """
        self.file = file
        self.decoder = ByteDecoder()

    def _read_exact(self, size: int, what: str) -> bytes:
        binary_data = self.file.read(size)
        if len(binary_data) != size:
            raise FormatError(f"{what} truncated: expected {size} bytes, got {len(binary_data)}")
        return binary_data

    def read_header(self) -> GSDHeader:
        """
        Read the global file descriptor from the current file position.

        Returns:
            GSDHeader: The decoded header

        Raises:
            FormatError: If fewer than HEADER_SIZE bytes are available
        """
        binary_data = self._read_exact(HEADER_SIZE, 'header')
        d = self.decoder

        header = GSDHeader(
            version=d.read_float32(binary_data, 0),
            max_items=d.read_int32(binary_data, 4),
            no_items=d.read_int32(binary_data, 8),
            start_data=d.read_int32(binary_data, 12),
            end_data=d.read_int32(binary_data, 16),
            label=d.read_string(binary_data, 20, LABEL_SIZE),
            size=d.read_int32(binary_data, 20 + LABEL_SIZE),
        )

        if header.no_items < 0:
            raise FormatError(f"header declares a negative number of items: {header.no_items}")

        logger.debug("GSD header: version %s, %d of %d items, data %d-%d, label %r",
                     header.version, header.no_items, header.max_items,
                     header.start_data, header.end_data, header.label)
        return header

    def read_item_table(self, header: GSDHeader) -> Tuple[GSDItem, ...]:
        """
        Read the item descriptors that follow the header.

        The whole table is read at once and decoded record by record. Item
        numbers are assigned in record order starting at 1.

        Args:
            header: The header read before

        Returns:
            Tuple[GSDItem, ...]: Items with offsets relative to the data segment

        Raises:
            FormatError: On a short read, an invalid type code or too many dimensions
        """
        binary_data = self._read_exact(ITEM_RECORD_SIZE * header.no_items, 'item table')
        d = self.decoder
        items = []

        for i in range(header.no_items):
            number = i + 1
            pos = i * ITEM_RECORD_SIZE

            is_array = d.read_bool(binary_data, pos)
            pos += 1

            namelen = d.read_int16(binary_data, pos + NAME_SIZE)
            name = d.read_string(binary_data, pos, NAME_SIZE, namelen)
            pos += NAME_SIZE + 2

            unitlen = d.read_int16(binary_data, pos + UNIT_SIZE)
            unit = d.read_string(binary_data, pos, UNIT_SIZE, unitlen)
            pos += UNIT_SIZE + 2

            data_type = d.read_int16(binary_data, pos)
            location = d.read_int32(binary_data, pos + 2)
            nbytes = d.read_int32(binary_data, pos + 6)
            ndims = d.read_int32(binary_data, pos + 10)
            pos += 14

            dimnumbers = tuple(d.read_int32(binary_data, pos + 4 * k) for k in range(MAX_DIMS))

            if not 1 <= data_type <= len(GSD_TYPES):
                raise FormatError(f"Item {number} ({name}) has invalid type code {data_type}")
            if nbytes < 0:
                raise FormatError(f"Item {number} ({name}) has negative length {nbytes}")

            # Some files store -1 for scalar items
            if ndims < 0:
                ndims = 0
            if ndims > MAX_DIMS:
                raise FormatError(f"Item {number} ({name}) declares {ndims} dimensions, at most {MAX_DIMS} are allowed")

            items.append(GSDItem(
                number=number,
                name=name,
                unit=unit,
                type_code=GSD_TYPES[data_type - 1],
                is_array=is_array,
                offset=location - header.start_data,
                nbytes=nbytes,
                ndims=ndims,
                dimnumbers=dimnumbers,
            ))

        logger.debug("Read %d item descriptors", len(items))
        return tuple(items)

    def map_data(self, header: GSDHeader, items: Tuple[GSDItem, ...], access: str = 'auto') -> DataSegment:
        """
        Map the data segment and attach it to all items.

        Args:
            header: The file header with the data segment bounds
            items: The items read from the item table
            access: 'mmap', 'read' or 'auto' (map only segments of at least
                    MMAP_THRESHOLD bytes)

        Returns:
            DataSegment: The segment shared by all items

        Raises:
            MappingError: If the segment is not inside the file or cannot be mapped
            FormatError: If an item lies outside the segment
        """
        start = header.start_data
        length = header.end_data - header.start_data + 1
        file_size = os.fstat(self.file.fileno()).st_size

        if start < 0 or length < 0 or start + length > file_size:
            raise MappingError(
                f"Data segment {header.start_data}-{header.end_data} is outside the file of {file_size} bytes")

        if access == 'auto':
            access = 'mmap' if length >= MMAP_THRESHOLD else 'read'

        if access == 'mmap' and length > 0:
            # Mappings must start at a multiple of the allocation granularity
            gran = mmap.ALLOCATIONGRANULARITY
            base = (start // gran) * gran
            delta = start - base
            try:
                mapping = mmap.mmap(self.file.fileno(), delta + length, access=mmap.ACCESS_READ, offset=base)
            except (OSError, ValueError) as e:
                raise MappingError(f"Cannot map data segment: {e}") from e
            segment = DataSegment(mapping, mapping=mapping, delta=delta, length=length)
        else:
            self.file.seek(start)
            binary_data = self.file.read(length)
            if len(binary_data) != length:
                raise MappingError(f"Short read of data segment: expected {length} bytes, got {len(binary_data)}")
            segment = DataSegment(binary_data)

        logger.debug("Data segment of %d bytes at %d (%s)", length, start,
                     'mapped' if segment.is_mapped else 'in memory')

        if header.size not in (file_size, length):
            logger.debug("Header size field %d matches neither the file (%d) nor the data segment (%d)",
                         header.size, file_size, length)

        for item in items:
            if item.offset < 0 or item.offset + item.nbytes > length:
                segment.close()
                raise FormatError(
                    f"Item {item.number} ({item.name}) occupies bytes {item.offset}-{item.offset + item.nbytes} "
                    f"outside the data segment of {length} bytes")
            item._attach(segment, self.decoder)

        return segment

    def resolve_dimensions(self, items: Tuple[GSDItem, ...]):
        """
        Attach the dimensions to all array items.

        Each dimension of an array item is given by the number of a scalar
        integer item whose value is the size of that dimension. The values
        are decoded through the data segment, so map_data() must have been
        called first.

        Raises:
            FormatError: If a dimension refers to a missing, array or non-integer item
        """
        for item in items:
            if not item.is_array:
                continue

            dimensions = []
            for axis in range(item.ndims):
                ref = item.dimnumbers[axis]
                if ref < 1 or ref > len(items):
                    raise FormatError(
                        f"Dimension {axis} of item {item.number} ({item.name}) refers to "
                        f"item {ref}, outside 1..{len(items)}")
                if ref == item.number:
                    raise FormatError(f"Dimension {axis} of item {item.number} ({item.name}) refers to itself")

                dimitem = items[ref - 1]
                if dimitem.is_array or dimitem.type not in INTEGER_TYPES:
                    raise FormatError(
                        f"Dimension {axis} of item {item.number} ({item.name}) refers to "
                        f"{dimitem.type_name} {'array' if dimitem.is_array else 'scalar'} item "
                        f"{ref} ({dimitem.name}), not a scalar integer")

                try:
                    size = dimitem.value()
                except DecodeError as e:
                    raise FormatError(f"Cannot read dimension item {ref} ({dimitem.name}): {e}") from e

                if size < 0:
                    raise FormatError(f"Dimension item {ref} ({dimitem.name}) has negative size {size}")

                dimensions.append(Dimension(dimitem.name, dimitem.unit, size))

            item._set_dimensions(tuple(dimensions))
            logger.debug("Item %d (%s) has shape %s", item.number, item.name, item.shape)


class File:
    """
    A GSD file opened for reading.

    The header, the item table and the dimensions of all array items are
    read when the object is created; item values are decoded on demand from
    a read-only view of the data segment. Either the file is loaded
    completely or an exception is raised.

    Example:
        >>> with gsdfile.File("obs_das_0042.gsd") as gsd:
        ...     spectrum = gsd["C13DAT"]()
        ...     print(gsd.label, spectrum.shape)
    """

    def __init__(self, filename, access: str = 'auto'):
        """
        Open and load a GSD file.

        Args:
            filename: Path to the file
            access: How the data segment is accessed. 'mmap' maps it,
                    'read' reads it into memory and 'auto' maps segments
                    of at least MMAP_THRESHOLD bytes.
        """
        if access not in ACCESS_MODES:
            raise ValueError(f"Unsupported access mode: {access}")

        self.filename = os.fspath(filename)
        self.access = access

        logger.debug("Opening GSD file '%s'", self.filename)
        with open(self.filename, 'rb') as file:
            reader = GSDFileReader(file)
            header = reader.read_header()
            items = reader.read_item_table(header)
            segment = reader.map_data(header, items, access=access)

        try:
            reader.resolve_dimensions(items)
            index = ItemIndex(items)
        except Exception:
            segment.close()
            raise

        self._header = header
        self._items = items
        self._index = index
        self._segment = segment

    def __enter__(self):
        """Context manager entry point."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit point."""
        self.close()

    def close(self):
        """Release the data segment. Item values can no longer be decoded."""
        self._segment.close()

    @property
    def closed(self) -> bool:
        return self._segment.closed

    @property
    def header(self) -> GSDHeader:
        return self._header

    @property
    def label(self) -> str:
        return self._header.label

    @property
    def version(self) -> float:
        return self._header.version

    @property
    def num_items(self) -> int:
        return len(self._items)

    def items(self) -> Tuple[GSDItem, ...]:
        """
        Return all items of the file.

        The returned tuple is indexed from zero, unlike the item numbers
        used by item_by_number().
        """
        return tuple(self._items)

    def keys(self) -> List[str]:
        """Return the item names in file order."""
        return self._index.names()

    def item_by_name(self, name: str) -> GSDItem:
        """
        Return an item by name. Item names are case insensitive.

        Raises:
            NotFound: If no item has this name
        """
        return self._index.by_name(name)

    def item_by_number(self, number: int) -> GSDItem:
        """
        Return an item by number.

        Args:
            number: The item number (starting at 1, maximum value num_items)

        Raises:
            OutOfRange: If the number is outside 1..num_items
        """
        return self._index.by_number(number)

    def __getitem__(self, key):
        """
        Access an item by name (str) or by number (int).

        Returns:
            GSDItem: Call it to decode the value
        """
        if isinstance(key, str):
            return self.item_by_name(key)
        return self.item_by_number(key)

    def __contains__(self, name):
        return name in self._index

    def __iter__(self) -> Iterator[GSDItem]:
        return iter(self._items)

    def __len__(self):
        return len(self._items)

    def __repr__(self):
        return f"<gsdfile.File {self.filename!r} items={len(self._items)}>"

    def __str__(self):
        try:
            maindata = self.item_by_name('C13DAT')
            datastring = f" Data array size: {maindata.size} elements"
        except NotFound:
            datastring = " No C13DAT"
        return f"GSD file: {self.filename} Number of items: {self.num_items}{datastring}"

    def dump(self, max_values: int = 1024, values_per_line: int = 5) -> Iterator[str]:
        """
        Iterator over a text dump of the whole file, one line per step.

        The output follows the layout of the gsdprint utility: a short
        summary of the header followed by one line per scalar item and a
        block per array item.

        Args:
            max_values: Maximum number of values shown for an array item
            values_per_line: Number of array values per output line
        """
        if self.closed:
            raise IOError("File is closed")

        divider = '-' * 53
        yield divider
        yield ' G S D   P R I N T'
        yield divider
        yield ''
        yield f' Filename       : {self.filename}'
        yield f' GSD version    : {self.version}'
        yield f' Label          : {self.label}'
        yield f' Number of item : {self.num_items}'
        yield ''
        yield 'Name            Unit            Type    Arr?    Value'
        yield divider

        for item in self._items:
            prefix = f"{item.name:<16}{item.unit:<16}{item.type:<8}{'T' if item.is_array else 'F':<8}"

            if not item.is_array:
                yield prefix + _format_value(item.value())
                continue

            yield divider
            dims = ' x '.join(f"{d.name}={d.size}" for d in item.dimensions) or str(item.size)
            yield prefix + f"[{dims}]"

            values = item[:max_values]
            for start in range(0, len(values), values_per_line):
                chunk = values[start:start + values_per_line]
                yield '    ' + ' '.join(_format_value(v.item()) for v in chunk)
            if item.size > max_values:
                yield f"    ... {item.size - max_values} more values"


def _format_value(value) -> str:
    if isinstance(value, bool):
        return 'T' if value else 'F'
    elif isinstance(value, float):
        return f"{value:.6g}"
    return str(value)
