"""
GSD File Demo Script

This script demonstrates reading GSD files with gsdfile: the file header,
lookup of items by name and number, lazy decoding of values and partial
access to array elements.

Usage:
    python gsdfile_demo.py [file.gsd]

Without an argument a small synthetic spectrum file is written first.
"""

import os
import struct
import sys

import numpy as np

sys.path.append("lib")
import gsdfile

#---------------------------------
# 0. Create a synthetic GSD file
#---------------------------------

def write_example(filename):
    """Write a file with two dimension items and a 4x3 spectrum."""
    nch, nspec = 4, 3
    spectrum = np.arange(nch * nspec, dtype='<f4') * 0.5
    items = [
        # name, unit, type number, array flag, raw data, dimension references
        ('C3NCH', 'channels', 4, False, struct.pack('<i', nch), []),
        ('C3NSPEC', 'spectra', 4, False, struct.pack('<i', nspec), []),
        ('C1TEL', '', 7, False, b'JCMT'.ljust(16), []),
        ('C4AZ', 'degrees', 6, False, struct.pack('<d', 183.25), []),
        ('C13DAT', 'K', 5, True, spectrum.tobytes(order='F'), [1, 2]),
    ]

    start_data = 64 + 64 * len(items)
    segment = b''.join(item[4] for item in items)
    records = []
    location = start_data
    for name, unit, type_number, is_array, data, dims in items:
        records.append(struct.pack(
            '<B15sh10shhiii5i', int(is_array),
            name.encode('latin-1').ljust(15), len(name),
            unit.encode('latin-1').ljust(10), len(unit),
            type_number, location, len(data), len(dims),
            *(dims + [0] * (5 - len(dims)))))
        location += len(data)

    header = struct.pack('<f4i40si', 5.3, len(items), len(items), start_data,
                         start_data + len(segment) - 1, b'DEMO SPECTRUM'.ljust(40),
                         start_data + len(segment))
    with open(filename, 'wb') as f:
        f.write(header + b''.join(records) + segment)


if len(sys.argv) > 1:
    test_file = sys.argv[1]
else:
    test_file = "gsdfile_demo.gsd"
    write_example(test_file)

print("GSD File Demo")
print("=============")

#---------------------------------
# 1. File header and item table
#---------------------------------
print("\n1. File header and item table")
print("-----------------------------")

with gsdfile.File(test_file) as gsd:
    print(gsd)
    print(f"Version: {gsd.version}, label: {gsd.label!r}")
    print(f"File size: {os.path.getsize(test_file)} bytes, {len(gsd)} items")

    print("\n1.1 Item names:")
    print(gsd.keys())

    print("\n1.2 Item descriptors:")
    for item in gsd.items():
        print(f"  {item.number:3d} {item.name:<16} {item.type_name:<8} "
              f"{item.unit:<10} shape={item.shape}")

#---------------------------------
# 2. Lookup and lazy decoding
#---------------------------------
print("\n\n2. Lookup and lazy decoding")
print("---------------------------")

with gsdfile.File(test_file) as gsd:
    print("\n2.1 Lookup by name is case insensitive:")
    print(gsd['c1tel'] is gsd['C1TEL'], gsd['C1TEL']())

    print("\n2.2 Lookup by item number (starting at 1):")
    print(gsd[1].name, gsd[1]())

    print("\n2.3 Missing items raise KeyError:")
    try:
        gsd['C13SPV']
    except KeyError as e:
        print(f"  {e}")

    if 'C13DAT' in gsd:
        data = gsd['C13DAT']
        print("\n2.4 Dimensions of the main data array:")
        for dim in data.dimensions:
            print(f"  {dim.name} = {dim.size} {dim.unit}")

        print("\n2.5 Decode the whole array:")
        print(data())

        print("\n2.6 Partial access without decoding the whole array:")
        print(f"data[0] = {data[0]}")
        print(f"data[-1] = {data[-1]}")
        if data.ndims == 2:
            print(f"data[1, 2] = {data[1, 2]}")
        print(f"data[2:6] = {data[2:6]}")

#---------------------------------
# 3. Text dump
#---------------------------------
print("\n\n3. Text dump")
print("------------")

with gsdfile.File(test_file) as gsd:
    for line in gsd.dump(max_values=20):
        print(line)

if len(sys.argv) == 1:
    os.remove(test_file)

print("\nDemo completed successfully!")
