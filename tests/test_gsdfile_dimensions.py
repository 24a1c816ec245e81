"""
Unit tests for gsdfile - Dimension resolution

Array items name scalar items whose values give the size of each
dimension. These tests cover the resolved dimensions and the structural
errors of dimension references.
"""

import os
import sys
import tempfile
import pytest
import numpy as np

# Add the lib directory to the path to import gsdfile
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))) + "/lib")
sys.path.append(os.path.dirname(os.path.abspath(__file__)))
import gsdfile
from gsd_builder import Item, write_gsd, spectrum_items


@pytest.fixture
def temp_file():
    """Set up a temporary file for tests."""
    temp = tempfile.NamedTemporaryFile(delete=False)
    temp.close()
    yield temp
    # Clean up temporary files after tests
    if os.path.exists(temp.name):
        os.unlink(temp.name)

def test_resolved_dimensions(temp_file):
    """Names, units and sizes are taken from the referenced items."""
    write_gsd(temp_file.name, spectrum_items())

    with gsdfile.File(temp_file.name) as gsd:
        data = gsd['C13DAT']
        assert data.dimensions == (
            gsdfile.Dimension('C3NCH', 'channels', 3),
            gsdfile.Dimension('C3NSPEC', 'spectra', 4),
        )
        assert data.dimnames == ('C3NCH', 'C3NSPEC')
        assert data.dimunits == ('channels', 'spectra')
        assert data.shape == (3, 4)
        assert data.size == 12

def test_scalar_items_have_no_dimensions(temp_file):
    write_gsd(temp_file.name, spectrum_items())

    with gsdfile.File(temp_file.name) as gsd:
        nch = gsd['C3NCH']
        assert nch.dimensions == ()
        assert nch.shape == ()
        assert nch.size == 1

def test_dimension_order_follows_declaration(temp_file):
    """Axis 0 is the first declared dimension reference."""
    items = [
        Item('NX', 'I', 2),
        Item('NY', 'W', 3),
        Item('NZ', 'B', 4),
        Item('CUBE', 'I', list(range(24)), dims=[3, 1, 2]),
    ]
    write_gsd(temp_file.name, items)

    with gsdfile.File(temp_file.name) as gsd:
        cube = gsd['CUBE']
        assert cube.dimnames == ('NZ', 'NX', 'NY')
        assert cube.shape == (4, 2, 3)
        np.testing.assert_array_equal(cube(), np.arange(24).reshape((4, 2, 3), order='F'))
        assert cube[3, 1, 2] == 23

def test_dimension_item_after_array(temp_file):
    """Dimension items may come after the array item in the table."""
    items = [
        Item('DATA', 'D', [1.0, 2.0, 3.0], dims=[2]),
        Item('NPTS', 'I', 3),
    ]
    write_gsd(temp_file.name, items)

    with gsdfile.File(temp_file.name) as gsd:
        assert gsd['DATA'].shape == (3,)
        np.testing.assert_array_equal(gsd['DATA'](), [1.0, 2.0, 3.0])

def test_shared_dimension_item(temp_file):
    """Several arrays can use the same dimension item."""
    items = [
        Item('NCH', 'I', 2),
        Item('FREQ', 'D', [1.0, 2.0], dims=[1]),
        Item('SPEC', 'R', [5.0, 6.0], dims=[1]),
    ]
    write_gsd(temp_file.name, items)

    with gsdfile.File(temp_file.name) as gsd:
        assert gsd['FREQ'].shape == gsd['SPEC'].shape == (2,)

def test_unused_dimension_references_are_ignored(temp_file):
    """References beyond the dimension count may hold anything."""
    items = [
        Item('N', 'I', 2),
        Item('DATA', 'R', [1.0, 2.0], dims=[1], ndims=1, dimnumbers=[1, -1, 99, 0, 7]),
    ]
    write_gsd(temp_file.name, items)

    with gsdfile.File(temp_file.name) as gsd:
        assert gsd['DATA'].dimnumbers == (1, -1, 99, 0, 7)
        assert gsd['DATA'].shape == (2,)

def test_zero_size_dimension(temp_file):
    items = [
        Item('N', 'I', 0),
        Item('DATA', 'R', b'', dims=[1]),
    ]
    write_gsd(temp_file.name, items)

    with gsdfile.File(temp_file.name) as gsd:
        assert gsd['DATA'].shape == (0,)
        assert gsd['DATA']().size == 0

@pytest.mark.parametrize('reference', [0, -1, 3, 100])
def test_reference_out_of_range(temp_file, reference):
    items = [
        Item('N', 'I', 2),
        Item('DATA', 'R', [1.0, 2.0], dims=[reference]),
    ]
    write_gsd(temp_file.name, items)

    with pytest.raises(gsdfile.FormatError, match='outside'):
        gsdfile.File(temp_file.name)

def test_reference_to_itself(temp_file):
    items = [
        Item('N', 'I', 2),
        Item('DATA', 'I', [1, 2], dims=[2]),
    ]
    write_gsd(temp_file.name, items)

    with pytest.raises(gsdfile.FormatError, match='itself'):
        gsdfile.File(temp_file.name)

def test_reference_to_array_item(temp_file):
    items = [
        Item('N', 'I', 1),
        Item('SIZES', 'I', [2], dims=[1]),
        Item('DATA', 'R', [1.0, 2.0], dims=[2]),
    ]
    write_gsd(temp_file.name, items)

    with pytest.raises(gsdfile.FormatError, match='not a scalar integer'):
        gsdfile.File(temp_file.name)

@pytest.mark.parametrize('type_code,value', [
    ('R', 2.0),
    ('D', 2.0),
    ('C', '2'),
    ('L', True),
])
def test_reference_to_non_integer_item(temp_file, type_code, value):
    items = [
        Item('N', type_code, value),
        Item('DATA', 'R', [1.0, 2.0], dims=[1]),
    ]
    write_gsd(temp_file.name, items)

    with pytest.raises(gsdfile.FormatError, match='not a scalar integer'):
        gsdfile.File(temp_file.name)

def test_unreadable_dimension_item(temp_file):
    """A dimension item too short for its type aborts the load."""
    items = [
        Item('N', 'I', b'\x02\x00'),
        Item('DATA', 'R', [1.0, 2.0], dims=[1]),
    ]
    write_gsd(temp_file.name, items)

    with pytest.raises(gsdfile.FormatError, match='dimension item'):
        gsdfile.File(temp_file.name)

def test_negative_dimension_size(temp_file):
    items = [
        Item('N', 'I', -2),
        Item('DATA', 'R', [1.0, 2.0], dims=[1]),
    ]
    write_gsd(temp_file.name, items)

    with pytest.raises(gsdfile.FormatError, match='negative size'):
        gsdfile.File(temp_file.name)

def test_failed_load_releases_mapping(temp_file, monkeypatch):
    """A load that fails after mapping closes the data segment."""
    items = [
        Item('N', 'R', 2.0),
        Item('DATA', 'R', [1.0, 2.0], dims=[1]),
    ]
    write_gsd(temp_file.name, items)

    segments = []
    original_init = gsdfile.DataSegment.__init__

    def recording_init(self, *args, **kwargs):
        original_init(self, *args, **kwargs)
        segments.append(self)

    monkeypatch.setattr(gsdfile.DataSegment, '__init__', recording_init)

    with pytest.raises(gsdfile.FormatError):
        gsdfile.File(temp_file.name, access='mmap')

    assert len(segments) == 1
    assert segments[0].closed
