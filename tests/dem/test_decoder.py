"""Tests for dem.decoder module."""

import struct
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from dem.decoder import DemTile, decode, decode_parsed_image, parse_encoding
from shared.constants import Encoding
from shared.errors import DecodeError


class TestDemTile:
    """Tests for DemTile dataclass."""

    def test_to_array_shape(self):
        """Should reshape samples to (height, width)."""
        tile = DemTile(3, 2, np.arange(6, dtype=np.float32))
        arr = tile.to_array()
        assert arr.shape == (2, 3)
        assert arr[1, 0] == 3.0

    def test_data_is_read_only(self):
        """Decoded samples must not be writable."""
        tile = DemTile(2, 2, np.zeros(4, dtype=np.float32))
        with pytest.raises(ValueError):
            tile.data[0] = 1.0

    def test_size_mismatch_raises(self):
        """Should reject sample count that does not match size."""
        with pytest.raises(DecodeError):
            DemTile(2, 2, np.zeros(5, dtype=np.float32))

    def test_non_positive_size_raises(self):
        """Should reject zero-size tiles."""
        with pytest.raises(DecodeError):
            DemTile(0, 2, np.zeros(0, dtype=np.float32))


class TestRawDecoding:
    """Tests for raw16/raw32 payloads."""

    def test_raw16_exact_values(self, make_raw16):
        """raw16 should reproduce int16 samples exactly."""
        values = np.array([[-32768, -1, 0], [1, 1234, 32767]], dtype=np.int16)
        tile = decode(make_raw16(values), 'raw16')
        assert (tile.width, tile.height) == (3, 2)
        assert tile.data.dtype == np.float32
        assert tile.to_array().tolist() == values.astype(np.float32).tolist()

    def test_raw32_values(self):
        """raw32 should decode little-endian float32 samples."""
        values = np.array([1.5, -2.25, 8848.0, 0.0], dtype='<f4')
        payload = struct.pack('<HH', 2, 2) + values.tobytes()
        tile = decode(payload, Encoding.RAW32)
        assert tile.data.tolist() == values.tolist()

    def test_trailing_bytes_ignored(self, make_raw16):
        """Bytes beyond the declared payload should be ignored."""
        payload = make_raw16(np.ones((2, 2))) + b'\x00\x01\x02'
        tile = decode(payload, 'raw16')
        assert tile.data.tolist() == [1.0, 1.0, 1.0, 1.0]

    def test_short_payload_raises(self):
        """Should raise DecodeError when samples are missing."""
        payload = struct.pack('<HH', 4, 4) + b'\x00' * 10
        with pytest.raises(DecodeError):
            decode(payload, 'raw16')

    def test_shorter_than_header_raises(self):
        """Should raise DecodeError for payloads shorter than the header."""
        with pytest.raises(DecodeError):
            decode(b'\x01\x00', 'raw32')


class TestImageDecoding:
    """Tests for terrarium/mapbox images."""

    def test_terrarium_png(self, make_terrarium_png):
        """Should decode a terrarium PNG through Pillow."""
        elevation = np.array([[0.0, 100.5], [-50.25, 8848.0]])
        tile = decode(make_terrarium_png(elevation), 'terrarium')
        assert (tile.width, tile.height) == (2, 2)
        np.testing.assert_allclose(tile.to_array(), elevation, atol=1 / 256)

    def test_mapbox_png(self):
        """Should apply the mapbox formula to RGB pixels."""
        # -10000 + (1*65536 + 200*256 + 0) * 0.1 = 1673.6
        rgb = np.array([[[1, 200, 0]]], dtype=np.uint8)
        buf = BytesIO()
        Image.fromarray(rgb).save(buf, format='PNG')
        tile = decode(buf.getvalue(), 'mapbox')
        assert tile.data[0] == pytest.approx(1673.6)

    def test_corrupt_image_raises(self):
        """Corrupt image payload should raise DecodeError."""
        with pytest.raises(DecodeError):
            decode(b'not an image at all', 'terrarium')

    def test_unsupported_encoding_raises(self):
        """Unknown encoding tag should raise DecodeError."""
        with pytest.raises(DecodeError):
            decode(b'\x00' * 8, 'lerc')


class TestDecodeParsedImage:
    """Tests for decode_parsed_image function."""

    def test_terrarium_formula_rgba(self):
        """Should apply R*256 + G + B/256 - 32768 to RGBA bytes."""
        pixels = bytes([128, 0, 0, 255, 128, 100, 128, 255])
        tile = decode_parsed_image(2, 1, 'terrarium', pixels)
        assert tile.data.tolist() == [0.0, 100.5]

    def test_terrarium_roundtrip_range(self):
        """Inverse terrarium encoding should recover elevations in range."""
        elevations = np.array([-32768.0, -0.5, 0.0, 1234.5, 32767.99609375])
        v = elevations + 32768.0
        r = np.floor(v / 256.0)
        g = np.floor(v - r * 256.0)
        b = np.round((v - r * 256.0 - g) * 256.0)
        rgb = np.stack([r, g, b], axis=-1).astype(np.uint8)
        tile = decode_parsed_image(5, 1, 'terrarium', rgb)
        np.testing.assert_allclose(tile.data, elevations, atol=1e-3)

    def test_rejects_raw_encoding(self):
        """raw encodings are not image encodings."""
        with pytest.raises(DecodeError):
            decode_parsed_image(1, 1, 'raw16', bytes(4))

    def test_wrong_pixel_count_raises(self):
        """Pixel byte count must match width*height*3 or *4."""
        with pytest.raises(DecodeError):
            decode_parsed_image(2, 2, 'mapbox', bytes(7))


class TestParseEncoding:
    """Tests for parse_encoding function."""

    def test_accepts_enum_and_string(self):
        """Should accept Encoding members and their values."""
        assert parse_encoding('mapbox') is Encoding.MAPBOX
        assert parse_encoding(Encoding.RAW32) is Encoding.RAW32
