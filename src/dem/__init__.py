"""DEM tile decoding."""

from dem.decoder import DemTile, decode, decode_parsed_image

__all__ = ['DemTile', 'decode', 'decode_parsed_image']
