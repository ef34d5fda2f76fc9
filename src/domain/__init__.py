"""Domain layer - option models and profiles."""
from domain.models import ContourOptions, DemSourceSettings, HeightTileOptions, Profile
from domain.profiles import load_profile, save_profile

__all__ = [
    'ContourOptions',
    'DemSourceSettings',
    'HeightTileOptions',
    'Profile',
    'load_profile',
    'save_profile',
]
