"""TOML profiles for DEM sources and contour options."""

from __future__ import annotations

import logging
from pathlib import Path

import tomlkit

from domain.models import Profile

logger = logging.getLogger(__name__)


def load_profile(path: str | Path) -> Profile:
    """
    Load and validate a TOML profile.

    The file holds a ``[source]`` table (``DemSourceSettings`` fields) and an
    optional ``[contours]`` table (``ContourOptions`` fields).

    Raises:
        FileNotFoundError: the file does not exist.
        pydantic.ValidationError: the content does not validate.
    """
    p = Path(path)
    if not p.exists():
        msg = f'Profile not found: {p}'
        raise FileNotFoundError(msg)
    data = tomlkit.parse(p.read_text(encoding='utf-8')).unwrap()
    profile = Profile.model_validate(data)
    logger.info(
        'Profile loaded from %s: encoding=%s maxzoom=%d worker=%s',
        p,
        profile.source.encoding.value,
        profile.source.maxzoom,
        profile.source.worker,
    )
    return profile


def save_profile(path: str | Path, profile: Profile) -> Path:
    """Save a profile as TOML (no atomic rename, no backups)."""
    p = Path(path)
    data = profile.model_dump(mode='json', exclude_none=True)
    p.write_text(tomlkit.dumps(data), encoding='utf-8')
    return p
