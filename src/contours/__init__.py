"""Contour line extraction."""

from contours.isolines import generate_isolines, split_major_minor

__all__ = ['generate_isolines', 'split_major_minor']
