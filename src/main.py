"""Command-line entry point: contour and hillshade products of one DEM tile."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from PIL import Image

from domain.profiles import load_profile
from elevation.hillshade import compute_hillshade
from elevation.source import DemTileSource
from shared.constants import LOG_FORMAT
from shared.diagnostics import log_memory_usage
from shared.errors import DemError

logger = logging.getLogger(__name__)


def setup_logging(log_file: Path | None = None, *, verbose: bool = False) -> None:
    """Configure logging to stderr and, optionally, a file."""
    # stdout занят JSON-результатом
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_file), encoding='utf-8'))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Contour lines and hillshade from DEM tiles',
    )
    parser.add_argument('--profile', type=Path, required=True, help='TOML profile')
    parser.add_argument('z', type=int, help='Tile zoom')
    parser.add_argument('x', type=int, help='Tile column')
    parser.add_argument('y', type=int, help='Tile row')
    parser.add_argument(
        '--output', type=Path, default=None, help='Contour JSON (default: stdout)'
    )
    parser.add_argument('--hillshade', type=Path, default=None, help='Hillshade PNG')
    parser.add_argument('--log-file', type=Path, default=None)
    parser.add_argument('-v', '--verbose', action='store_true')
    return parser


async def run(args: argparse.Namespace) -> dict[str, list[list[float]]]:
    profile = load_profile(args.profile)
    source = DemTileSource.from_settings(profile.source)
    source.on_timing(
        lambda t: logger.info(
            'Timing %s: %.1f ms, %d tiles, outcome=%s', t.url, t.duration, t.tiles_used, t.outcome
        )
    )
    try:
        await source.loaded()
        isolines = await source.get_isolines(args.z, args.x, args.y, profile.contours)
        if args.hillshade is not None:
            grid = await source.get_height_tile_with_neighbors(
                args.z, args.x, args.y, profile.contours
            )
            if grid is not None:
                Image.fromarray(compute_hillshade(grid, args.z)).save(args.hillshade)
                logger.info('Hillshade saved to %s', args.hillshade)
    finally:
        await source.close()
    # JSON: ключи уровней как строки
    return {f'{level:g}': lines for level, lines in isolines.items()}


def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_file, verbose=args.verbose)
    logger.info('Tile %d/%d/%d', args.z, args.x, args.y)
    log_memory_usage('startup')

    try:
        result = asyncio.run(run(args))
    except (DemError, OSError, ValueError) as e:
        logger.error('Failed: %s', e, exc_info=True)
        return 1

    text = json.dumps(result)
    if args.output is None:
        sys.stdout.write(text + '\n')
    else:
        args.output.write_text(text, encoding='utf-8')
        logger.info('Contours saved to %s (%d levels)', args.output, len(result))
    return 0


if __name__ == '__main__':
    sys.exit(main())
