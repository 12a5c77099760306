#!/usr/bin/env python3
"""
Convert a CMYK JPEG to RGB with a trained network.

Usage:
    python scripts/cmyk2rgb.py photo.jpg
    python scripts/cmyk2rgb.py -n network.json photo.jpg --dst converted.jpg
"""

import os
import sys
import logging
import argparse

from libcmyk.config import configure_logging, load_settings
from libcmyk.converter import Converter
from libcmyk.errors import NetworkError

logger = logging.getLogger('libcmyk.scripts.cmyk2rgb')


def parse_args(argv=None) -> argparse.Namespace:
    settings = load_settings()
    parser = argparse.ArgumentParser(description='Convert a CMYK JPEG to RGB')
    parser.add_argument('src', help='CMYK JPEG to convert')
    parser.add_argument('-n', '--network', default=settings.network_file,
                        help='Trained network file')
    parser.add_argument('--dst', default=None,
                        help='Output path (default: rgb-<src name> next to src)')
    parser.add_argument('--quality', type=int, default=100, help='JPEG quality')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    configure_logging()
    args = parse_args(argv)

    dst = args.dst
    if dst is None:
        directory, name = os.path.split(args.src)
        dst = os.path.join(directory, 'rgb-' + name)

    try:
        converter = Converter.from_file(args.network)
        converter.convert_file(args.src, dst, quality=args.quality)
    except (NetworkError, OSError) as e:
        logger.error(f"Conversion failed: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
