#!/usr/bin/env python3
"""
Train a CMYK -> RGB network on pairs of JPEG images.

Every JPEG in the CMYK directory is paired with the same-named JPEG in the
RGB directory. The network file is loaded if it exists, otherwise a new
network is initialized; after training it is written back.

Usage:
    python scripts/cmyk_train.py -f network.json --cmyk-dir ./cmyk --rgb-dir ./rgb
    python scripts/cmyk_train.py --per-pixel --iterations 10
"""

import sys
import logging
import argparse

from libcmyk.config import TrainingDefaults, configure_logging, load_settings
from libcmyk.errors import NetworkError
from libcmyk import model_persistence
from libcmyk.trainer import train_directory

logger = logging.getLogger('libcmyk.scripts.cmyk_train')


def parse_args(argv=None) -> argparse.Namespace:
    settings = load_settings()
    parser = argparse.ArgumentParser(description='Train a CMYK -> RGB network')
    parser.add_argument('-f', '--file', default=settings.network_file,
                        help='Network file to load and update')
    parser.add_argument('--cmyk-dir', default='./cmyk', help='Directory of CMYK JPEGs')
    parser.add_argument('--rgb-dir', default='./rgb', help='Directory of RGB JPEGs')
    parser.add_argument('--iterations', type=int, default=None,
                        help='Passes per image (per pixel with --per-pixel)')
    parser.add_argument('--learning-rate', type=float, default=TrainingDefaults.learning_rate)
    parser.add_argument('--momentum', type=float, default=TrainingDefaults.momentum)
    parser.add_argument('--hiddens', type=int, default=TrainingDefaults.n_hiddens,
                        help='Hidden units of a new network')
    parser.add_argument('--outputs', type=int, choices=(3, 4),
                        default=TrainingDefaults.n_outputs,
                        help='Outputs of a new network (4 adds an alpha slot)')
    parser.add_argument('--contexts', type=int, default=TrainingDefaults.context_window,
                        help='Context window of a new network')
    parser.add_argument('--seed', type=int, default=None,
                        help='Weight initialization seed of a new network')
    parser.add_argument('--per-pixel', action='store_true',
                        help='Train each pixel on its own instead of whole images')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    configure_logging()
    args = parse_args(argv)

    iterations = args.iterations
    if iterations is None:
        iterations = (TrainingDefaults.stream_iterations if args.per_pixel
                      else TrainingDefaults.iterations)

    try:
        network = model_persistence.load_or_init(
            args.file,
            TrainingDefaults.n_inputs, args.hiddens, args.outputs,
            weight_range=TrainingDefaults.weight_range,
            seed=args.seed,
            context_window=args.contexts
        )

        histories = train_directory(
            network, args.cmyk_dir, args.rgb_dir,
            iterations=iterations,
            learning_rate=args.learning_rate,
            momentum=args.momentum,
            per_pixel=args.per_pixel
        )

        model_persistence.dump(network, args.file)
    except (NetworkError, OSError) as e:
        logger.error(f"Training failed: {e}")
        return 1

    logger.info(f"Trained on {len(histories)} image pair(s), saved {args.file}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
