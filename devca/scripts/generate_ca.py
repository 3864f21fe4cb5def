#!/usr/bin/env python3
"""Generate (or reuse) the self-signed root certificate authority."""

import argparse
import sys
from pathlib import Path

from devca.lib.config import DEFAULT_CA_DIRNAME, PipelineOptions
from devca.lib.errors import PKIError
from devca.lib.logging_config import LOGGER, set_verbosity
from devca.lib.pipelines import RootCAPipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate a root certificate authority, reusing existing files"
    )
    parser.add_argument(
        "-c",
        "--config",
        dest="configs",
        type=Path,
        action="append",
        default=[],
        help=(
            "Config file used to generate the root certificate. Can be repeated; "
            "configs are merged in order and later files override earlier ones "
            "(default: the bundled configs/ca.ini)"
        ),
    )
    parser.add_argument(
        "-d",
        "--dir",
        dest="output_dir",
        type=Path,
        default=Path(DEFAULT_CA_DIRNAME),
        help=f"Directory for the root certificate & associated files (default: {DEFAULT_CA_DIRNAME})",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Always generate new files instead of reusing existing ones",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Be more verbose. Can be repeated",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the Root CA pipeline.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    args = build_parser().parse_args(argv)
    set_verbosity(args.verbose)

    try:
        options = PipelineOptions(
            output_dir=args.output_dir,
            config_sources=args.configs,
            force=args.force,
        )
        result = RootCAPipeline(options).run()

        if result.generated:
            LOGGER.info("Generated: %s", ", ".join(str(p) for p in result.generated))
        return 0

    except PKIError as e:
        LOGGER.error("Root CA generation failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
