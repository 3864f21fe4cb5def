#!/usr/bin/env python3
"""Generate (or reuse) a host certificate signed by the root certificate authority."""

import argparse
import sys
from pathlib import Path

from devca.lib.config import DEFAULT_CA_DIRNAME, HostPipelineOptions
from devca.lib.errors import PKIError
from devca.lib.logging_config import LOGGER, set_verbosity
from devca.lib.pipelines import HostCertificatePipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate an SSL certificate for one or more hosts, signed by the root CA"
    )
    parser.add_argument(
        "-c",
        "--config",
        dest="configs",
        type=Path,
        action="append",
        default=[],
        help=(
            "Config file used to generate the certificate. Can be repeated; "
            "configs are merged in order and later files override earlier ones "
            "(default: the bundled configs/server.ini)"
        ),
    )
    parser.add_argument(
        "-d",
        "--dir",
        dest="output_dir",
        type=Path,
        default=None,
        help="Directory for the certificate & associated files (default: the primary host)",
    )
    parser.add_argument(
        "-a",
        "--ca-dir",
        type=Path,
        default=Path(DEFAULT_CA_DIRNAME),
        help=f"Location of the certificate authority to use (default: {DEFAULT_CA_DIRNAME})",
    )
    parser.add_argument(
        "-n",
        "--host",
        dest="hosts",
        action="append",
        default=[],
        help=(
            "Host to generate the certificate for (the common name). Can be repeated "
            "to add subject alternative names"
        ),
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
    """Run the host certificate pipeline.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.hosts:
        parser.error("at least one host has to be specified")
    if args.output_dir is None:
        args.output_dir = Path(args.hosts[0])

    set_verbosity(args.verbose)

    try:
        options = HostPipelineOptions(
            output_dir=args.output_dir,
            config_sources=args.configs,
            force=args.force,
            hosts=args.hosts,
            ca_dir=args.ca_dir,
        )
        result = HostCertificatePipeline(options).run()

        if result.serial_number:
            LOGGER.info("Issued certificate with serial %s", result.serial_number)
        return 0

    except PKIError as e:
        LOGGER.error("Host certificate generation failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
