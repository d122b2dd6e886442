"""
Command line interface.

Usage:
    msil-comparator il bin/Release -o il-out --search-pattern "*.dll"
    msil-comparator diagnose
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from msil_comparator.engines.base import DisassemblyBackend
from msil_comparator.engines.dotnet.disassembler import InProcessDisassembler
from msil_comparator.engines.dotnet.ordering import ENTITY_PROCESSORS, get_entity_processor
from msil_comparator.engines.ildasm.runner import IldasmRunner
from msil_comparator.pipeline.orchestrator import DEFAULT_SEARCH_PATTERN, Orchestrator
from msil_comparator.utils.config import get_config, get_config_status, parse_bool
from msil_comparator.utils.structured_errors import (
    StructuredBaseError,
    create_parameter_error,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _bool_option(value: str) -> bool:
    try:
        return parse_bool(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="msil-comparator",
        description="Dump .NET assemblies to IL text with a stable member order",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s il App.dll                       Dump one assembly into ./App.dll.il/
  %(prog)s il bin -o out                    Dump every assembly under bin/ into out/
  %(prog)s il bin --search-pattern "*.exe"  Only consider .exe files
  %(prog)s il bin -c false                  Keep the raw ildasm output
  %(prog)s diagnose                         Show tool and configuration status
        """
    )
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        help="Logging level (default: MSIL_COMPARATOR_LOG_LEVEL or INFO)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    il = subparsers.add_parser("il", help="Write MSIL for assemblies or assembly directories")
    il.add_argument(
        "paths",
        nargs="+",
        metavar="PATH",
        help="Assembly file or directory to search for assemblies"
    )
    il.add_argument(
        "--output-directory",
        "-o",
        metavar="DIR",
        help="Output directory for IL files (default: MSIL_COMPARATOR_OUTPUT_DIR or the current directory)"
    )
    il.add_argument(
        "--keep-directory-struct",
        "-k",
        type=_bool_option,
        nargs="?",
        const=True,
        default=True,
        metavar="BOOL",
        help="Mirror input subdirectories in the output (default: true)"
    )
    il.add_argument(
        "--use-ilspy-cover",
        "-c",
        type=_bool_option,
        nargs="?",
        const=True,
        default=True,
        metavar="BOOL",
        help="Overwrite ildasm output with the in-process disassembler, which sorts members by name (default: true)"
    )
    il.add_argument(
        "--search-pattern",
        "--search-Pattern",
        dest="search_pattern",
        default=DEFAULT_SEARCH_PATTERN,
        metavar="GLOB",
        help="File name pattern for directory inputs (default: *)"
    )
    il.add_argument(
        "--ildasm-path",
        metavar="PATH",
        help="Location of ildasm (default: MSIL_COMPARATOR_ILDASM, ./ildasm.exe, then PATH)"
    )
    il.add_argument(
        "--member-order",
        choices=sorted(ENTITY_PROCESSORS),
        help="Member order of the in-process disassembler (default: MSIL_COMPARATOR_MEMBER_ORDER or name)"
    )

    subparsers.add_parser("diagnose", help="Show disassembler and configuration status as JSON")

    return parser


def configure_logging(level_name: str | None) -> None:
    level_name = (level_name or get_config("MSIL_COMPARATOR_LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def build_stages(args: argparse.Namespace) -> list[DisassemblyBackend]:
    """
    Create the disassembly stages for the il command.

    Raises:
        StructuredBaseError: If the member order is unknown
    """
    stages: list[DisassemblyBackend] = [IldasmRunner(ildasm_path=args.ildasm_path)]

    if args.use_ilspy_cover:
        order = args.member_order or get_config("MSIL_COMPARATOR_MEMBER_ORDER") or "name"
        try:
            processor = get_entity_processor(order)
        except ValueError:
            raise StructuredBaseError(
                create_parameter_error("member order", order, ", ".join(sorted(ENTITY_PROCESSORS)))
            )
        stages.append(InProcessDisassembler(processor))

    return stages


def run_il(args: argparse.Namespace) -> int:
    output_root = args.output_directory or get_config("MSIL_COMPARATOR_OUTPUT_DIR")

    orchestrator = Orchestrator(
        build_stages(args),
        output_root=Path(output_root) if output_root else None,
        preserve_structure=args.keep_directory_struct,
        search_pattern=args.search_pattern,
    )
    orchestrator.run(args.paths)
    return 0


def run_diagnose(args: argparse.Namespace) -> int:
    stages = [IldasmRunner(), InProcessDisassembler()]
    report = {
        "backends": [stage.diagnose() for stage in stages],
        "config": get_config_status(),
    }
    print(json.dumps(report, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    handlers = {
        "il": run_il,
        "diagnose": run_diagnose,
    }

    try:
        return handlers[args.command](args)
    except StructuredBaseError as e:
        logger.error(f"{e.code.value}: {e.structured_error.message}")
        print(e.structured_error.to_user_message(), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
