"""Developer CLI for inspecting descriptors and trying enhancement."""

import argparse
import asyncio
import json
import logging
import sys

from knowledge_engine.core.descriptor_loader import (
    build_library,
    check_descriptor_file,
    iter_descriptor_files,
    load_descriptors,
)
from knowledge_engine.executors.factory import ExecutorContext
from knowledge_engine.lib.config import ConfigLoader, EngineConfig
from knowledge_engine.lib.logger import setup_logging
from knowledge_engine.lib.metrics import JsonlTelemetrySink
from knowledge_engine.models.errors import DescriptorValidationError

logger = logging.getLogger(__name__)


def cmd_validate(args: argparse.Namespace, config: EngineConfig) -> int:
    invalid = 0
    for path in iter_descriptor_files(args.directory):
        try:
            descriptor = check_descriptor_file(path)
        except DescriptorValidationError as e:
            invalid += 1
            print(f"❌ {path.name}: {e.message}")
            for field_error in e.field_errors:
                print(f"   - {field_error}")
            continue
        print(f"✅ {path.name}: {descriptor.id} ({descriptor.backend_kind.value})")

    return 1 if invalid else 0


def cmd_sources(args: argparse.Namespace, config: EngineConfig) -> int:
    library = build_library(load_descriptors(args.directory), config=config)
    print(json.dumps(library.get_knowledge_summary(), indent=2, ensure_ascii=False))
    return 0


async def _enhance(args: argparse.Namespace, config: EngineConfig) -> int:
    ctx = ExecutorContext.from_config(config, telemetry=JsonlTelemetrySink(config.telemetry_dir))
    try:
        library = build_library(load_descriptors(args.directory), ctx, config)
        context = await library.enhance_message(args.message)
    finally:
        await ctx.aclose()

    print(context.enhanced_message)
    print()
    print(f"Sources used: {', '.join(context.used_sources) or '(none)'}")
    if context.suggestions:
        print("Suggestions:")
        for suggestion in context.suggestions:
            print(f"  - {suggestion}")
    return 0


def cmd_enhance(args: argparse.Namespace, config: EngineConfig) -> int:
    return asyncio.run(_enhance(args, config))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="knowledge-engine",
        description="Knowledge context enhancement engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Examples:
  knowledge-engine validate config/knowledge-data
  knowledge-engine sources config/knowledge-data
  knowledge-engine enhance config/knowledge-data "show me a puppy"
        """,
    )
    parser.add_argument("--debug", action="store_true", help="Enable verbose logging")
    parser.add_argument("--config-dir", help="Directory containing knowledge.yaml")
    parser.add_argument("--log-file", help="Also write JSON log lines to this file")
    parser.add_argument("--json-logs", action="store_true", help="Log JSON lines to the console")

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Validate every descriptor in a directory")
    validate.add_argument("directory")
    validate.set_defaults(handler=cmd_validate)

    sources = subparsers.add_parser("sources", help="Print the knowledge summary")
    sources.add_argument("directory")
    sources.set_defaults(handler=cmd_sources)

    enhance = subparsers.add_parser("enhance", help="Enhance a message and print the prompt")
    enhance.add_argument("directory")
    enhance.add_argument("message")
    enhance.set_defaults(handler=cmd_enhance)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(
        log_level="DEBUG" if args.debug else "WARNING",
        log_file=args.log_file,
        structured=args.json_logs,
        quiet=not args.debug,
    )
    config = ConfigLoader(config_dir=args.config_dir).get()

    try:
        return args.handler(args, config)
    except FileNotFoundError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
