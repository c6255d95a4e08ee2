"""
Command-line entry point for the chat-to-markets generator.

Reads a chat transcript from a file or stdin, runs the generation pipeline
and prints a text report or JSON.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from chatmarkets.config import Config
from chatmarkets.errors import MarketGenerationError
from chatmarkets.generator import generate_markets_from_chat
from chatmarkets.reporter import generate_json, generate_report


def setup_logging(config: Config) -> None:
    """Configure logging for the application."""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers,
        force=True,
    )


logger = logging.getLogger(__name__)


def read_transcript(path: Optional[str]) -> str:
    """
    Read the transcript from a file path, or stdin when path is None or "-".

    Raises:
        OSError: If the file cannot be read
    """
    if path is None or path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate prediction-market ideas from a group chat transcript",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Text report for an exported chat
  chatmarkets chat.txt

  # JSON output from stdin, saved to a file
  cat chat.txt | chatmarkets --json --output markets.json
        """,
    )
    parser.add_argument(
        "transcript",
        nargs="?",
        default=None,
        help="Path to the chat transcript (reads stdin when omitted or '-')",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON instead of a text report",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Also write the rendered output to this file",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for failure, 130 when interrupted)
    """
    args = build_parser().parse_args(argv)

    config = Config.from_env()
    setup_logging(config)

    is_valid, errors = config.validate()
    if not is_valid:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return 1

    try:
        chat_text = read_transcript(args.transcript)
        result = generate_markets_from_chat(chat_text, config=config)

        if args.json:
            rendered = generate_json(result, output_file=args.output)
        else:
            rendered = generate_report(
                result, output_file=args.output, report_timezone=config.report_timezone
            )
        print(rendered)

        logger.info(f"Generated {len(result.market_ideas)} market ideas with {result.model_used}")
        return 0

    except KeyboardInterrupt:
        logger.info("Generation interrupted by user")
        return 130

    except OSError as e:
        logger.error(f"Could not read transcript: {e}")
        return 1

    except MarketGenerationError as e:
        logger.error(f"Market generation failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
