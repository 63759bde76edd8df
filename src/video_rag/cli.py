"""Command-line interface for indexing videos and asking questions about them."""

import argparse
import asyncio
import logging
import sys

from src.utils.logging import configure_logging, get_logger

from .config import VideoRAGConfig, get_config
from .errors import ConfigurationMissing, VideoRAGError
from .pipeline import PipelineOrchestrator
from .schemas import Answer, ArtifactHandle

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_PIPELINE_FAILED = 1
EXIT_CONFIGURATION = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with the index, ask and query commands."""
    parser = argparse.ArgumentParser(
        prog="video-rag",
        description="Transcribe YouTube videos and ask questions about them using Gemini",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fetch and index a video transcript
  python -m src.video_rag.cli index --url "https://youtube.com/watch?v=dQw4w9WgXcQ"

  # Ask a question (re-indexes the video first)
  python -m src.video_rag.cli ask --url "https://youtu.be/dQw4w9WgXcQ" --question "What is it about?"

  # Index and ask, printing the file URI as well
  python -m src.video_rag.cli query -u "https://youtu.be/dQw4w9WgXcQ" -q "Who is speaking?"
        """,
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        help="Seconds between transcript job status checks",
    )
    parser.add_argument(
        "--max-wait",
        type=float,
        help="Maximum seconds to wait for the transcript job",
    )
    parser.add_argument("--model", type=str, help="Override the Gemini model")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Write debug logs to stderr",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser(
        "index", help="Fetch and index a YouTube video transcript"
    )
    index_parser.add_argument("-u", "--url", required=True, help="YouTube video URL")

    for name, help_text in (
        ("ask", "Ask a question about a video (re-indexes it first)"),
        ("query", "Index a video and immediately ask a question"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-u", "--url", required=True, help="YouTube video URL")
        sub.add_argument(
            "-q", "--question", required=True, help="Question to ask about the video"
        )

    return parser


def apply_overrides(config: VideoRAGConfig, args: argparse.Namespace) -> VideoRAGConfig:
    """Override config with command-line arguments."""
    if args.poll_interval is not None:
        config.poll_interval_seconds = args.poll_interval
    if args.max_wait is not None:
        config.poll_max_wait_seconds = args.max_wait
    if args.model:
        config.gemini_model = args.model
    # Reject bad intervals or budgets before any client is built.
    config.poll_policy()
    config.file_poll_policy()
    config.retry_policy()
    return config


def print_handle(handle: ArtifactHandle) -> None:
    print(f"File name: {handle.name}")
    print(f"File URI: {handle.uri}")


def print_answer(answer: Answer) -> None:
    print(f"\n💡 Answer:\n{answer.text}")
    if answer.citations:
        print("\nCitations:")
        for number, citation in enumerate(answer.citations, start=1):
            source = citation.uri or "transcript"
            print(f"  [{number}] {source}: {citation.excerpt}")


async def run_command(args: argparse.Namespace, config: VideoRAGConfig) -> int:
    """Run the selected command and return the process exit status."""
    try:
        orchestrator = PipelineOrchestrator(config)
    except ConfigurationMissing as e:
        logger.error("configuration_missing", missing=e.missing)
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION

    async with orchestrator:
        try:
            if args.command == "index":
                print(f"🚀 Indexing video: {args.url}")
                handle = await orchestrator.index_video(args.url)
                print("\n✨ Video successfully indexed!")
                print_handle(handle)
                print("\nYou can now ask questions using:")
                print(f"  video-rag ask --url \"{args.url}\" --question \"Your question\"")
            elif args.command == "ask":
                print(f"🚀 Processing question for video: {args.url}")
                print("⚠️  Note: This re-indexes the video on every call.")
                answer = await orchestrator.ask_about_video(args.url, args.question)
                print_answer(answer)
            else:
                print(f"🚀 Querying video: {args.url}")
                result = await orchestrator.query(args.url, args.question)
                print_handle(result.handle)
                print_answer(result.answer)
        except VideoRAGError as e:
            stage = e.stage.value if e.stage else "pipeline"
            logger.error(
                "command_failed",
                command=args.command,
                stage=stage,
                error_kind=e.kind,
            )
            print(f"❌ {stage} failed: {e}", file=sys.stderr)
            return EXIT_PIPELINE_FAILED

    logger.info("command_completed", command=args.command)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Parses arguments, loads configuration, runs the command and returns the
    exit status.
    """
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        config = apply_overrides(get_config(), args)
    except ValueError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION

    return asyncio.run(run_command(args, config))


def run() -> None:
    """Console script wrapper that exits with the command's status."""
    sys.exit(main())


if __name__ == "__main__":
    run()
