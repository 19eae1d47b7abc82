"""
voskkit CLI

Entry point for the voskkit command.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from . import __version__
from .core.app_context import AppContext
from .core.config import ConfigReader
from .core.task_events import CompletedEvent, EventStream, FailedEvent, ProgressEvent, TextEvent
from .speech import AudioInfo
from .utils.exceptions import CancellationError, VoskKitError
from .utils.logger import configure_from_config, setup_logging

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser"""
    parser = argparse.ArgumentParser(
        prog="voskkit",
        description="Offline Vosk model manager and file transcriber",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"voskkit {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="Path to config file (default: ~/.voskkit/config.json or $VOSKKIT_CONFIG)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # models
    models_parser = subparsers.add_parser("models", help="Manage model packages")
    models_subparsers = models_parser.add_subparsers(dest="models_command", help="Model subcommands")

    list_parser = models_subparsers.add_parser("list", help="List available models")
    list_parser.add_argument("--refresh", action="store_true", help="Ignore the cached catalog")
    list_parser.add_argument("--installed", action="store_true", help="Only installed models")
    list_parser.add_argument("--language", help="Only models for this language")

    install_parser = models_subparsers.add_parser("install", help="Download and install a model")
    install_parser.add_argument("name", help="Model name as listed in the catalog")

    delete_parser = models_subparsers.add_parser("delete", help="Delete an installed model")
    delete_parser.add_argument("name", help="Installed model name")

    models_subparsers.add_parser("updates", help="Check installed models for updates")

    # transcribe
    transcribe_parser = subparsers.add_parser("transcribe", help="Transcribe an audio file")
    transcribe_parser.add_argument("model", help="Installed model name")
    transcribe_parser.add_argument("audio", type=Path, help="Audio file (wav, mp3, flac, ...)")

    # info
    info_parser = subparsers.add_parser("info", help="Show audio file properties")
    info_parser.add_argument("audio", type=Path, help="Audio file")

    return parser


def cmd_models_list(context: AppContext, args: argparse.Namespace) -> int:
    if args.installed:
        models = context.store.list_installed()
    else:
        models = context.available_models(force_refresh=args.refresh)

    if args.language:
        models = [m for m in models if m.language.lower() == args.language.lower()]

    if not models:
        print("No models found")
        return EXIT_OK

    for model in models:
        marker = "*" if model.installed or context.store.is_installed(model.name) else " "
        print(f"{marker} {model.name:<45} {model.language:<15} {model.size:>8}  {model.category.value}")
    return EXIT_OK


def cmd_models_install(context: AppContext, args: argparse.Namespace) -> int:
    if not context.is_online():
        print("Network unavailable, cannot download models", file=sys.stderr)
        return EXIT_ERROR

    descriptor = context.find_model(args.name)
    if descriptor is None:
        print(f"Model not found in catalog: {args.name}", file=sys.stderr)
        return EXIT_ERROR

    stream = context.store.install_async(descriptor)
    return _consume(stream, f"Installing {descriptor.display_name}")


def cmd_models_delete(context: AppContext, args: argparse.Namespace) -> int:
    if not context.store.is_installed(args.name):
        print(f"Model is not installed: {args.name}", file=sys.stderr)
        return EXIT_ERROR
    context.store.delete(args.name)
    print(f"Deleted {args.name}")
    return EXIT_OK


def cmd_models_updates(context: AppContext, args: argparse.Namespace) -> int:
    updates = context.store.check_updates()
    if not updates:
        print("All installed models are up to date")
        return EXIT_OK
    for name, descriptor in sorted(updates.items()):
        print(f"{name}: update available ({descriptor.size})")
    return EXIT_OK


def cmd_transcribe(context: AppContext, args: argparse.Namespace) -> int:
    if not args.audio.is_file():
        print(f"Audio file not found: {args.audio}", file=sys.stderr)
        return EXIT_ERROR

    info = AudioInfo.from_file(args.audio, ffprobe=context.config.get_setting("transcription.ffprobe", "ffprobe"))
    logger.info(f"{args.audio.name}: {info} (estimated {info.estimated_transcription_seconds}s)")

    stream = context.transcribe_async(args.model, args.audio)
    return _consume(stream, None)


def cmd_info(context: AppContext, args: argparse.Namespace) -> int:
    if not args.audio.is_file():
        print(f"Audio file not found: {args.audio}", file=sys.stderr)
        return EXIT_ERROR
    info = AudioInfo.from_file(args.audio, ffprobe=context.config.get_setting("transcription.ffprobe", "ffprobe"))
    print(info)
    print(f"Estimated transcription time: {info.estimated_transcription_seconds}s")
    return EXIT_OK


def _consume(stream: EventStream, title: Optional[str]) -> int:
    """Print events until the stream ends; Ctrl+C cancels the work"""
    if title:
        print(title)
    try:
        for event in stream:
            if isinstance(event, ProgressEvent):
                print(f"\r{event.percent:3d}%", end="", flush=True)
            elif isinstance(event, TextEvent):
                print(event.text, flush=True)
            elif isinstance(event, CompletedEvent):
                if title:
                    print("\nDone")
                return EXIT_OK
            elif isinstance(event, FailedEvent):
                return _report_failure(event.error)
    except KeyboardInterrupt:
        print("\nCancelling...", file=sys.stderr)
        stream.cancel()
        stream.join()
        return EXIT_CANCELLED
    return EXIT_ERROR


def _report_failure(error: BaseException) -> int:
    if isinstance(error, CancellationError):
        print(f"\n{error}", file=sys.stderr)
        return EXIT_CANCELLED
    if isinstance(error, VoskKitError):
        print(f"\nError: {error.get_user_message()}", file=sys.stderr)
    else:
        print(f"\nError: {error}", file=sys.stderr)
    return EXIT_ERROR


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return EXIT_USAGE
    if parsed.command == "models" and not parsed.models_command:
        parser.error("models requires a subcommand (list, install, delete, updates)")

    commands = {
        ("models", "list"): cmd_models_list,
        ("models", "install"): cmd_models_install,
        ("models", "delete"): cmd_models_delete,
        ("models", "updates"): cmd_models_updates,
        ("transcribe", None): cmd_transcribe,
        ("info", None): cmd_info,
    }
    handler = commands.get((parsed.command, getattr(parsed, "models_command", None)))
    if handler is None:
        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return EXIT_USAGE

    config = ConfigReader.load(parsed.config)
    if parsed.verbose:
        setup_logging(level="DEBUG", log_file=config.get_setting("logging.file"))
    else:
        configure_from_config(config)

    context = AppContext.from_config(config)
    if not context.start():
        print(f"Cannot use models directory {context.store.models_dir}", file=sys.stderr)
        return EXIT_ERROR

    try:
        return handler(context, parsed)
    except VoskKitError as e:
        logger.debug(f"{parsed.command} failed: {e.to_dict()}")
        return _report_failure(e)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    finally:
        context.stop()


if __name__ == "__main__":
    sys.exit(main())
