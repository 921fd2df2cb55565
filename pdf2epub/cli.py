#!/usr/bin/env python3
"""
Command-line interface for pdf2epub.

Usage:
    # Convert a PDF (scanned PDFs are transcribed with the active profile)
    pdf2epub convert ./book.pdf --title "My Book" --author "Author Name"

    # Mark chapters by 1-based page number
    pdf2epub convert ./book.pdf --chapter 1:Foreword --chapter 9:"Chapter One"

    # Show how a PDF would be handled
    pdf2epub inspect ./book.pdf

    # Manage vision providers
    pdf2epub profiles add --base-url http://localhost:11434/v1 --model llava --activate
    pdf2epub profiles list
    pdf2epub models

    # Run the HTTP backend
    pdf2epub serve --port 8787
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def build_config(args: argparse.Namespace):
    from .config import AppConfig, default_settings_path

    return AppConfig(
        settings_path=Path(args.settings) if args.settings else default_settings_path(),
        output_dir=Path(getattr(args, "output", None) or "."),
    )


def parse_chapter(value: str) -> tuple[int, str]:
    """Parse ``PAGE:TITLE`` with a 1-based page number."""
    page, sep, title = value.partition(":")
    try:
        number = int(page)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected PAGE:TITLE, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"Page numbers start at 1, got {number}")
    return number - 1, title if sep else ""


async def _convert(args: argparse.Namespace) -> int:
    from .library import DocumentMode
    from .pipeline import BookSession
    from .progress import TranscriptionProgress
    from .transcriber import RunState

    session = BookSession(build_config(args))
    if args.profile:
        try:
            session.settings.activate(session.settings.find(args.profile).id)
        except KeyError as e:
            print(f"✗ {e.args[0]}", file=sys.stderr)
            return 1

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Input file not found: {input_path}", file=sys.stderr)
        return 1

    result = await session.open_pdf(input_path)
    entry = result.entry
    print(f"{entry.document.title}: {entry.document.page_count} pages ({entry.mode.value} mode)")

    if result.warning:
        if entry.mode is DocumentMode.IMAGE or entry.extraction_error:
            print(f"\n✗ {result.warning}", file=sys.stderr)
            return 1
        print(f"⚠ {result.warning}")

    if result.transcription_started:
        run = session.driver.run_for(entry.id)
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, session.cancel_transcription, entry.id)
        except (NotImplementedError, RuntimeError):
            # Signal handling may fail in some contexts (e.g., Windows event loops)
            pass

        with TranscriptionProgress(total=run.total_pages, start=run.next_page_index) as progress:
            session.driver.listeners.append(progress.on_page)
            run = await session.driver.wait(entry.id)
            progress.cancelled = run.state is RunState.CANCELLED

        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

        if run.state is RunState.CANCELLED:
            print("⚠ Transcription cancelled; exporting the pages finished so far")

    for page_index, title in args.chapter or []:
        try:
            session.edits.place_chapter(entry.id, page_index, title)
        except IndexError:
            print(f"✗ No page {page_index + 1} in this document", file=sys.stderr)
            return 1

    session.set_metadata(entry.id, title=args.title, author=args.author)
    export = await session.export(entry.id, Path(args.output))

    if export.success:
        print(f"\n✓ {export.message}")
        return 0
    print(f"\n✗ {export.message}", file=sys.stderr)
    return 1


def cmd_convert(args: argparse.Namespace) -> int:
    """Convert a PDF to EPUB."""
    return asyncio.run(_convert(args))


def cmd_inspect(args: argparse.Namespace) -> int:
    """Report how a PDF would be handled."""
    from .library import DocumentMode
    from .resolver import resolve_document

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Input file not found: {input_path}", file=sys.stderr)
        return 1

    entry = resolve_document(input_path.name, input_path.read_bytes())
    if entry.extraction_error:
        print(f"✗ No text extracted: {entry.extraction_error}", file=sys.stderr)
        return 1

    print(f"Title: {entry.document.title}")
    print(f"Pages: {entry.document.page_count}")
    print(f"Mode:  {entry.mode.value}")
    if entry.mode is DocumentMode.TEXT:
        for i, text in enumerate(entry.original_pages, start=1):
            print(f"  page {i:4d}: {len(text.strip()):6d} chars")
    else:
        print("  No usable text layer; pages will be transcribed with the active profile")
    return 0


def cmd_models(args: argparse.Namespace) -> int:
    """List models offered by a profile's provider."""
    from .transcriber import ConfigurationError, ModelListError, fetch_models

    settings = build_config(args).settings_store.load()
    try:
        profile = settings.find(args.profile) if args.profile else settings.active_profile
        models = asyncio.run(fetch_models(profile))
    except (KeyError, ConfigurationError, ModelListError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    for name in models:
        print(name)
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List, add, activate, or remove provider profiles."""
    from .config import ProviderProfile, preset_name_for

    store = build_config(args).settings_store
    settings = store.load()

    if args.action == "list":
        for profile in settings.profiles:
            marker = "*" if profile.id == settings.active_profile_id else " "
            base_url = profile.base_url or "(no base URL)"
            print(f"{marker} {profile.name:20s} {base_url:45s} {profile.model}  [{profile.id}]")
        return 0

    if args.action == "add":
        name = args.name or preset_name_for(args.base_url or "") or ("Custom" if args.base_url else None)
        profile = ProviderProfile(
            name=name or "New Profile",
            base_url=args.base_url or "",
            api_key=args.api_key,
            model=args.model or "",
            prompt=args.prompt,
        )
        settings.add_profile(profile)
        if args.activate:
            settings.activate(profile.id)
        store.save(settings)
        print(f"✓ Added profile {profile.name!r} [{profile.id}]")
        return 0

    try:
        profile = settings.find(args.target)
    except KeyError as e:
        print(f"✗ {e.args[0]}", file=sys.stderr)
        return 1

    if args.action == "use":
        settings.activate(profile.id)
        print(f"✓ Active profile: {profile.name}")
    else:
        settings.delete_profile(profile.id)
        print(f"✓ Removed profile {profile.name!r}")
    store.save(settings)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP backend."""
    import uvicorn

    from .server import create_app

    config = build_config(args)
    print(f"Starting server on {args.host}:{args.port}...")
    print(f"Settings: {config.settings_path}")
    uvicorn.run(create_app(config), host=args.host, port=args.port)
    return 0


def main() -> int:
    """Main entry point."""
    from .config import DEFAULT_API_KEY, DEFAULT_PROMPT

    parser = argparse.ArgumentParser(
        prog="pdf2epub",
        description="Convert PDF documents to EPUB",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--settings", help="Settings file (default: ~/.config/pdf2epub/settings.json)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # convert command
    p_convert = subparsers.add_parser(
        "convert",
        help="Convert a PDF to EPUB",
        description="Extract or transcribe a PDF and write {title}.epub",
    )
    p_convert.add_argument("input", help="Input PDF file")
    p_convert.add_argument("-o", "--output", default=".", help="Output directory")
    p_convert.add_argument("-t", "--title", help="Book title (default: file name)")
    p_convert.add_argument("-a", "--author", help="Book author")
    p_convert.add_argument(
        "-c", "--chapter",
        action="append",
        type=parse_chapter,
        metavar="PAGE:TITLE",
        help="Start a chapter at a 1-based page (repeatable)",
    )
    p_convert.add_argument("-p", "--profile", help="Provider profile id or name")
    p_convert.set_defaults(func=cmd_convert)

    # inspect command
    p_inspect = subparsers.add_parser("inspect", help="Show whether a PDF has usable text")
    p_inspect.add_argument("input", help="Input PDF file")
    p_inspect.set_defaults(func=cmd_inspect)

    # models command
    p_models = subparsers.add_parser("models", help="List models offered by a provider")
    p_models.add_argument("-p", "--profile", help="Profile id or name (default: active)")
    p_models.set_defaults(func=cmd_models)

    # profiles command
    p_profiles = subparsers.add_parser("profiles", help="Manage provider profiles")
    profile_actions = p_profiles.add_subparsers(dest="action", required=True)
    profile_actions.add_parser("list", help="List profiles")

    p_add = profile_actions.add_parser("add", help="Add a profile")
    p_add.add_argument("--name", help="Display name (default: preset name for the base URL)")
    p_add.add_argument("--base-url", help="API root, e.g. https://api.openai.com/v1")
    p_add.add_argument("--api-key", default=DEFAULT_API_KEY, help="Bearer token")
    p_add.add_argument("--model", help="Model name")
    p_add.add_argument("--prompt", default=DEFAULT_PROMPT, help="Transcription prompt")
    p_add.add_argument("--activate", action="store_true", help="Make this the active profile")

    for action, help_text in (("use", "Activate a profile"), ("remove", "Delete a profile")):
        p_action = profile_actions.add_parser(action, help=help_text)
        p_action.add_argument("target", help="Profile id or name")
    p_profiles.set_defaults(func=cmd_profiles)

    # serve command
    p_serve = subparsers.add_parser("serve", help="Run the HTTP backend")
    p_serve.add_argument("--host", default="127.0.0.1", help="Bind address")
    p_serve.add_argument("--port", type=int, default=8787, help="Port")
    p_serve.add_argument("-o", "--output", default=".", help="Export directory")
    p_serve.set_defaults(func=cmd_serve)

    args = parser.parse_args()
    setup_logging(args.verbose)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
