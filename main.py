import argparse
import asyncio
import logging
import sys

import data.loader  # noqa: F401  configures logging
from data.config import config
from misc.library import FolderLibrary
from misc.utils import error_catch, read_share_text
from xhs_api import EventChannel, EventKind, NamingPreferences, Pipeline, RunState, XHSClient
from xhs_api.exceptions import XHSError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xhs-downloader",
        description="Download images and videos from Xiaohongshu share text",
    )
    parser.add_argument("text", nargs="*", help="Share text; read from stdin when omitted")
    naming = parser.add_mutually_exclusive_group()
    naming.add_argument("--naming", dest="naming", action="store_true", default=None,
                        help="Name files from the template")
    naming.add_argument("--no-naming", dest="naming", action="store_false",
                        help="Use plain postId_NN file names")
    parser.add_argument("--template", help="Naming template, e.g. {title}_{publishTime}")
    parser.add_argument("--save-settings", action="store_true",
                        help="Persist naming options to the settings file")
    parser.add_argument("--library", default=config["download"]["library_dir"],
                        help="Folder receiving downloaded media")
    parser.add_argument("--collect-only", action="store_true",
                        help="List media URLs without downloading")
    parser.add_argument("--description", action="store_true",
                        help="Print the description of the first linked note")
    return parser


def resolve_preferences(args) -> NamingPreferences:
    preferences = NamingPreferences.load()
    enabled = preferences.enabled if args.naming is None else args.naming
    template = (args.template or "").strip() or preferences.template
    preferences = NamingPreferences(enabled=enabled, template=template)
    if args.save_settings:
        preferences.save()
        logging.info(f"Naming settings saved (enabled={preferences.enabled}, template={preferences.template})")
    return preferences


async def print_events(events: EventChannel) -> None:
    async for event in events:
        if event.kind is EventKind.PROGRESS:
            print(f"Progress: {event.message}")
        elif event.kind is EventKind.STATE and event.state.is_terminal:
            print(event.display_text)


async def run_download(pipeline: Pipeline, text: str) -> int:
    printer = asyncio.create_task(print_events(pipeline.events))
    try:
        result = await pipeline.run(text)
    finally:
        pipeline.events.close()
        await printer
    for path in result.saved:
        print(path)
    return 0 if result.state is RunState.COMPLETED else 1


async def run_collect(pipeline: Pipeline, text: str) -> int:
    media = await pipeline.collect_media(text)
    if not media:
        print("No downloadable media found")
        return 0
    for item in media:
        print(f"{item.media_type.value}\t{item.file_base_name}\t{item.url}")
    return 0


async def main() -> int:
    args = build_parser().parse_args()
    text = read_share_text(args.text)
    preferences = resolve_preferences(args)

    pipeline = Pipeline(
        library=FolderLibrary(args.library),
        preferences=preferences,
        events=EventChannel(),
    )
    try:
        if args.description:
            print(await pipeline.extract_description(text))
            return 0
        if args.collect_only:
            return await run_collect(pipeline, text)
        return await run_download(pipeline, text)
    except XHSError as e:
        logging.error(str(e))
        return 1
    except Exception as e:
        logging.error(error_catch(e))
        return 1
    finally:
        await XHSClient.close()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
