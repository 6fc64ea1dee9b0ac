#!/usr/bin/env python3
import argparse
import asyncio
import sys
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from .app import AppContext
from .config import Settings, PACKAGE_NAME
from .history import WatchHistory
from .models import NO_FANSUB, AcquisitionRequest, FansubChoice, Outcome
from .update import check_for_updates, compare_versions, current_version, latest_version, update_notice
from .utils import quiet


def choose_index(message: str, labels: Sequence[str], input_fn: Callable = input) -> int:
    """Numbered prompt; returns the 0-based index of the picked label."""
    if len(labels) == 1:
        return 0
    print(f"\n{message}:")
    for i, label in enumerate(labels, 1):
        display = label if len(label) <= 80 else label[:77] + "..."
        print(f"  {i}. {display}")
    while True:
        choice = input_fn(f"\nSelect (1-{len(labels)}): ").strip()
        if not choice:
            continue
        try:
            index = int(choice) - 1
        except ValueError:
            print("Please enter a valid number.")
            continue
        if 0 <= index < len(labels):
            return index
        print(f"Please enter a number between 1 and {len(labels)}")


def pick_fansub(fansubs: List[FansubChoice], input_fn: Callable = input) -> FansubChoice:
    if not fansubs:
        print("No video options found for the selected episode.")
        return FansubChoice(NO_FANSUB, NO_FANSUB)
    choice = fansubs[choose_index("Select a video", [f.label for f in fansubs], input_fn)]
    print(f"Selected video: {choice.label}")
    return choice


def format_entry(i: int, entry) -> str:
    when = datetime.fromtimestamp(entry.timestamp / 1000).strftime("%Y-%m-%d %H:%M") if entry.timestamp else "?"
    mins, secs = divmod(int(entry.position), 60)
    return f"  {i}. {entry.title} - {entry.episode_title} [{entry.fansub_name}] at {mins:02d}:{secs:02d} ({when})"


async def watch(ctx: AppContext, query: str, input_fn: Callable = input) -> Outcome:
    """Search, let the user pick title/episode/fansub, then play."""
    print(f"Fetching anime info: {query}")
    results = await ctx.catalog.search(query)
    if not results:
        print("Anime not found.")
        return Outcome.FAILED
    result = results[choose_index("Select an anime", [r.title for r in results], input_fn)]
    print(f"Selected anime ID: {result.anime_id}")

    episodes = await ctx.catalog.episodes(result.anime_id)
    if not episodes:
        print("No episodes found.")
        return Outcome.FAILED
    index = choose_index("Select an episode", [e.title for e in episodes], input_fn)
    episode = episodes[index]
    print(f"Selected episode: {episode.title}")
    print(f"Episode link: {episode.url}")

    fansub = pick_fansub(await ctx.catalog.fansubs(episode), input_fn)
    request = AcquisitionRequest.for_episode(
        episodes, index, fansub,
        title_id=result.anime_id, title_name=result.title,
    )
    return await ctx.orchestrator.acquire(request)


async def resume_last(ctx: AppContext) -> Outcome:
    """Continue the most recent history entry where it stopped."""
    entry = ctx.history.last()
    if entry is None:
        print("No watch history yet.")
        return Outcome.FAILED
    episodes = await ctx.catalog.episodes(entry.anime_id)
    if not episodes:
        print("No episodes found.")
        return Outcome.FAILED
    index = min(entry.episode_index, len(episodes) - 1)
    print(f"Continuing {entry.title}: {episodes[index].title}")
    # Only the label is stored; the locator looks the token up again.
    fansub = FansubChoice(entry.fansub_name, entry.fansub_name)
    request = AcquisitionRequest.for_episode(
        episodes, index, fansub,
        resume_position=entry.position if index == entry.episode_index else 0,
        title_id=entry.anime_id, title_name=entry.title,
    )
    return await ctx.orchestrator.acquire(request)


async def print_version():
    current = current_version()
    latest = await latest_version()
    print(f"Current version: {current}")
    print(f"Latest version: {latest}")
    if compare_versions(current, latest) < 0:
        print("\nAn update is available! Run the following command to update:")
        print(f"pip install -U {PACKAGE_NAME}")
    else:
        print("\nYou are using the latest version.")


async def notify_update():
    current, latest, available = await check_for_updates(log_fn=quiet)
    if available:
        print("\n" + update_notice(current, latest) + "\n")


def build_argparser():
    """
    Build and configure the argument parser.

    Returns:
        argparse.ArgumentParser: Configured argument parser with all CLI options.
    """
    p = argparse.ArgumentParser(prog=PACKAGE_NAME, description="Search for and watch anime from the terminal")
    p.add_argument("query", nargs="*", help="Name of the anime to search for")
    p.add_argument("--continue", dest="resume", action="store_true", help="Resume the last watched episode")
    p.add_argument("--history", action="store_true", help="Show watch history")
    p.add_argument("--limit", type=int, default=10, help="Number of history entries to show")
    p.add_argument("--clear-history", action="store_true", help="Delete watch history")
    p.add_argument("--version", dest="check_version", action="store_true", help="Show current version and check for updates")
    p.add_argument("--port", type=int, help="Local file server port (default 8000)")
    p.add_argument("--cache-dir", help="Where episode playlists are cached")
    p.add_argument("--mpv", help="Path to the mpv executable")
    p.add_argument("--no-presence", action="store_true", help="Disable Discord Rich Presence")
    p.add_argument("--no-headless", action="store_true", help="Run browser with GUI (for debugging)")
    p.add_argument("--verbose", "-v", action="store_true", help="Print every network request seen during stream discovery")
    return p


async def run(args, settings: Settings, input_fn: Callable = input) -> int:
    if args.check_version:
        await print_version()
        return 0

    if args.clear_history or args.history:
        history = WatchHistory(settings.history_path, settings.history_limit)
        if args.clear_history:
            return 0 if history.clear() else 1
        entries = history.entries(args.limit)
        if not entries:
            print("No watch history yet.")
        for i, entry in enumerate(entries, 1):
            print(format_entry(i, entry))
        return 0

    query = " ".join(args.query).strip().strip('"')
    if not args.resume and not query:
        while not query:
            query = input_fn("Enter the name of the anime: ").strip()

    ctx = AppContext.create(settings)
    try:
        if args.resume:
            outcome = await resume_last(ctx)
        else:
            await notify_update()
            outcome = await watch(ctx, query, input_fn)
    finally:
        await ctx.close()
    return 1 if outcome is Outcome.FAILED else 0


def main(argv: Optional[Sequence[str]] = None):
    """
    Main entry point for the command line client.
    """
    args = build_argparser().parse_args(argv)
    settings = Settings.from_env().with_args(args)
    try:
        code = asyncio.run(run(args, settings))
    except (KeyboardInterrupt, EOFError):
        print("\nInterrupted.")
        code = 130
    except Exception as e:
        print("Error:", e)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
