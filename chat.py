#!/usr/bin/env python3
"""Console entry point for the Regis edge chat client."""

import argparse
import asyncio
import os
import sys

from regis_client.chat.backup_store import FileBackupStore
from regis_client.chat.offline_queue import OfflineQueue
from regis_client.chat.orchestrator import RequestOrchestrator
from regis_client.chat.session import ChatSession
from regis_client.clients.connectivity import ConnectivityMonitor
from regis_client.clients.context import ApiContext
from regis_client.config.settings import settings
from regis_client.exceptions import ConfigurationError
from regis_client.utils.logger import logger, setup_logging

COMMANDS = "/undo, /redo, /clear, /queue, /quit"


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat with the Regis edge backend")
    parser.add_argument("--model", default=None, help="Model to request (backend default if omitted)")
    parser.add_argument("--base-url", default=None, help="Overrides API_BASE_URL")
    parser.add_argument("--no-stream", action="store_true", help="Wait for whole answers instead of streaming")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> None:
    async with ApiContext.create(base_url=args.base_url) as context:
        orchestrator = RequestOrchestrator(context)
        connectivity = ConnectivityMonitor(online=await orchestrator.check_health())
        offline_queue = OfflineQueue(connectivity=connectivity)
        session = ChatSession(
            orchestrator,
            backup_store=FileBackupStore(),
            offline_queue=offline_queue,
            streaming=not args.no_stream,
        )
        connectivity.watch(orchestrator.check_health, settings.HEALTH_CHECK_INTERVAL_SECONDS)

        if await session.restore():
            print(f"Restored {len(session.messages)} messages from the last backup.")
        print(f"Connected to {context.base_url} ({COMMANDS})")

        try:
            await _chat_loop(session, offline_queue, args.model)
        finally:
            connectivity.stop()
            offline_queue.close()
            await session.backup()


async def _chat_loop(session: ChatSession, offline_queue: OfflineQueue, model) -> None:
    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            return
        command = line.strip()

        if command in ("/quit", "/exit"):
            return
        if command == "/undo":
            print("Undone." if session.undo() else "Nothing to undo.")
            continue
        if command == "/redo":
            print("Redone." if session.redo() else "Nothing to redo.")
            continue
        if command == "/clear":
            session.clear_chat()
            print("Conversation cleared.")
            continue
        if command == "/queue":
            print(f"{len(offline_queue)} prompt(s) waiting to be sent.")
            continue
        if not command:
            continue

        printed = 0

        def show_progress() -> None:
            nonlocal printed
            # The pending assistant message grows as chunks arrive
            content = session.messages[-1].content if session.messages else ""
            sys.stdout.write(content[printed:])
            sys.stdout.flush()
            printed = len(content)

        task = asyncio.ensure_future(session.send_message(command, model))
        while not task.done():
            await asyncio.sleep(0.05)
            if session.streaming and session.is_loading:
                show_progress()
        reply = task.result()

        if reply is not None:
            sys.stdout.write(reply.content[printed:] + "\n")
            if reply.sources:
                for source in reply.sources:
                    print(f"  - {source.get('title', 'Untitled')}: {source.get('link', '')}")
        elif session.error:
            print(f"\n[error] {session.error}")
        elif len(offline_queue):
            print("Offline: prompt queued and will be sent when the backend is reachable.")


def main(argv=None) -> None:
    """Initialize logging and configuration, then run the chat loop."""
    setup_logging(
        level=os.getenv("LOG_LEVEL", "WARNING"),
        log_file=os.getenv("LOG_FILE") or None,
        log_format=os.getenv("LOG_FORMAT", "text"),
        json_log_file=os.getenv("LOG_JSON_FILE") or None,
    )
    args = parse_args(argv)

    try:
        settings.validate()
        asyncio.run(run(args))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
