#!/usr/bin/env python3
"""Chat with the comic agent from a terminal.

Usage: python scripts/chat_cli.py [--backend http://localhost:8000] [--account USER_ID]

Type a message and press enter. ``/new`` starts a fresh session and
``/quit`` exits. Panels are printed as they come back; pass ``--account``
to copy their media into the local buckets like a signed-in user.
"""
import argparse
import asyncio
import sys

from comicgen.core.logging import configure_logging
from comicgen.core.settings import settings
from comicgen.services.agent_client import AgentClient
from comicgen.services.comic_chat import ComicChatSession
from comicgen.services.storage import BucketStore


def print_turn(turn) -> None:
    print(f"\nagent> {turn.reply}\n")
    if not turn.panels:
        return
    if turn.title:
        print(f"== {turn.title} ==")
    for panel in turn.panels:
        audio = "yes" if panel.audio_base64 else "no"
        print(f"[Panel {panel.panel_id}] {panel.narration}")
        print(f"    image: {panel.image_url or '-'}  audio: {audio}")
    if turn.comic_id:
        print(f"saved as {turn.comic_id}")
    print()


async def chat(backend_url: str, account_id: str | None) -> int:
    store = BucketStore(
        root_dir=settings.media_root,
        public_base_url=settings.gateway_public_url,
        url_prefix=settings.media_url_prefix,
    )
    async with AgentClient(
        base_url=backend_url,
        app_name=settings.app_name,
        timeout_seconds=settings.agent_backend_timeout_seconds,
    ) as client:
        session = ComicChatSession(client=client, store=store, account_id=account_id)
        print(f"Connected to {backend_url} as {session.user_id} (session {session.session_id})")
        print("Tell me what lesson the comic should teach. /new starts over, /quit exits.\n")

        while True:
            try:
                message = await asyncio.to_thread(input, "you> ")
            except (EOFError, KeyboardInterrupt):
                print()
                return 0

            message = message.strip()
            if not message:
                continue
            if message == "/quit":
                return 0
            if message == "/new":
                session.new_chat()
                print(f"Started session {session.session_id}\n")
                continue

            turn = await session.send_message(message)
            print_turn(turn)
            if turn.error:
                print("The last message failed; fix the backend and try again.", file=sys.stderr)


def main():
    parser = argparse.ArgumentParser(description="Chat with the comic agent backend.")
    parser.add_argument("--backend", default=settings.agent_backend_url, help="agent backend base URL")
    parser.add_argument("--account", default=None, help="signed-in user id; enables media persistence")
    args = parser.parse_args()

    configure_logging("WARNING")
    try:
        sys.exit(asyncio.run(chat(args.backend, args.account)))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
