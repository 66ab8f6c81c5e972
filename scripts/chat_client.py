#!/usr/bin/env python3
"""
Terminal client for the agent stream server.

Follows a thread over SSE (GET /stream) in a background thread and sends every
line you type with POST /message. Open it in two terminals with the same
--thread to watch both receive the same replies.

Run from project root (server started with `uvicorn agent_stream.main:app`):

    python scripts/chat_client.py
    python scripts/chat_client.py --thread my-chat --api http://localhost:8000
"""

import argparse
import json
import os
import threading

import requests

API_BASE = os.environ.get("API_BASE", "http://localhost:8000")


def _follow(api: str, thread_id: str) -> None:
    """Print every SSE message event of the thread until the connection drops."""
    with requests.get(f"{api}/stream", params={"thread_id": thread_id}, stream=True, timeout=None) as r:
        r.raise_for_status()
        event = ""
        for line in r.iter_lines(decode_unicode=True):
            if line.startswith("event:"):
                event = line[len("event:"):].strip()
            elif line.startswith("data:") and event == "message":
                msg = json.loads(line[len("data:"):].strip())
                if msg.get("type") == "human":
                    continue
                if msg.get("tool_calls"):
                    print(f"\n  [tools] {', '.join(tc['name'] for tc in msg['tool_calls'])}")
                elif msg.get("content"):
                    label = "tool" if msg.get("type") == "tool" else "agent"
                    print(f"\n{label}> {msg['content']}\n")


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with the agent over SSE.")
    parser.add_argument("--api", default=API_BASE, help="Server base URL.")
    parser.add_argument("--thread", default="chat-id-XXX", help="Conversation id to join.")
    args = parser.parse_args()

    threading.Thread(target=_follow, args=(args.api, args.thread), daemon=True).start()
    print(f"Joined thread {args.thread!r}. Type a message, or 'exit' to quit.")

    while True:
        try:
            text = input("you> ").strip()
        except (EOFError, KeyboardInterrupt):
            break
        if text.lower() in ("exit", "quit"):
            break
        if not text:
            continue
        r = requests.post(
            f"{args.api}/message",
            params={"thread_id": args.thread, "wait": "false"},
            json={"message": text},
            timeout=10,
        )
        if not r.ok:
            print(f"  [error {r.status_code}] {r.json().get('detail', r.text)}")


if __name__ == "__main__":
    main()
