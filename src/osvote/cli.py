from __future__ import annotations

import argparse
import asyncio
import logging
import os
from typing import List, Optional

from osvote.ballot import Choice
from osvote.client import VoteClient
from osvote.config import ClientConfig
from osvote.machine import Phase, VoteMachine
from osvote.view import render


async def _run(cfg: ClientConfig, poll_id: int, choice: Optional[Choice]) -> int:
    async with VoteClient(cfg) as client:
        machine = VoteMachine(
            client,
            poll_id,
            main_key=cfg.main_key_bytes(),
            tick_interval=cfg.tick_interval,
        )
        shown = ""
        submitted = False

        def step(m: VoteMachine) -> bool:
            nonlocal shown, submitted
            screen = render(m)
            if screen != shown:
                print(screen, flush=True)
                shown = screen
            if choice is not None and not submitted and m.phase is Phase.STARTED:
                m.submit(choice)
                submitted = True
            return m.phase is Phase.ERROR or m.stream_closed

        await machine.run(until=step)
        return 1 if machine.phase is Phase.ERROR else 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Vote in a poll and verify its published result")
    ap.add_argument("poll_id", type=int, help="ID of the poll.")
    ap.add_argument("-d", "--domain", help="Domain of the server (env OSVOTE_DOMAIN).")
    ap.add_argument("-u", "--username", help="Username for the login (env OSVOTE_USERNAME).")
    ap.add_argument("-p", "--password", help="Password for the login (env OSVOTE_PASSWORD).")
    ap.add_argument("--http", action="store_true", help="Use http instead of https.")
    ap.add_argument("-4", "--ipv4", action="store_true", help="Force IPv4 for requests.")
    ap.add_argument("--main-key", help="Public main key, base64 (env OSVOTE_MAIN_KEY).")
    ap.add_argument("--choice", help="Vote yes/no/abstain as soon as the poll is started.")
    ap.add_argument("--log-level", default=os.getenv("OSVOTE_LOG_LEVEL", "WARNING"))
    args = ap.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = ClientConfig.from_env()
    if args.domain:
        cfg.domain = args.domain
    if args.username:
        cfg.username = args.username
    if args.password:
        cfg.password = args.password
    if args.http:
        cfg.http = True
    if args.ipv4:
        cfg.ipv4 = True
    if args.main_key:
        cfg.main_key = args.main_key

    try:
        choice = Choice.parse(args.choice) if args.choice else None
        cfg.main_key_bytes()
    except ValueError as e:
        ap.error(str(e))

    try:
        return asyncio.run(_run(cfg, args.poll_id, choice))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
