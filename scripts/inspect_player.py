"""Fetch a player bundle and report which extraction stages succeed.

    python scripts/inspect_player.py /s/player/<id>/player_ias.vflset/en_US/base.js --sig abcdef --n abc123
"""
import argparse
import asyncio
import logging
import sys

from playercipher.decipher.base import PipelineState
from playercipher.decipher.extractors import (
    extract_global_variable, extract_sig_decipher_func, extract_n_transform_func,
)
from playercipher.decipher.fetcher import Fetcher
from playercipher.decipher.resolver import extract_functions
from playercipher.decipher import config


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect signature / n extraction for a player bundle")
    parser.add_argument("player", help="Player URL or /s/player/... path")
    parser.add_argument("--sig", help="Sample signature to decipher")
    parser.add_argument("--n", dest="n_value", help="Sample n parameter to transform")
    parser.add_argument("--dump", action="store_true", help="Print the assembled programs")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args()


async def fetch_player(player: str) -> str:
    async with Fetcher() as fetcher:
        return await fetcher.get(player, base_url=config.PLAYER_BASE_URL)


def main():
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    body = asyncio.run(fetch_player(args.player))
    print(f"Player size: {len(body)} bytes")

    table = extract_global_variable(body)
    print(f"Global table:   {table.name + ' (' + str(len(table.code)) + ' chars)' if table else 'not found'}")

    decipher_code = extract_sig_decipher_func(body, table)
    print(f"Decipher func:  {'found' if decipher_code else 'not found'}")

    n_code = extract_n_transform_func(body, table)
    print(f"N transform:    {'found' if n_code else 'not found'}")

    if args.dump:
        for title, code in (("decipher", decipher_code), ("n transform", n_code)):
            if code:
                print(f"\n── {title} program ──\n{code}")

    decipher_script, n_script = extract_functions(body, PipelineState())
    if args.sig and decipher_script:
        print(f"\nsig {args.sig!r} -> {decipher_script.run({'sig': args.sig})!r}")
    if args.n_value and n_script:
        print(f"n   {args.n_value!r} -> {n_script.run({'ncode': args.n_value})!r}")


if __name__ == '__main__':
    try:
        main()
    except Exception as e:
        print('Player inspection failed:', e, file=sys.stderr)
        sys.exit(2)
