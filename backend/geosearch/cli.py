"""Command line entrypoint for index maintenance.

    python -m geosearch.cli rebuild [--scope places|schools]
    python -m geosearch.cli patch [--since EPOCH] [--scope places|schools]
    python -m geosearch.cli migrate
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Optional, Sequence

from geosearch.domain.search import models
from geosearch.domain.search.service import IndexService
from geosearch.infra import postgres
from geosearch.infra import redis as redis_infra
from geosearch.obs import logging as obs_logging


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(prog="geosearch", description="Maintain the autocomplete prefix index.")
	commands = parser.add_subparsers(dest="command", required=True)

	rebuild = commands.add_parser("rebuild", help="Rebuild into a fresh generation and swap the alias")
	rebuild.add_argument("--scope", choices=models.INDEX_NAMES, default=None)

	patch = commands.add_parser("patch", help="Apply catalog rows updated since the watermark")
	patch.add_argument("--scope", choices=models.INDEX_NAMES, default=None)
	patch.add_argument("--since", type=int, default=None, help="Override the stored watermark (epoch seconds)")

	commands.add_parser("migrate", help="Apply the catalog SQL migrations")
	return parser


async def _run(args: argparse.Namespace, service: Optional[IndexService] = None) -> list[dict]:
	service = service or IndexService()
	try:
		if args.command == "migrate":
			return [{"migration": name} for name in await postgres.apply_migrations()]
		if args.command == "rebuild":
			runs = await service.rebuild(args.scope)
		else:
			runs = await service.patch(since=args.since, scope=args.scope)
	finally:
		await postgres.close_pool()
		await redis_infra.close_client()
	return [run.model_dump() for run in runs]


def main(argv: Optional[Sequence[str]] = None) -> None:
	args = build_parser().parse_args(argv)
	obs_logging.configure_logging()
	runs = asyncio.run(_run(args))
	print(json.dumps(runs, indent=2))


if __name__ == "__main__":
	main()
