#!/usr/bin/env python3
"""Command-line entry point: submit a research query, list history, or run the nightly agent."""

import argparse
import asyncio
import json
import sys

from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from config.config import Config  # noqa: E402
from models.research import QueryConfig  # noqa: E402
from orchestrator.errors import ResearchError  # noqa: E402
from server.runtime import ResearchRuntime  # noqa: E402

CLI_USER = "cli"


def print_result(result) -> None:
    query = result.query
    print(f"\n=== Query {query.id} [{query.status.value}] ===")
    print(f"Original: {query.original_query}")
    if query.refined_query:
        print(f"Refined:  {query.refined_query}")
    if not result.responses:
        print("\nNo responses were produced.")
    for response in result.responses:
        print(f"\n--- {response.model.value} over {response.source or 'no sources'} ---")
        print(response.content)
        print(
            f"\n[relevance={response.relevance_score} citations={response.citation_count} "
            f"tokens={response.input_tokens}+{response.output_tokens} "
            f"cost=${response.estimated_cost:.6f} latency={response.latency_ms}ms]"
        )


async def ask(runtime: ResearchRuntime, args: argparse.Namespace) -> int:
    config = QueryConfig(text=args.text, sources=args.sources, models=args.models)
    submitted = await runtime.orchestrator.submit_query(config, args.user)
    print(f"{submitted.message}: {submitted.query_id} ({submitted.remaining_quota} remaining)")
    print("\033[93mWorking...\033[0m")
    await runtime.orchestrator.drain()
    result = await runtime.orchestrator.get_query_results(submitted.query_id, args.user)
    print_result(result)
    return 0


async def history(runtime: ResearchRuntime, args: argparse.Namespace) -> int:
    records = await runtime.orchestrator.get_query_history(args.user, args.limit)
    if not records:
        print(f"No queries for user '{args.user}'")
    for record in records:
        print(
            f"{record.created_at:%Y-%m-%d %H:%M} {record.status.value:<10} {record.id} "
            f"{record.original_query[:60]}"
        )
    return 0


async def nightly(runtime: ResearchRuntime, args: argparse.Namespace) -> int:
    result = await runtime.nightly_job.run()
    print(json.dumps(result.to_dict(), indent=2))
    return 0


COMMANDS = {"ask": ask, "history": history, "nightly": nightly}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Research intelligence query engine")
    sub = parser.add_subparsers(dest="command", required=True)

    ask_parser = sub.add_parser("ask", help="Submit a query and wait for its results")
    ask_parser.add_argument("text", help="Research question")
    ask_parser.add_argument("--sources", nargs="+", default=["openalex", "pubmed"])
    ask_parser.add_argument("--models", nargs="+", default=["claude"])
    ask_parser.add_argument("--user", default=CLI_USER)

    history_parser = sub.add_parser("history", help="List past queries for a user")
    history_parser.add_argument("--user", default=CLI_USER)
    history_parser.add_argument("--limit", type=int, default=20)

    sub.add_parser("nightly", help="Run the nightly research agent once")
    return parser


async def run(args: argparse.Namespace) -> int:
    runtime = ResearchRuntime.from_config(Config())
    # a CLI process must not pick up queries owned by a running server
    await runtime.start(recover=False)
    try:
        return await COMMANDS[args.command](runtime, args)
    finally:
        await runtime.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except ResearchError as e:
        print(f"\033[91mError ({e.code}): {e.message}\033[0m", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
