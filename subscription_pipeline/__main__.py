"""Command line entry point.

    subscription-pipeline [serve]                 run the HTTP service
    subscription-pipeline process-dlq             one retry pass on a running service
    subscription-pipeline cleanup [--retention-days N]
    subscription-pipeline resolve ENTRY_ID

The stores live in the service process, so the one-shot commands call its
maintenance endpoints (PIPELINE_URL, default http://localhost:8080) and print
the JSON result. An external scheduler can run them when scheduler.enabled
is false.
"""

import argparse
import json
import os
import sys
from typing import List, Optional

import httpx
import uvicorn

DEFAULT_URL = "http://localhost:8080"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subscription-pipeline",
        description="Idempotent subscription notification ingestion with DLQ retry",
    )
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Run the HTTP service (default)")
    _add_serve_options(serve)

    for name, help_text in (
        ("process-dlq", "Run one dead letter retry pass"),
        ("cleanup", "Purge processed events and resolved entries past retention"),
        ("resolve", "Resolve a dead letter entry by hand"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument(
            "--url",
            default=os.getenv("PIPELINE_URL", DEFAULT_URL),
            help=f"Base URL of the running pipeline (default: {DEFAULT_URL})",
        )
        command.add_argument("--timeout", type=float, default=30.0, help="Request timeout in seconds")
        if name == "cleanup":
            command.add_argument("--retention-days", type=int, help="Override the configured window")
        elif name == "resolve":
            command.add_argument("entry_id", help="Dead letter entry id")

    return parser


def _add_serve_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "INFO"),
    )
    parser.add_argument("--log-format", choices=["json", "console"], default=os.getenv("LOG_FORMAT", "json"))
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/pipeline.yaml"),
        help="Path to pipeline.yaml (default: config/pipeline.yaml)",
    )
    parser.add_argument("--reload", action="store_true", help="Auto-reload for development")


def maintenance_request(args: argparse.Namespace) -> tuple:
    """HTTP path and JSON body for a one-shot command."""
    if args.command == "process-dlq":
        return "/v1/maintenance/dlq/process", None
    if args.command == "cleanup":
        body = {"retention_days": args.retention_days} if args.retention_days is not None else None
        return "/v1/maintenance/cleanup", body
    if args.command == "resolve":
        return f"/v1/maintenance/dlq/{args.entry_id}/resolve", None
    raise ValueError(f"Not a maintenance command: {args.command}")


def run_command(args: argparse.Namespace, client: Optional[httpx.Client] = None) -> int:
    """Run a one-shot maintenance command and print its JSON result.

    Args:
        args: Parsed arguments
        client: HTTP client to use; one bound to args.url is created when omitted

    Returns:
        Process exit code: 0 on success, 1 when the pipeline answered with an
        error or could not be reached
    """
    path, body = maintenance_request(args)
    owns_client = client is None
    if owns_client:
        client = httpx.Client(base_url=args.url, timeout=args.timeout)

    try:
        response = client.post(path, json=body)
    except httpx.HTTPError as e:
        print(f"Pipeline request failed: {e}", file=sys.stderr)
        return 1
    finally:
        if owns_client:
            client.close()

    if response.is_error:
        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        print(f"{args.command} failed ({response.status_code}): {json.dumps(detail)}", file=sys.stderr)
        return 1

    print(json.dumps(response.json(), indent=2))
    return 0


def serve(args: argparse.Namespace) -> None:
    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    os.environ["CONFIG_PATH"] = args.config

    if args.log_format == "console":
        from subscription_pipeline import __version__

        print(f"Subscription Event Pipeline v{__version__} on {args.host}:{args.port} (config: {args.config})")

    try:
        uvicorn.run(
            "subscription_pipeline.main:app",
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            reload=args.reload,
            access_log=False,  # RequestLoggingMiddleware logs requests
        )
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")


def main(argv: Optional[List[str]] = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or (argv[0].startswith("-") and argv[0] not in ("-h", "--help")):
        argv = ["serve", *argv]

    args = build_parser().parse_args(argv)
    if args.command == "serve":
        serve(args)
        return

    exit_code = run_command(args)
    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
