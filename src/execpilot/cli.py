"""Summary: Command-line interface for ExecPilot operators.

Importance: Provides local entry points for credentials, ingestion, metrics, and sending due follow-ups.
Alternatives: Use a CLI framework like Typer or Click.
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from execpilot.app import build_context, configure_logging
from execpilot.config import AppConfig
from execpilot.models import RULE_TYPES, FollowUpTask
from execpilot.oauth import build_google_auth_url, create_state_token


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="ExecPilot CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables")

    store_credential = subparsers.add_parser("store-credential", help="Store tokens for an account")
    store_credential.add_argument("account_id", type=str)
    store_credential.add_argument("--email", type=str, default=None)
    store_credential.add_argument("--access-token", type=str, default=None)
    store_credential.add_argument("--refresh-token", type=str, default=None)

    ensure_token = subparsers.add_parser("ensure-token", help="Resolve a usable access token")
    ensure_token.add_argument("account_id", type=str)

    clear_token = subparsers.add_parser("clear-token", help="Drop the stored access token")
    clear_token.add_argument("account_id", type=str)

    metrics = subparsers.add_parser("metrics", help="Show assistant action metrics")
    metrics.add_argument("account_id", type=str)
    metrics.add_argument("--days", type=int, default=7)
    metrics.add_argument("--limit-recent", type=int, default=10)

    process_due = subparsers.add_parser("process-due", help="Send scheduled follow-ups that are due")
    process_due.add_argument("--limit", type=int, default=20)

    add_follow_up = subparsers.add_parser("add-follow-up", help="Ingest follow-ups from a JSON file")
    add_follow_up.add_argument("path", type=str)

    add_category = subparsers.add_parser("add-category", help="Create an auto-sort category")
    add_category.add_argument("account_id", type=str)
    add_category.add_argument("name", type=str)
    add_category.add_argument("--description", type=str, default=None)

    add_rule = subparsers.add_parser("add-rule", help="Create an auto-sort rule")
    add_rule.add_argument("account_id", type=str)
    add_rule.add_argument("category", type=str)
    add_rule.add_argument("rule_type", choices=RULE_TYPES)
    add_rule.add_argument("value", type=str)
    add_rule.add_argument("--priority", type=int, default=0)

    subparsers.add_parser("oauth-url", help="Print the Google consent URL")
    subparsers.add_parser("serve", help="Run the HTTP API")
    return parser


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Drives operator workflows without the HTTP layer.
    Alternatives: Invoke services via the HTTP API.
    """

    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()
    configure_logging(config.log_level)
    context = build_context(config)

    if args.command == "init-db":
        print(f"Database ready at {config.db_path}.")
        return

    if args.command == "store-credential":
        row_id = context.credentials().store_credential(
            args.account_id, args.email, args.access_token, args.refresh_token
        )
        print(f"Stored credential {row_id} for account {args.account_id}.")
        return

    if args.command == "ensure-token":
        credential, _ = context.tokens.ensure_usable_token(args.account_id)
        print(f"Account {credential.account_id} has a usable access token.")
        return

    if args.command == "clear-token":
        cleared = context.store.clear_access_token(args.account_id)
        print("Access token cleared." if cleared else "Account not found.")
        return

    if args.command == "metrics":
        services = context.services_for_account(args.account_id)
        print(json.dumps(services.actions.metrics(args.days, args.limit_recent), indent=2))
        return

    if args.command == "process-due":
        results = context.dispatcher().process_due(limit=args.limit)
        for result in results:
            print(json.dumps(result))
        print(f"Processed {len(results)} due follow-ups.")
        return

    if args.command == "add-follow-up":
        records = json.loads(Path(args.path).read_text(encoding="utf-8"))
        if isinstance(records, dict):
            records = [records]
        for record in records:
            task_id, inserted = context.store.upsert_follow_up(FollowUpTask(**record))
            print(f"{'Inserted' if inserted else 'Merged'} follow-up {task_id}.")
        return

    if args.command == "add-category":
        credential = context.resolve_account(args.account_id)
        category_id = context.store.create_category(credential.id, args.name, args.description)
        print(f"Category {args.name} has id {category_id}.")
        return

    if args.command == "add-rule":
        credential = context.resolve_account(args.account_id)
        category_id = context.store.create_category(credential.id, args.category)
        rule_id = context.store.create_sort_rule(
            credential.id, category_id, args.rule_type, args.value, priority=args.priority
        )
        print(f"Created rule {rule_id} for category {args.category}.")
        return

    if args.command == "oauth-url":
        print(build_google_auth_url(config, create_state_token()))
        return

    if args.command == "serve":
        import uvicorn

        from execpilot.api import create_app

        uvicorn.run(create_app(config), host=config.api_host, port=config.api_port)
        return


if __name__ == "__main__":
    run_cli()
