"""
webhookq CLI - run the worker, create the queue schema, publish test messages
"""

import argparse
import asyncio
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import WebhookQError
from ..logging import setup_logging
from ..models import HttpMethod, NotificationMessage
from ..settings import SenderKind, TransportKind, WebhookQSettings, build_settings
from .colors import print_status


def _settings_from_args(args) -> WebhookQSettings:
    """Settings from the environment with command line overrides applied"""
    overrides: Dict[str, Any] = {}
    for option in (
        "transport",
        "sender",
        "queue_name",
        "concurrency",
        "database_url",
        "redis_url",
    ):
        value = getattr(args, option, None)
        if value is not None:
            overrides[option] = value
    return build_settings(**overrides)


def _parse_headers(values: Optional[List[str]]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition(":")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(
                f"Invalid header '{item}', expected 'Name: value'"
            )
        headers[key.strip()] = value.strip()
    return headers


def _default_payload(notification_id: uuid.UUID) -> str:
    return json.dumps(
        {
            "event": "test.webhook",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": {
                "message": "Hello from the webhookq publisher!",
                "notificationId": str(notification_id),
            },
        },
        indent=2,
    )


async def handle_worker_command(args) -> int:
    from ..worker import Worker

    settings = _settings_from_args(args)
    setup_logging(settings.log_level, settings.log_format)

    await Worker(settings).run()
    return 0


async def handle_setup_command(args) -> int:
    from ..db.schema import setup_database

    settings = _settings_from_args(args)
    await setup_database(settings.database_url)
    print_status("Queue schema is ready", "success")
    return 0


def build_publish_message(args) -> NotificationMessage:
    notification_id = uuid.uuid4()
    headers = _parse_headers(args.header)
    headers.setdefault("X-Test-Timestamp", datetime.now(timezone.utc).isoformat())

    message = NotificationMessage(
        notification_id=notification_id,
        webhook_url=args.url,
        http_method=HttpMethod.parse(args.method).value,
        payload=args.payload or _default_payload(notification_id),
        content_type=args.content_type,
        headers=headers,
        secret=args.secret or None,
        max_retries=args.max_retries,
        timeout_seconds=args.timeout,
    )
    # Reject messages the worker would requeue forever
    message.to_notification()
    return message


async def handle_publish_command(args) -> int:
    from ..transports import create_consumer

    settings = _settings_from_args(args)
    message = build_publish_message(args)

    if settings.transport == TransportKind.MEMORY:
        print_status(
            "The memory transport is process-local; a separate worker will not see this message",
            "warning",
        )

    consumer = create_consumer(settings)
    try:
        await consumer.publish(message)
    finally:
        await consumer.close()

    print_status(f"Notification ID: {message.notification_id}", "info")
    print_status(f"Method: {message.http_method}", "info")
    print_status(
        f"Message published to {settings.transport.value} queue '{settings.queue_name}'",
        "success",
    )
    return 0


def _add_transport_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--transport",
        choices=[kind.value for kind in TransportKind],
        help="Queue transport (overrides WEBHOOKQ_TRANSPORT)",
    )
    parser.add_argument(
        "--queue",
        dest="queue_name",
        help="Queue name (overrides WEBHOOKQ_QUEUE_NAME)",
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        help="Database URL (overrides WEBHOOKQ_DATABASE_URL)",
    )
    parser.add_argument(
        "--redis-url",
        metavar="URL",
        help="Redis URL (overrides WEBHOOKQ_REDIS_URL)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webhookq",
        description="webhookq CLI - queue-driven webhook delivery",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  webhookq setup
  webhookq worker --transport redis --concurrency 4
  webhookq publish --url https://example.com/hook --secret s3cret
        """,
    )
    subparsers = parser.add_subparsers(dest="command", title="Available commands")

    worker = subparsers.add_parser("worker", help="Consume the queue and deliver webhooks")
    _add_transport_arguments(worker)
    worker.add_argument(
        "--sender",
        choices=[kind.value for kind in SenderKind],
        help="Webhook sender (overrides WEBHOOKQ_SENDER)",
    )
    worker.add_argument(
        "--concurrency",
        type=int,
        help="Number of consumer instances (overrides WEBHOOKQ_CONCURRENCY)",
    )
    worker.set_defaults(func=handle_worker_command)

    setup = subparsers.add_parser("setup", help="Create the PostgreSQL queue table")
    setup.add_argument(
        "--database-url",
        metavar="URL",
        help="Database URL (overrides WEBHOOKQ_DATABASE_URL)",
    )
    setup.set_defaults(func=handle_setup_command)

    publish = subparsers.add_parser("publish", help="Publish a test webhook message")
    _add_transport_arguments(publish)
    publish.add_argument("--url", required=True, help="Webhook URL")
    publish.add_argument(
        "--method", default="POST", help="HTTP method: POST, PUT or PATCH (default: POST)"
    )
    publish.add_argument("--payload", help="Request body (default: a test.webhook event)")
    publish.add_argument(
        "--content-type", default="application/json", help="Payload content type"
    )
    publish.add_argument("--secret", help="Secret for the HMAC signature")
    publish.add_argument(
        "--header",
        action="append",
        metavar="NAME:VALUE",
        help="Custom header, may be repeated",
    )
    publish.add_argument("--max-retries", type=int, default=3, help="Retries after the first attempt")
    publish.add_argument("--timeout", type=int, default=30, help="Per-attempt timeout in seconds")
    publish.set_defaults(func=handle_publish_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print_status("Operation interrupted by user", "info")
        return 0
    except (WebhookQError, argparse.ArgumentTypeError) as e:
        print_status(str(e), "error")
        return 1
    except Exception as e:
        print_status(f"Command failed: {e}", "error")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
