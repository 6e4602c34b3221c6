"""Webhook delivery example.

Runs a local webhook receiver, publishes a signed notification to the
in-memory queue and lets a worker deliver it.
"""

import asyncio
import uuid

from aiohttp import web

import webhookq
from webhookq.settings import build_settings


async def receive(request: web.Request) -> web.Response:
    body = await request.read()
    valid = webhookq.verify_signature(
        body, request.headers.get("X-Webhook-Signature", ""), "example-secret"
    )
    print(f"Received {request.headers['X-Notification-Id']} (signature valid: {valid})")
    print(body.decode("utf-8"))
    return web.Response(text="ok")


async def main() -> None:
    app = web.Application()
    app.router.add_post("/webhook", receive)
    runner = web.AppRunner(app)
    await runner.setup()
    await web.TCPSite(runner, "127.0.0.1", 8080).start()

    settings = build_settings(transport="memory", poll_interval=0.5)
    worker = webhookq.Worker(settings)
    await worker.start()

    publisher = webhookq.create_consumer(settings)
    await publisher.publish(
        webhookq.NotificationMessage(
            notification_id=uuid.uuid4(),
            webhook_url="http://127.0.0.1:8080/webhook",
            payload='{"event": "order.created", "data": {"order_id": 42}}',
            secret="example-secret",
        )
    )

    await asyncio.sleep(1)
    await worker.stop()
    await runner.cleanup()


if __name__ == "__main__":
    asyncio.run(main())
