import asyncio
import contextlib
import importlib
import json
import signal
from typing import Any, Callable, Optional

import httpx
import typer
from pydantic import ValidationError

from streamgroup.admin import serve_admin
from streamgroup.connectors.valkey import ValkeyConnector, ValkeyStreamBackend
from streamgroup.consumer import Consumer
from streamgroup.options import ConsumerOptions
from streamgroup.settings import settings
from streamgroup.utils.logging import setup_logging

app = typer.Typer(help="streamgroup consumer control interface")


def load_callable(path: Optional[str]) -> Optional[Callable[..., Any]]:
    """Resolve a ``package.module:function`` reference."""
    if path is None:
        return None
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise typer.BadParameter(f"Expected 'module:function', got {path!r}")
    module = importlib.import_module(module_name)
    try:
        target = getattr(module, attr)
    except AttributeError:
        raise typer.BadParameter(f"{module_name} has no attribute {attr!r}") from None
    if not callable(target):
        raise typer.BadParameter(f"{path} is not callable")
    return target


def _backend(stream: str, host: str, port: int) -> ValkeyStreamBackend:
    connector = ValkeyConnector(host=host, port=port, password=settings.VALKEY_PASSWORD, db=settings.VALKEY_DB)
    return ValkeyStreamBackend(connector, stream)


async def run_worker(consumer: Consumer, create_group: bool = True, admin_port: Optional[int] = None) -> None:
    """
    Connect, start consuming and block until SIGINT/SIGTERM, then drain.
    """
    await consumer.backend.connect()
    if create_group:
        await consumer.backend.ensure_group_exists(consumer.options.group_name)

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Windows support or special environments
            pass

    admin_task = asyncio.create_task(serve_admin(consumer, port=admin_port)) if admin_port else None
    try:
        async with consumer:
            await stop_requested.wait()
    finally:
        if admin_task is not None:
            admin_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await admin_task


@app.command()
def run(
    stream: str = typer.Option(..., help="Stream key to consume"),
    group: str = typer.Option(..., help="Consumer group name"),
    consumer: str = typer.Option(..., help="Name of this consumer in the group"),
    record_handler: Optional[str] = typer.Option(None, help="Record handler as module:function"),
    batch_handler: Optional[str] = typer.Option(None, help="Batch handler as module:function"),
    error_handler: Optional[str] = typer.Option(None, help="Error handler as module:function"),
    batch_size: int = typer.Option(settings.BATCH_SIZE, help="Records per pull"),
    block_ms: int = typer.Option(settings.BLOCK_INTERVAL_MS, help="Pull blocking time, 0 = non-blocking"),
    check_abandoned_ms: int = typer.Option(settings.CHECK_ABANDONED_MS, help="Reclaim period and idle threshold"),
    abandoned_check: bool = typer.Option(not settings.DISABLE_ABANDONED_CHECK, help="Reclaim records from idle consumers"),
    create_group: bool = typer.Option(True, help="Create the group (and stream) if missing"),
    admin_port: Optional[int] = typer.Option(None, help="Serve the Admin API on this port"),
    host: str = typer.Option(settings.VALKEY_HOST, help="Valkey host"),
    port: int = typer.Option(settings.VALKEY_PORT, help="Valkey port"),
):
    """
    Runs a consumer until interrupted.
    """
    setup_logging(settings.LOG_LEVEL)
    try:
        options = ConsumerOptions(
            consumer_name=consumer,
            group_name=group,
            stream_name=stream,
            batch_size=batch_size,
            block_interval_ms=block_ms,
            check_abandoned_ms=check_abandoned_ms,
            disable_abandoned_check=not abandoned_check,
            record_handler=load_callable(record_handler),
            batch_handler=load_callable(batch_handler),
            error_handler=load_callable(error_handler),
        )
    except ValidationError as e:
        typer.echo(f"Error: invalid consumer options\n{e}", err=True)
        raise typer.Exit(code=2)

    worker = Consumer(options, _backend(stream, host, port), close_backend=True)
    asyncio.run(run_worker(worker, create_group=create_group, admin_port=admin_port))


@app.command()
def pending(
    stream: str = typer.Option(..., help="Stream key"),
    group: str = typer.Option(..., help="Consumer group name"),
    count: int = typer.Option(20, help="Max entries to list"),
    host: str = typer.Option(settings.VALKEY_HOST, help="Valkey host"),
    port: int = typer.Option(settings.VALKEY_PORT, help="Valkey port"),
):
    """
    Lists the group's pending entries with owner, idle time and deliveries.
    """
    backend = _backend(stream, host, port)

    async def _pending():
        await backend.connect()
        try:
            return await backend.list_pending(group, count)
        finally:
            await backend.close()

    entries = asyncio.run(_pending())
    if not entries:
        typer.echo(f"No pending entries for group {group} on {stream}.")
        return
    typer.echo(f"{'ID':<24} {'CONSUMER':<20} {'IDLE_MS':>10} {'DELIVERIES':>10}")
    for entry in entries:
        typer.echo(f"{entry.id:<24} {entry.consumer:<20} {entry.idle_ms:>10} {entry.delivery_count:>10}")


@app.command()
def status(url: str = typer.Option(f"http://localhost:{settings.ADMIN_PORT}", help="URL of the Admin API")):
    """
    Checks the status of a running worker.
    """
    try:
        r = httpx.get(f"{url}/status")
    except httpx.RequestError as e:
        typer.echo(f"Failed to connect to {url}: {e}")
        raise typer.Exit(code=1)

    if r.status_code != 200:
        typer.echo(f"Worker returned {r.status_code}: {r.text}")
        raise typer.Exit(code=1)
    typer.echo(json.dumps(r.json(), indent=2))


if __name__ == "__main__":
    app()
