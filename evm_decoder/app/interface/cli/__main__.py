import asyncio
import inspect
import logging
from typing import Any, Awaitable

import typer
from dotenv import load_dotenv
from InquirerPy import inquirer
from pydantic import ValidationError

from evm_decoder.app.config import get_settings
from evm_decoder.app.domain.models import PriorityDecodeResult
from evm_decoder.app.interface.tasks import TASKS
from evm_decoder.app.interface.tasks.backfill_task import backfill_task
from evm_decoder.app.interface.tasks.decode_task import decode_task
from evm_decoder.app.interface.tasks.drain_task import drain_task
from evm_decoder.app.interface.tasks.listen_task import listen_task
from evm_decoder.app.interface.tasks.serve_task import serve_task


load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)

app = typer.Typer()
decoder_app = typer.Typer(help="cli for decoding and indexing EVM transactions.")
app.add_typer(decoder_app, name="decoder")


def _load_settings() -> None:
    try:
        settings = get_settings()
    except ValidationError as exc:
        logger.error("Invalid configuration: %s", exc)
        raise typer.Exit(code=1)
    logger.info("Using database %s", settings.redacted_database_url())


def _run(coro: Awaitable[Any]) -> Any:
    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    except KeyboardInterrupt:
        return None


def _echo_result(result: PriorityDecodeResult | None) -> None:
    if result is None:
        return
    typer.echo(f"success: {result.success}")
    typer.echo(f"message: {result.message}")
    for key, value in (result.data or {}).items():
        typer.echo(f"{key}: {value}")
    if not result.success:
        raise typer.Exit(code=1)


@decoder_app.command("run")
def run() -> None:
    _load_settings()
    task_name = inquirer.select(
        message="Select task:",
        choices=list(TASKS.keys()),
        pointer="❯",
        instruction="Use ↑/↓ to move, Enter to select",
    ).execute()

    task = TASKS[task_name]

    kwargs: dict[str, object] = {}

    params = inspect.signature(task).parameters
    if "tx_id" in params:
        kwargs["tx_id"] = inquirer.text(
            message="Transaction id (api.evm_pending_decode.tx_id):",
            validate=lambda value: bool(value.strip()),
            invalid_message="tx_id is required",
        ).execute()

    result = _run(task(**kwargs))
    if isinstance(result, PriorityDecodeResult):
        _echo_result(result)


@decoder_app.command("serve")
def serve() -> None:
    """Priority listener + batch drain loop until SIGINT/SIGTERM."""
    _load_settings()
    _run(serve_task())


@decoder_app.command("drain")
def drain() -> None:
    """Batch drain loop only."""
    _load_settings()
    _run(drain_task())


@decoder_app.command("listen")
def listen() -> None:
    """Priority listener only."""
    _load_settings()
    _run(listen_task())


@decoder_app.command("decode")
def decode(tx_id: str = typer.Argument(..., help="Pending transaction id")) -> None:
    """Decode one pending transaction now."""
    _load_settings()
    _echo_result(_run(decode_task(tx_id=tx_id)))


@decoder_app.command("backfill")
def backfill() -> None:
    """Re-derive logs, contracts, tokens, transfers and token metadata."""
    _load_settings()
    counts = _run(backfill_task())
    for phase, count in (counts or {}).items():
        typer.echo(f"{phase}: {count}")


if __name__ == "__main__":
    LOGO = r"""

     /$$$$$$$$ /$$    /$$ /$$      /$$       /$$$$$$$                                      /$$
    | $$_____/| $$   | $$| $$$    /$$$      | $$__  $$                                    | $$
    | $$      | $$   | $$| $$$$  /$$$$      | $$  \ $$  /$$$$$$   /$$$$$$$  /$$$$$$   /$$$$$$$  /$$$$$$   /$$$$$$
    | $$$$$   |  $$ / $$/| $$ $$/$$ $$      | $$  | $$ /$$__  $$ /$$_____/ /$$__  $$ /$$__  $$ /$$__  $$ /$$__  $$
    | $$__/    \  $$ $$/ | $$  $$$| $$      | $$  | $$| $$$$$$$$| $$      | $$  \ $$| $$  | $$| $$$$$$$$| $$  \__/
    | $$        \  $$$/  | $$\  $ | $$      | $$  | $$| $$_____/| $$      | $$  | $$| $$  | $$| $$_____/| $$
    | $$$$$$$$   \  $/   | $$ \/  | $$      | $$$$$$$/|  $$$$$$$|  $$$$$$$|  $$$$$$/|  $$$$$$$|  $$$$$$$| $$
    |________/    \_/    |__/     |__/      |_______/  \_______/ \_______/ \______/  \_______/ \_______/|__/

      --- EVM Decoder CLI ---
    """
    typer.echo(LOGO)
    app()
