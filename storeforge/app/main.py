"""StoreForge CLI.

Usage:
    storeforge init-db
    storeforge drafts --merchant m1 --store s1
    storeforge chat --merchant m1 --store s1 --image https://cdn.example.com/a.jpg
    storeforge serve --port 8000
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from storeforge.agents.schemas import AgentContext, DraftStatus, WorkflowVariant
from storeforge.app.config import StoreForgeConfig, set_config
from storeforge.storage.database import DatabaseManager
from storeforge.utils.logging import get_logger, setup_logging

app = typer.Typer(
    name="storeforge",
    help="StoreForge - turn product photos into reviewed, bilingual store listings",
    add_completion=False,
)
console = Console()
logger = get_logger("app")

ConfigOption = Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to configuration file")]
MerchantOption = Annotated[str, typer.Option("--merchant", "-m", help="Merchant ID")]
StoreOption = Annotated[str, typer.Option("--store", "-s", help="Store ID")]


def setup_environment(config_path: Path | None, log_level: str | None = None) -> StoreForgeConfig:
    """Load configuration, configure logging and register the global config."""
    config = StoreForgeConfig.load(config_path)
    if log_level:
        config.log_level = log_level.upper()

    config.ensure_directories()
    setup_logging(
        level=config.log_level,
        log_dir=config.log_dir or config.data_dir / "logs",
        console_output=False,
        file_output=True,
    )
    set_config(config)
    return config


def open_database(config: StoreForgeConfig) -> DatabaseManager:
    db = DatabaseManager(config.db_path)
    db.initialize()
    return db


@app.command("init-db")
def init_db(config_path: ConfigOption = None) -> None:
    """Create the database tables."""
    config = setup_environment(config_path)
    open_database(config)
    console.print(f"[green]Database ready:[/green] {config.db_path}")


@app.command("drafts")
def list_drafts(
    merchant: MerchantOption,
    store: StoreOption,
    status: Annotated[Optional[DraftStatus], typer.Option("--status", help="Filter by status")] = None,
    batch: Annotated[Optional[str], typer.Option("--batch", help="Filter by batch ID")] = None,
    config_path: ConfigOption = None,
) -> None:
    """List drafts of a merchant's store."""
    config = setup_environment(config_path)
    db = open_database(config)
    drafts = db.list_drafts(merchant_id=merchant, store_id=store, batch_id=batch, status=status)

    if not drafts:
        console.print("[yellow]No drafts found.[/yellow]")
        return

    table = Table(title=f"Drafts for {merchant}/{store}")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Name (AR)")
    table.add_column("Category")
    table.add_column("Price", justify="right")
    table.add_column("Confidence")
    table.add_column("Status")

    for draft in drafts:
        price = f"{draft.suggested_price:.2f}" if draft.suggested_price is not None else "-"
        table.add_row(
            draft.id,
            draft.name,
            draft.name_ar,
            draft.category,
            price,
            draft.ai_confidence,
            draft.status.value,
        )
    console.print(table)


def _print_step(step: dict) -> None:
    progress = step.get("bulkProgress")
    agent = f"[magenta]{step['agentName']}[/magenta] " if step.get("agentName") else ""
    suffix = f" ({progress['current']}/{progress['total']})" if progress else ""
    console.print(f"[dim]{step['type']:>12}[/dim] {agent}{step['message']}{suffix}")


async def _chat(config: StoreForgeConfig, context: AgentContext, images: list[str]) -> None:
    from storeforge.llm.provider_factory import ProviderFactory
    from storeforge.services.conversation import ConversationSession
    from storeforge.streaming.turn import TurnStreamer

    db = open_database(config)
    provider, models = ProviderFactory.from_config(config.llm)
    streamer = TurnStreamer(provider, models, db, config.agents)
    session = ConversationSession(db, context)

    console.print(Panel(
        f"[bold]Merchant:[/bold] {context.merchant_id}\n"
        f"[bold]Store:[/bold] {context.store_id} ({context.store_type}, {context.locale})\n"
        f"[bold]Models:[/bold] {models.fast} / {models.pro}\n"
        "Type /reset to start over, /quit to exit.",
        title="StoreForge Assistant",
        border_style="blue",
    ))

    async with provider:
        pending_images = images
        while True:
            text = console.input("[bold green]you>[/bold green] ").strip()
            if not text:
                continue
            if text == "/quit":
                break
            if text == "/reset":
                if session.reset() is not None:
                    console.print("[dim]Conversation archived.[/dim]")
                continue

            request = session.start_turn(text, image_urls=pending_images)
            pending_images = []

            async for frame in streamer.stream(request):
                data = frame.to_dict()
                if frame.type == "step":
                    _print_step(data["step"])
                elif frame.type == "error":
                    console.print(f"[red]{data['error']}:[/red] {data['details']}")
                    if data["retryable"]:
                        console.print("[yellow]This looks temporary; send your message again.[/yellow]")
                elif frame.type == "response":
                    response = data["response"]
                    session.finish_turn(response["content"], response["pause"])
                    if response["content"]:
                        console.print(Panel(response["content"], border_style="cyan"))
                    pause = response["pause"]
                    if pause:
                        console.print(f"[bold]{pause['question']}[/bold]")
                        for number, option in enumerate(pause.get("options") or [], start=1):
                            console.print(f"  {number}. {option}")

        await session.wait_for_archives()


@app.command("chat")
def chat(
    merchant: MerchantOption,
    store: StoreOption,
    image: Annotated[Optional[list[str]], typer.Option("--image", "-i", help="Image URL to upload (repeatable)")] = None,
    locale: Annotated[str, typer.Option("--locale", help="en or ar")] = "en",
    store_type: Annotated[str, typer.Option("--store-type", help="clothing or car_care")] = "clothing",
    onboarding: Annotated[bool, typer.Option("--onboarding", help="Use the first-product onboarding flow")] = False,
    config_path: ConfigOption = None,
    log_level: Annotated[Optional[str], typer.Option("--log-level", "-l")] = None,
) -> None:
    """Chat with the store assistant."""
    config = setup_environment(config_path, log_level)
    context = AgentContext(
        merchant_id=merchant,
        store_id=store,
        locale=locale,
        store_type=store_type,
        workflow_variant=WorkflowVariant.ONBOARDING if onboarding else None,
    )
    try:
        asyncio.run(_chat(config, context, image or []))
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p")] = 8000,
    config_path: ConfigOption = None,
) -> None:
    """Serve the assistant stream over HTTP (requires the api extra)."""
    import uvicorn

    from storeforge.api.server import create_app

    config = setup_environment(config_path)
    logger.info(f"Serving on {host}:{port}")
    uvicorn.run(create_app(config=config), host=host, port=port)


def main() -> int:
    app()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
