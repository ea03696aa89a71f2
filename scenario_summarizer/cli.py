"""CLI interface for the scenario summarizer."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from scenario_summarizer.utils.logging import setup_logging

console = Console()


def _run_async(coro):
    """Run an async function from sync CLI."""
    return asyncio.run(coro)


class _OfflineClient:
    """Client for commands that never call the model."""

    async def generate(self, prompt, options=None) -> str:
        from scenario_summarizer.errors import SummaryClientError

        raise SummaryClientError("No llm section configured")


def _load_config(obj: dict):
    from scenario_summarizer.config import AppConfig, load_config

    config = load_config(Path(obj["config"])) if obj.get("config") else AppConfig()
    if obj.get("chat"):
        config.chat_file = obj["chat"]
    if obj.get("api_key") and config.llm is not None:
        config.llm.api_key = obj["api_key"]
    if config.settings.debug_mode:
        setup_logging(True)
    return config


def _engine(obj: dict, need_llm: bool = False):
    from scenario_summarizer.engine import SummarizerEngine

    config = _load_config(obj)
    if config.llm is None and not need_llm:
        return SummarizerEngine.from_config(config, client=_OfflineClient())
    return SummarizerEngine.from_config(config)


def _report_errors(engine) -> None:
    records = engine.state.get_errors()
    if not records:
        return
    console.print(f"\n[red]{engine.state.error_count} error(s) recorded:[/red]")
    for record in records:
        console.print(
            f"  [dim]{record.timestamp:%H:%M:%S}[/dim] [yellow]{record.context}[/yellow] "
            f"{record.error_type}: {record.message}"
        )


def _parse_range(value: str) -> tuple[int, int]:
    start, sep, end = value.replace("~", "-").partition("-")
    if not sep:
        raise click.BadParameter(f"Expected START-END, got {value!r}")
    return int(start), int(end)


@click.group()
@click.version_option(version="0.1.0")
@click.option("--config", "-c", type=click.Path(exists=True), help="summarizer.yaml or its directory")
@click.option("--chat", type=click.Path(), help="Chat file (overrides chat_file)")
@click.option("--api-key", "-k", type=str, default=None, help="LLM API key (avoids storing in files)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx, config: Optional[str], chat: Optional[str], api_key: Optional[str], verbose: bool):
    """Scenario Summarizer: structured memory for long roleplay chats."""
    setup_logging(verbose)
    ctx.obj = {"config": config, "chat": chat, "api_key": api_key}


@main.command()
@click.option("--start", type=int, default=None, help="First message index")
@click.option("--end", type=int, default=None, help="Last message index (inclusive)")
@click.pass_obj
def summarize(obj: dict, start: Optional[int], end: Optional[int]):
    """Summarize a range, or every message not yet summarized."""

    async def _summarize():
        engine = _engine(obj, need_llm=True)

        def _progress(done: int, total: int) -> None:
            console.print(f"  [dim]{done}/{total} messages[/dim]")

        try:
            result = await engine.summarizer.run_summary(start, end, on_progress=_progress)
        finally:
            await engine.aclose()
        if result.success:
            console.print(f"[green]✓[/green] Summarized {result.processed} message(s)")
        else:
            console.print(f"[red]✗ Summary failed:[/red] {result.error}")
        if engine.summarizer.last_run is not None:
            failed = engine.summarizer.last_run.summary()["failed_indices"]
            if failed:
                console.print(f"[yellow]Needs resummarizing:[/yellow] {failed}")
        _report_errors(engine)

    _run_async(_summarize())


@main.command()
@click.pass_obj
def auto(obj: dict):
    """Run the automatic-mode check once."""

    async def _auto():
        engine = _engine(obj, need_llm=True)
        try:
            ran = await engine.summarizer.run_auto_summary()
        finally:
            await engine.aclose()
        if ran:
            console.print("[green]✓[/green] Auto summary ran")
        else:
            console.print("Auto summary not triggered")
        _report_errors(engine)

    _run_async(_auto())


@main.command()
@click.argument("index", type=int, required=False)
@click.option("--group", "groups", multiple=True, help="Range START-END; repeatable")
@click.pass_obj
def resummarize(obj: dict, index: Optional[int], groups: tuple[str, ...]):
    """Regenerate one message's summary, or several group ranges."""
    if index is None and not groups:
        raise click.UsageError("Give a message INDEX or at least one --group")

    async def _resummarize():
        engine = _engine(obj, need_llm=True)
        try:
            if groups:
                result = await engine.summarizer.resummarize_groups(
                    [_parse_range(g) for g in groups]
                )
                if result.success:
                    console.print(
                        f"[green]✓[/green] {result.success_count} group(s) updated, "
                        f"{result.fail_count} failed"
                    )
                else:
                    console.print(f"[red]✗ Resummarize failed:[/red] {result.error}")
            else:
                single = await engine.summarizer.resummarize(index)
                if single.success:
                    console.print(f"[green]✓[/green] Resummarized #{single.start}-{single.end}")
                else:
                    console.print(f"[red]✗ Resummarize failed:[/red] {single.error}")
        finally:
            await engine.aclose()
        _report_errors(engine)

    _run_async(_resummarize())


@main.command()
@click.option("--output", "-o", type=click.Path(), help="Write the injection text to a file")
@click.pass_obj
def inject(obj: dict, output: Optional[str]):
    """Compose the injection text the host would receive."""

    async def _inject():
        engine = _engine(obj)
        result = await engine.injector.inject()
        if output:
            Path(output).write_text(result.text, encoding="utf-8")
            console.print(f"[green]✓[/green] Wrote {result.tokens} tokens to {output}")
        else:
            console.print(result.text or "(empty injection)", markup=False)
        if result.skipped:
            console.print(f"[yellow]Skipped by budget:[/yellow] {sorted(result.skipped)}")
        _report_errors(engine)

    _run_async(_inject())


@main.command()
@click.option("--all", "ignore_budget", is_flag=True, help="Ignore the token budget")
@click.pass_obj
def preview(obj: dict, ignore_budget: bool):
    """Preview the injection with a budget footer."""

    async def _preview():
        engine = _engine(obj)
        result = await engine.injector.preview(ignore_budget=ignore_budget)
        console.print(result.text, markup=False)
        console.print(f"\n[dim]~{result.tokens} tokens[/dim]")
        _report_errors(engine)

    _run_async(_preview())


@main.command()
@click.pass_obj
def status(obj: dict):
    """Show summary coverage for the chat."""
    engine = _engine(obj)
    info = engine.status()

    table = Table(title=f"Scenario Summarizer: {info['character']}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Messages", str(info["messages"]))
    table.add_row("Summarized", str(info["summarized"]))
    table.add_row("Unsummarized", str(info["unsummarized"]))
    table.add_row("Hidden", str(info["hidden"]))
    table.add_row("Legacy summaries", str(info["legacy"]))
    table.add_row("Characters", str(info["characters"]))
    table.add_row("Events", str(info["events"]))
    table.add_row("Items", str(info["items"]))
    if info["failed"]:
        table.add_row("Failed", ", ".join(f"#{i}" for i in info["failed"]))
    if info["invalidated"]:
        table.add_row("Invalidated", ", ".join(f"#{i}" for i in info["invalidated"]))

    console.print(table)
    _report_errors(engine)


@main.command()
@click.argument("query")
@click.option("--legacy", is_flag=True, help="Search legacy summaries instead")
@click.pass_obj
def search(obj: dict, query: str, legacy: bool):
    """Case-insensitive substring search over summaries."""
    engine = _engine(obj)
    table = Table(title=f"Matches for {query!r}")
    table.add_column("Index" if not legacy else "Order", style="cyan")
    table.add_column("Content")

    if legacy:
        for entry in engine.store.search_legacy(query):
            table.add_row(str(entry.order), entry.content[:200])
    else:
        for entry in engine.store.search_summaries(query):
            table.add_row(f"#{entry.message_index}", entry.content[:200])
    console.print(table)


@main.command("export")
@click.option(
    "--mode",
    "-m",
    type=click.Choice(["current", "legacy", "all"]),
    default="all",
)
@click.option("--output", "-o", type=click.Path(), help="Output file (default: stdout)")
@click.pass_obj
def export_cmd(obj: dict, mode: str, output: Optional[str]):
    """Export summaries and catalogs as JSON."""
    from scenario_summarizer.memory.transfer import ExportMode

    engine = _engine(obj)
    text = json.dumps(engine.export_json(ExportMode(mode)), ensure_ascii=False, indent=2)
    if output:
        Path(output).write_text(text, encoding="utf-8")
        console.print(f"[green]✓[/green] Exported to: {output}")
    else:
        click.echo(text)


@main.command("import")
@click.argument("source", type=click.Path(exists=True))
@click.option(
    "--mode",
    "-m",
    type=click.Choice(["merge", "legacy", "full"]),
    default="merge",
)
@click.option("--source-name", type=str, default=None, help="Label for legacy imports")
@click.pass_obj
def import_cmd(obj: dict, source: str, mode: str, source_name: Optional[str]):
    """Import a JSON export into the chat."""
    from scenario_summarizer.memory.transfer import ImportMode

    async def _import():
        engine = _engine(obj)
        text = Path(source).read_text(encoding="utf-8")
        result = await engine.import_json(text, ImportMode(mode), source_name)
        if result.success:
            console.print(
                f"[green]✓[/green] Imported {result.count} summaries, "
                f"{result.legacy_count} legacy, {result.character_count} characters, "
                f"{result.event_count} events, {result.item_count} items"
            )
        else:
            console.print(f"[red]✗ Import failed:[/red] {result.error}")
        _report_errors(engine)

    _run_async(_import())


@main.command()
@click.argument(
    "what",
    type=click.Choice(["summaries", "characters", "events", "items", "legacy", "orphans"]),
)
@click.confirmation_option(prompt="This cannot be undone. Continue?")
@click.pass_obj
def clear(obj: dict, what: str):
    """Remove stored data from the chat."""

    async def _clear():
        engine = _engine(obj)
        store = engine.store
        if what == "summaries":
            store.clear_all_summaries()
            engine.visibility.restore_all()
        elif what == "characters":
            store.clear_characters()
        elif what == "events":
            store.clear_events()
        elif what == "items":
            store.clear_items()
        elif what == "legacy":
            store.clear_legacy()
        else:
            removed = store.cleanup_orphans()
            console.print(f"Removed {removed} orphaned entries")
        await store.save()
        console.print(f"[green]✓[/green] Cleared {what}")
        _report_errors(engine)

    _run_async(_clear())


@main.command()
@click.pass_obj
def validate(obj: dict):
    """Validate configuration, the chat file and LLM connectivity."""

    async def _validate():
        from scenario_summarizer.llm.factory import LLMFactory

        try:
            config = _load_config(obj)
            console.print("[green]✓[/green] Configuration loaded successfully")
            console.print(
                f"  Mode: {config.settings.summary_mode.value}, "
                f"language: {config.settings.summary_language.value}, "
                f"budget: {config.settings.token_budget} tokens"
            )
        except Exception as e:
            console.print(f"[red]✗ Configuration error:[/red] {e}")
            return

        if config.chat_file:
            try:
                engine = _engine(obj)
                info = engine.status()
                console.print(
                    f"[green]✓[/green] Chat loaded: {info['messages']} messages, "
                    f"{info['summarized']} summarized"
                )
                _report_errors(engine)
            except Exception as e:
                console.print(f"[red]✗ Chat error:[/red] {e}")

        if config.llm is None:
            console.print("[yellow]No llm section configured[/yellow]")
            return
        console.print("\n[bold]LLM Backend:[/bold]")
        try:
            backend = LLMFactory.create_from_config(config.llm)
            healthy = await backend.health_check()
            status_mark = "[green]✓[/green]" if healthy else "[red]✗[/red]"
            console.print(f"  {status_mark} {config.llm.provider}/{config.llm.model}")
            await backend.aclose()
        except Exception as e:
            console.print(f"  [red]✗[/red] {config.llm.provider}: {e}")

    _run_async(_validate())


@main.command()
@click.pass_obj
def models(obj: dict):
    """List models offered by the configured endpoint."""

    async def _models():
        from scenario_summarizer.llm.factory import LLMFactory

        config = _load_config(obj)
        if config.llm is None:
            console.print("[red]No llm section configured[/red]")
            return
        backend = LLMFactory.create_from_config(config.llm)
        try:
            names = await backend.list_models()
        except Exception as e:
            console.print(f"[red]✗ Could not list models:[/red] {e}")
            return
        finally:
            await backend.aclose()
        if not names:
            console.print("No models reported")
        for name in names:
            marker = "*" if name == config.llm.model else " "
            console.print(f" {marker} {name}")

    _run_async(_models())


if __name__ == "__main__":
    main()
