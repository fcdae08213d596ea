"""Interactive nested menu around the configuration store and the batch pipeline."""

import asyncio
import time
from pathlib import Path

from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, FloatPrompt, IntPrompt, Prompt
from rich.table import Table

from image_metadata_cli.config import GEMINI_MODELS, GPT_MODELS, PROVIDER_LABELS, ConfigStore
from image_metadata_cli.embedder import MetadataEmbedder
from image_metadata_cli.generators import create_generator
from image_metadata_cli.metadata import SHORT_TITLE_WARNING_CHARS
from image_metadata_cli.pipeline import (
    BatchError,
    BatchStats,
    ItemResult,
    find_image_files,
    process_all_images,
)


def format_duration(seconds: float) -> str:
    """
    Format elapsed seconds for the run summary.

    Examples:
        >>> format_duration(3725)
        '01 hours, 02 mins, 05 secs'

    """
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d} hours, {minutes:02d} mins, {secs:02d} secs"


class ConsoleReporter:
    """Prints per-image progress while a batch runs."""

    def __init__(self, console: Console, *, show_tokens: bool) -> None:
        self.console = console
        self.show_tokens = show_tokens

    def item_started(self, index: int, total: int, path: Path) -> None:
        self.console.print(f"\n[cyan]Processing image {index}/{total}: {escape(path.name)}[/cyan]")

    def item_finished(self, result: ItemResult) -> None:
        if not result.ok or result.record is None:
            self.console.print(
                f"[red]✗ Failed to process {escape(result.path.name)}: {escape(str(result.error))}[/red]",
            )
            return

        record = result.record
        if result.original_deleted:
            self.console.print("[bright_red]✓ Original image deleted successfully[/bright_red]")
        self.console.print(f"[green]✓ Processed: {escape(result.path.name)}[/green]")
        self.console.print(f"[green]  Title: {escape(record.title)} ({len(record.title)} chars)[/green]")
        self.console.print(f"[green]  Tags: {len(record.tags)} keywords[/green]")
        self.console.print(f"[green]  Tags: {escape(', '.join(record.tags))}[/green]")
        if self.show_tokens and record.token_info:
            self.console.print("[bold blue]  Token usage:[/bold blue]")
            for kind, count in record.token_info.items():
                self.console.print(f"[blue]    ├─ {kind}: [yellow]{count}[/yellow][/blue]")
        if len(record.title) < SHORT_TITLE_WARNING_CHARS:
            self.console.print(
                f"[yellow]  Note: Title length ({len(record.title)}) is shorter than "
                "recommended minimum (150 chars).[/yellow]",
            )

    def waiting(self, seconds: float) -> None:
        self.console.print(f"[yellow]Waiting {seconds:g} seconds before next request...[/yellow]")


class MenuApp:
    """Main menu and its Input/Output, Metadata and AI Provider sub-menus."""

    def __init__(
        self,
        store: ConfigStore,
        embedder: MetadataEmbedder,
        console: Console | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.console = console or Console()

    # Rendering helpers

    def _banner(self, title: str, lines: list[str], style: str = "cyan") -> None:
        self.console.print(Panel("\n".join(lines), title=title, border_style=style, expand=False))

    def display_config(self) -> None:
        config = self.store.config
        table = Table(title="CURRENT CONFIGURATION", show_header=False, title_style="bold cyan")
        table.add_column(style="cyan")
        table.add_column()
        table.add_row("Input Directory", config.input_dir or "[yellow]Not set[/yellow]")
        table.add_row("Output Directory", config.output_dir or "[yellow]Not set[/yellow]")
        table.add_row("Max Title Chars", f"[green]{config.max_title_chars}[/green]")
        table.add_row("Max Tags", f"[green]{config.max_tags}[/green]")
        table.add_row("AI Provider", config.provider_label)
        table.add_row("AI Model", f"[magenta]{config.active_model}[/magenta]")
        table.add_row(
            "Show Token Usage",
            "[green]Enabled[/green]" if config.show_tokens else "[yellow]Disabled[/yellow]",
        )
        table.add_row(
            "Request Delay",
            f"[green]{config.delay:g} seconds[/green]"
            if config.delay > 0
            else "[yellow]Disabled[/yellow]",
        )
        self.console.print(table)

    def _choose(self, message: str, options: dict[str, str], default: str | None = None) -> str:
        """Numbered single-choice prompt; returns the key of the chosen option."""
        keys = list(options)
        for number, key in enumerate(keys, start=1):
            self.console.print(f"  [cyan]{number}[/cyan]. {options[key]}")
        choices = [str(number) for number in range(1, len(keys) + 1)]
        if default in options:
            answer = Prompt.ask(
                message,
                choices=choices,
                default=str(keys.index(default) + 1),
                console=self.console,
            )
        else:
            answer = Prompt.ask(message, choices=choices, console=self.console)
        return keys[int(answer) - 1]

    def _ask_positive_int(self, message: str, default: int) -> int:
        while True:
            value = IntPrompt.ask(message, default=default, console=self.console)
            if value > 0:
                return value
            self.console.print("[red]Please enter a positive number[/red]")

    # Menus

    def run(self) -> None:
        """Show the main menu until the user exits."""
        while True:
            self.console.clear()
            self.display_config()
            action = self._choose(
                "What would you like to do?",
                {
                    "io": "📂 Input/Output Settings",
                    "metadata": "⚙️ Metadata Settings",
                    "ai": "🤖 AI Provider Settings",
                    "process": "🙏🏻 Process Images",
                    "exit": "❌ Exit",
                },
            )
            if action == "exit":
                self._banner("", ["Thank you for using Image Metadata CLI", "Goodbye!"])
                return
            try:
                if action == "io":
                    self.input_output_menu()
                elif action == "metadata":
                    self.metadata_menu()
                elif action == "ai":
                    self.ai_menu()
                else:
                    self.process_images()
            except Exception as exc:  # noqa: BLE001
                logger.exception("menu_action_failed", action=action, error=str(exc))
                self.console.print(f"[red]Error: {escape(str(exc))}[/red]")
                Prompt.ask("Press Enter to continue", default="", show_default=False, console=self.console)

    def input_output_menu(self) -> None:
        while True:
            action = self._choose(
                "Input/Output Settings",
                {
                    "input": "📁 Set input directory",
                    "output": "📁 Set output directory",
                    "back": "⬅️ Back to main menu",
                },
            )
            if action == "back":
                return
            if action == "input":
                self.set_input_directory()
            else:
                self.set_output_directory()

    def metadata_menu(self) -> None:
        while True:
            action = self._choose(
                "Metadata Settings",
                {
                    "title": "📏 Set max title characters",
                    "tags": "🏷️ Set max tags",
                    "delay": "⏱️ Set delay between requests",
                    "tokens": "🔢 Toggle token usage display",
                    "back": "⬅️ Back to main menu",
                },
            )
            if action == "back":
                return
            {
                "title": self.set_max_title_chars,
                "tags": self.set_max_tags,
                "delay": self.set_delay,
                "tokens": self.toggle_token_display,
            }[action]()

    def ai_menu(self) -> None:
        while True:
            action = self._choose(
                "AI Provider Settings",
                {
                    "keys": "🔑 Set API keys",
                    "provider": "🤖 Select AI to Use",
                    "model": "📊 Select Model to Use",
                    "back": "⬅️ Back to main menu",
                },
            )
            if action == "back":
                return
            {
                "keys": self.set_api_keys,
                "provider": self.select_provider,
                "model": self.select_model,
            }[action]()

    # Setters

    def set_input_directory(self) -> None:
        while True:
            answer = Prompt.ask(
                "Enter the path to your input directory",
                default=self.store.config.input_dir,
                console=self.console,
            ).strip()
            if not answer:
                self.console.print("[red]Directory path cannot be empty[/red]")
            elif not Path(answer).is_dir():
                self.console.print("[red]Directory does not exist[/red]")
            else:
                break
        self.store.update(input_dir=answer)
        self._banner("INPUT DIRECTORY UPDATED", [f"Input directory set to: [green]{answer}[/green]"])

    def set_output_directory(self) -> None:
        while True:
            answer = Prompt.ask(
                "Enter the path to your output directory",
                default=self.store.config.output_dir,
                console=self.console,
            ).strip()
            if not answer:
                self.console.print("[red]Directory path cannot be empty[/red]")
                continue
            path = Path(answer)
            if path.is_dir():
                break
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                self.console.print(f"[red]Could not create directory: {exc}[/red]")
                continue
            self.console.print(f"[yellow]Created directory: {answer}[/yellow]")
            break
        self.store.update(output_dir=answer)
        self._banner(
            "OUTPUT DIRECTORY UPDATED",
            [f"Output directory set to: [green]{answer}[/green]"],
        )

    def set_max_title_chars(self) -> None:
        value = self._ask_positive_int(
            "Enter the maximum number of characters for the title",
            self.store.config.max_title_chars,
        )
        self.store.update(max_title_chars=value)
        self._banner("TITLE LENGTH UPDATED", [f"Maximum title characters set to: [green]{value}[/green]"])

    def set_max_tags(self) -> None:
        value = self._ask_positive_int("Enter the maximum number of tags", self.store.config.max_tags)
        self.store.update(max_tags=value)
        self._banner("TAG COUNT UPDATED", [f"Maximum tags set to: [green]{value}[/green]"])

    def set_delay(self) -> None:
        while True:
            value = FloatPrompt.ask(
                "Enter the delay in seconds between requests (0 to disable)",
                default=self.store.config.delay,
                console=self.console,
            )
            try:
                self.store.update(delay=value)
            except ValidationError:
                self.console.print("[red]Please enter a non-negative number[/red]")
                continue
            break
        self._banner("DELAY UPDATED", [f"Delay between requests set to: [green]{value:g}[/green] seconds"])

    def toggle_token_display(self) -> None:
        config = self.store.update(show_tokens=not self.store.config.show_tokens)
        state = "[green]Enabled[/green]" if config.show_tokens else "[yellow]Disabled[/yellow]"
        self._banner("TOKEN DISPLAY", [f"Token usage display: {state}"])

    def set_api_keys(self) -> None:
        config = self.store.config
        gpt_key = Prompt.ask(
            "Enter your OpenAI GPT API key",
            default=config.gpt_api_key,
            password=True,
            show_default=False,
            console=self.console,
        )
        gemini_key = Prompt.ask(
            "Enter your Google Gemini API key",
            default=config.gemini_api_key,
            password=True,
            show_default=False,
            console=self.console,
        )
        self.store.update(gpt_api_key=gpt_key, gemini_api_key=gemini_key)
        self._banner("API KEYS UPDATED", ["API keys saved successfully"])

    def select_provider(self) -> None:
        provider = self._choose("Select the AI to use", PROVIDER_LABELS, default=self.store.config.ai_model)
        config = self.store.update(ai_model=provider)
        self._banner("AI PROVIDER UPDATED", [f"AI Provider set to: {config.provider_label}"])

    def select_model(self) -> None:
        config = self.store.config
        if config.ai_model == "gemini":
            model = self._choose("Select the Gemini model to use", GEMINI_MODELS, default=config.gemini_model)
            self.store.update(gemini_model=model)
            self._banner("MODEL UPDATED", [f"Gemini model set to: [magenta]{model}[/magenta]"])
        else:
            model = self._choose("Select the GPT model to use", GPT_MODELS, default=config.gpt_model)
            self.store.update(gpt_model=model)
            self._banner("MODEL UPDATED", [f"GPT model set to: [magenta]{model}[/magenta]"])

    # Processing

    def _recover_or_leave(self, message: str, change_label: str) -> bool:
        """
        Offer to pick another input folder. True means retry processing.

        Raises:
            SystemExit: when the user chooses to exit.

        """
        choice = self._choose(
            message,
            {"change": change_label, "back": "⬅️ Back to main menu", "exit": "❌ Exit"},
        )
        if choice == "exit":
            raise SystemExit(0)
        if choice == "change":
            self.set_input_directory()
            return True
        return False

    def process_images(self) -> BatchStats | None:
        """Check the configuration, confirm, run one batch and show the summary."""
        while True:
            config = self.store.config
            if not config.input_dir or not config.output_dir:
                self._banner(
                    "ERROR",
                    ["Please set both input and output directories before processing."],
                    style="red",
                )
                return None

            if not config.active_api_key:
                provider = "GPT" if config.ai_model == "gpt" else "Gemini"
                self._banner("ERROR", [f"Please set the {provider} API key before processing."], style="red")
                return None

            input_dir = Path(config.input_dir)
            if not input_dir.is_dir():
                self._banner("ERROR", [f"Input directory does not exist: [yellow]{input_dir}[/yellow]"], style="red")
                if self._recover_or_leave(
                    "Input directory does not exist. What would you like to do?",
                    "📂 Set a new input directory",
                ):
                    continue
                return None

            try:
                candidates = find_image_files(input_dir)
            except BatchError as exc:
                self._banner("ERROR", [f"Error processing images: {exc}"], style="red")
                return None
            if not candidates:
                self._banner("ERROR", [f"No image files found in: [yellow]{input_dir}[/yellow]"], style="red")
                if self._recover_or_leave(
                    "No images found. What would you like to do?",
                    "🔁 Choose a different input folder",
                ):
                    continue
                return None
            break

        output_dir = Path(config.output_dir)
        if not Confirm.ask(
            f"Ready to process all images from [yellow]{input_dir}[/yellow] to [green]{output_dir}[/green]?",
            default=True,
            console=self.console,
        ):
            return None

        self.console.clear()
        self._banner(
            "PROCESSING STARTED",
            [
                f"Processing images from: [green]{input_dir}[/green]",
                f"Output directory: [green]{output_dir}[/green]",
                f"Using AI: [magenta]{config.active_model}[/magenta]",
            ],
            style="blue",
        )

        started = time.perf_counter()
        try:
            stats = asyncio.run(
                process_all_images(
                    input_dir,
                    output_dir,
                    create_generator(config),
                    self.embedder,
                    max_title_chars=config.max_title_chars,
                    max_tags=config.max_tags,
                    delay=config.delay,
                    reporter=ConsoleReporter(self.console, show_tokens=config.show_tokens),
                ),
            )
        except BatchError as exc:
            self._banner("ERROR", [f"Error processing images: {exc}"], style="red")
            return None
        elapsed = time.perf_counter() - started

        lines = [
            f"Total processing time: [yellow]{format_duration(elapsed)}[/yellow]",
            f"AI Model used: [magenta]{config.active_model}[/magenta]",
            f"Total images: {stats.total}",
            f"Successfully processed: [green]{stats.success}[/green] images",
        ]
        if stats.failed:
            lines.append(f"Failed to process: [red]{stats.failed}[/red] images")
        self._banner("PROCESSING SUMMARY", lines)
        Prompt.ask(
            "[yellow]Press Enter to return to the main menu...[/yellow]",
            default="",
            show_default=False,
            console=self.console,
        )
        return stats
