#!/usr/bin/env python3
"""
Image Metadata CLI: generate stock-photo titles and keywords for a folder of images using AI.

Each image is described by a vision model (OpenAI GPT or Google Gemini), the title and keywords
are written into a copy of the image in the output folder, and the original is deleted.
Settings live in ``image-metadata-config.json`` and are edited through an interactive menu.

Requirements:
 - Exiftool installed and available in PATH.
 - An OpenAI or Google Gemini API key (stored in the config or in OPENAI_API_KEY / GEMINI_API_KEY).

"""

import asyncio
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Literal

from cyclopts import App, Parameter
from loguru import logger

from image_metadata_cli.config import DEFAULT_CONFIG_PATH, ConfigStore
from image_metadata_cli.embedder import MetadataEmbedder
from image_metadata_cli.generators import create_generator
from image_metadata_cli.menu import MenuApp
from image_metadata_cli.pipeline import BatchError, process_all_images


LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "OFF"]

ConfigOption = Annotated[
    Path,
    Parameter(name=("--config", "-c"), help="Path to the JSON configuration file"),
]
FileLogLevelOption = Annotated[
    LogLevel,
    Parameter(name="--file-log-level", help="Log level for file (use 'OFF' to disable)"),
]
ConsoleLogLevelOption = Annotated[
    LogLevel,
    Parameter(name="--console-log-level", help="Log level for console (use 'OFF' to disable)"),
]
LogFolderOption = Annotated[
    Path,
    Parameter(name=("--log-folder",), help="Folder where log files are stored"),
]

# Cyclopts app
__version__ = "0.1.0"
app = App(
    name="image-metadata",
    version=__version__,
)


def setup_logging(
    file_log_level: LogLevel = "DEBUG",
    console_log_level: LogLevel = "INFO",
    log_folder: Path = Path("logs"),
) -> None:
    """
    Configure Loguru for both console and file logging.

    Args:
        file_log_level: Log level for file (use 'OFF' to disable)
        console_log_level: Log level for console (use 'OFF' to disable)
        log_folder: Directory where log files are stored

    """
    # Remove default handler
    logger.remove()

    if file_log_level != "OFF":
        log_folder.mkdir(parents=True, exist_ok=True)
        log_file = log_folder / Path(
            datetime.now(tz=UTC).strftime("%Y%m%d%H%M%S-image_metadata.log"),
        )
        logger.add(
            log_file,
            level=file_log_level,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{name:<8}:{function:<25}:{line:>4} | "
                "{message:<40} | "
                "{extra}"
            ),
            rotation="500 MB",
            retention="10 days",
            compression="zip",
        )

    if console_log_level != "OFF":
        logger.add(
            sys.stderr,
            level=console_log_level,
            colorize=True,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <7}</level> | "
                "<level>{message:<40.50}</level> | "
                "<yellow>{extra}</yellow>"
            ),
        )


@app.default
def menu(
    *,
    config_path: ConfigOption = DEFAULT_CONFIG_PATH,
    file_log_level: FileLogLevelOption = "DEBUG",
    console_log_level: ConsoleLogLevelOption = "WARNING",
    log_folder: LogFolderOption = Path("logs"),
) -> None:
    """
    Open the interactive menu to edit settings and process images.

    Examples:
        image-metadata
        image-metadata --config ./my-config.json --console-log-level OFF

    """
    setup_logging(
        file_log_level=file_log_level,
        console_log_level=console_log_level,
        log_folder=log_folder,
    )
    store = ConfigStore(config_path)
    store.load()
    logger.info("starting_image_metadata_cli", config=str(config_path), mode="interactive")

    with MetadataEmbedder() as embedder:
        try:
            MenuApp(store, embedder).run()
        except (KeyboardInterrupt, EOFError):
            logger.info("interrupted_by_user")


@app.command
def process(
    *,
    config_path: ConfigOption = DEFAULT_CONFIG_PATH,
    file_log_level: FileLogLevelOption = "DEBUG",
    console_log_level: ConsoleLogLevelOption = "INFO",
    log_folder: LogFolderOption = Path("logs"),
) -> None:
    """
    Process the configured input folder once, without prompts.

    Exit status: returns 1 if settings are incomplete, the input folder is unreadable,
    or any image fails.

    Examples:
        image-metadata process
        image-metadata process --config ./my-config.json

    """
    setup_logging(
        file_log_level=file_log_level,
        console_log_level=console_log_level,
        log_folder=log_folder,
    )
    store = ConfigStore(config_path)
    config = store.load()
    logger.info(
        "starting_image_metadata_cli",
        config=str(config_path),
        mode="batch",
        input_dir=config.input_dir,
        output_dir=config.output_dir,
        provider=config.ai_model,
        model=config.active_model,
    )

    if not config.input_dir or not config.output_dir:
        logger.error("directories_not_configured")
        raise SystemExit(1)
    if not config.active_api_key:
        logger.error("api_key_missing", provider=config.ai_model)
        raise SystemExit(1)

    with MetadataEmbedder() as embedder:
        try:
            stats = asyncio.run(
                process_all_images(
                    Path(config.input_dir),
                    Path(config.output_dir),
                    create_generator(config),
                    embedder,
                    max_title_chars=config.max_title_chars,
                    max_tags=config.max_tags,
                    delay=config.delay,
                ),
            )
        except BatchError as exc:
            logger.error("batch_aborted", error=str(exc))
            raise SystemExit(1) from exc

    if stats.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    app()
