from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from .artifact import (
    SUPPORTED_IMAGE_FORMATS,
    SUPPORTED_VIDEO_FORMATS,
    MediaArtifact,
    is_supported_image,
    is_supported_video,
)
from .compositor import WatermarkCompositor
from .config import ImageWatermark, JsonFileBackend, TextWatermark, WatermarkConfigStore
from .core import DEFAULT_TEXT_COLOR
from .core.layer import font_available
from .errors import ConfigNotFound, WatermarkError
from .log import configure_logging
from .settings import CompositorSettings, default_store_path

app = typer.Typer(
    name="zwm",
    help="Burn saved text or image watermarks into generated images and videos.",
    add_completion=True,
)
console = Console()

STORE_OPTION = typer.Option(
    None,
    "--store",
    help="Watermark collection file. Defaults to $ZWM_STORE_PATH or ~/.zopkit/watermarks.json.",
)
OPACITY_OPTION = typer.Option(0.8, "--opacity", min=0.0, max=1.0, help="Opacity from 0 (invisible) to 1 (opaque)")
SCALE_OPTION = typer.Option(
    0.25, "--scale", min=0.0, help="Watermark size relative to the shorter side of the media"
)
ID_OPTION = typer.Option(None, "--id", help="Watermark id. Reusing an id replaces that watermark.")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")):
    configure_logging(verbose, console)


def open_store(store_path: Optional[Path]) -> WatermarkConfigStore:
    return WatermarkConfigStore(JsonFileBackend(store_path or default_store_path()))


def get_files_to_process(path: Path, recursive: bool = False) -> list[Path]:
    """Get all supported files from path (file or directory)."""
    if path.is_file():
        return [path]

    files = []
    pattern = "**/*" if recursive else "*"

    for f in path.glob(pattern):
        if f.is_file() and (is_supported_image(f) or is_supported_video(f)):
            files.append(f)

    return sorted(files)


def _report_saved(persisted: bool, config_id: str) -> None:
    if persisted:
        console.print(f"[green]Saved watermark[/green] {config_id}")
    else:
        console.print(f"[yellow]Watermark {config_id} saved for this session only (could not write store)[/yellow]")


@app.command("add-text")
def add_text(
    text: str = typer.Argument(..., help="Text to render in the bottom-right corner"),
    watermark_id: Optional[str] = ID_OPTION,
    opacity: float = OPACITY_OPTION,
    scale: float = SCALE_OPTION,
    color: str = typer.Option(DEFAULT_TEXT_COLOR, "--color", help="Text colour (name or #RRGGBB)"),
    store_path: Optional[Path] = STORE_OPTION,
):
    """Save a text watermark."""
    options = {"id": watermark_id} if watermark_id else {}
    try:
        config = TextWatermark(content=text, color=color, opacity=opacity, scale=scale, **options)
    except ValueError as e:
        console.print(f"[red]Invalid watermark:[/red] {e}")
        raise typer.Exit(1)

    store = open_store(store_path)
    _report_saved(store.save(config), config.id)


@app.command("add-image")
def add_image(
    image: Path = typer.Argument(..., help="Overlay image (PNG with transparency works best)", exists=True, dir_okay=False),
    watermark_id: Optional[str] = ID_OPTION,
    opacity: float = OPACITY_OPTION,
    scale: float = SCALE_OPTION,
    store_path: Optional[Path] = STORE_OPTION,
):
    """Save an image watermark."""
    options = {"id": watermark_id} if watermark_id else {}
    try:
        config = ImageWatermark(content=image.read_bytes(), opacity=opacity, scale=scale, **options)
    except ValueError as e:
        console.print(f"[red]Invalid watermark:[/red] {e}")
        raise typer.Exit(1)

    store = open_store(store_path)
    _report_saved(store.save(config), config.id)


@app.command("list")
def list_watermarks(store_path: Optional[Path] = STORE_OPTION):
    """List saved watermarks in the order they were created."""
    configs = open_store(store_path).list()
    if not configs:
        console.print("No watermarks saved.")
        return

    table = Table(title="Saved watermarks")
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Content")
    table.add_column("Opacity", justify="right")
    table.add_column("Scale", justify="right")

    for config in configs:
        if isinstance(config, TextWatermark):
            content = config.content
        else:
            content = f"<image, {len(config.content)} bytes>"
        table.add_row(config.id, config.kind, content, f"{config.opacity:.2f}", f"{config.scale:.2f}")

    console.print(table)


@app.command()
def delete(
    watermark_id: str = typer.Argument(..., help="Id of the watermark to delete"),
    store_path: Optional[Path] = STORE_OPTION,
):
    """Delete a saved watermark."""
    store = open_store(store_path)
    if watermark_id not in store:
        console.print(f"[red]No watermark with id[/red] {watermark_id}")
        raise typer.Exit(1)

    if store.delete(watermark_id):
        console.print(f"[green]Deleted watermark[/green] {watermark_id}")
    else:
        console.print(f"[yellow]Could not write store; {watermark_id} is still saved on disk[/yellow]")
        raise typer.Exit(1)


@app.command()
def apply(
    path: Path = typer.Argument(
        ...,
        help="Path to image/video file or directory for batch processing",
        exists=True,
    ),
    watermark_id: str = typer.Option(..., "--watermark", "-w", help="Id of the saved watermark to apply"),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output path (file or directory). Defaults to input location with '_watermarked' suffix.",
    ),
    recursive: bool = typer.Option(
        False,
        "--recursive",
        "-r",
        help="Process directories recursively",
    ),
    suffix: str = typer.Option(
        "_watermarked",
        "--suffix",
        "-s",
        help="Suffix to add to output filenames",
    ),
    overwrite: bool = typer.Option(
        False,
        "--overwrite",
        "-y",
        help="Overwrite existing output files without prompting",
    ),
    store_path: Optional[Path] = STORE_OPTION,
):
    """
    Apply a saved watermark to images and videos.

    Output files keep the format of their input. When watermarking a file
    fails, the original is written unchanged and a warning is shown.

    Examples:
        zwm apply image.png -w brand
        zwm apply video.mp4 -w brand -o branded.mp4
        zwm apply ./generated/ -w brand -r --suffix "_branded"
    """
    store = open_store(store_path)
    try:
        store.select(watermark_id)
    except ConfigNotFound as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    config = store.get_active()
    if config is None:
        console.print("[red]No watermark selected[/red]")
        raise typer.Exit(1)

    files = get_files_to_process(path, recursive)

    if not files:
        console.print(f"[red]No supported files found in {path}[/red]")
        console.print(f"Supported formats: {SUPPORTED_IMAGE_FORMATS | SUPPORTED_VIDEO_FORMATS}")
        raise typer.Exit(1)

    # Determine output directory for batch processing
    output_dir = None
    if path.is_dir() and output:
        output_dir = output
        output_dir.mkdir(parents=True, exist_ok=True)

    compositor = WatermarkCompositor(CompositorSettings.from_env())

    console.print(
        Panel(
            f"Applying watermark {config.id} ({config.kind}) to {len(files)} file(s)",
            title="Zopkit Watermark",
            border_style="blue",
        )
    )

    failures = 0
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        main_task = progress.add_task("Processing files...", total=len(files))

        for file_path in files:
            progress.update(main_task, description=f"Processing {file_path.name}...")

            # Determine output path for this file
            if output_dir:
                file_output = output_dir / f"{file_path.stem}{suffix}{file_path.suffix}"
            elif output and path.is_file():
                file_output = output
            else:
                file_output = file_path.parent / f"{file_path.stem}{suffix}{file_path.suffix}"

            # Check for overwrite
            if file_output.exists() and not overwrite:
                if not typer.confirm(f"Overwrite {file_output}?"):
                    progress.advance(main_task)
                    continue

            artifact = MediaArtifact.from_path(file_path)
            frame_task = None
            if artifact.is_video:
                frame_task = progress.add_task("  Frames...", total=100, visible=True)

            def video_progress(current: int, total: int):
                progress.update(frame_task, completed=int(current / total * 100))

            try:
                result = compositor.composite(
                    artifact, config, progress_callback=video_progress if frame_task is not None else None
                )
            except WatermarkError as e:
                failures += 1
                result = artifact
                console.print(f"  [yellow]Watermark failed for {file_path.name}, keeping original:[/yellow] {e}")
            finally:
                if frame_task is not None:
                    progress.remove_task(frame_task)

            file_output.write_bytes(result.data)
            console.print(f"  [green]Saved:[/green] {file_output}")
            progress.advance(main_task)

    if failures:
        console.print(f"[bold yellow]Done with {failures} unwatermarked file(s).[/bold yellow]")
    else:
        console.print("[bold green]Done![/bold green]")


@app.command()
def info():
    """Display information about supported formats and placement."""
    settings = CompositorSettings.from_env()
    font = "TrueType" if font_available(settings.font_path) else "Pillow built-in"
    console.print(
        Panel(
            "[bold]Zopkit Watermark[/bold]\n\n"
            "Burns a saved text or image watermark into the bottom-right corner\n"
            "of generated images and videos.\n\n"
            "[cyan]Placement:[/cyan]\n"
            "  - Box side: scale x shorter side, clamped to fit\n"
            f"  - Margin: {settings.margin_ratio:.1%} of the shorter side (at least 1px)\n"
            f"  - Text font: {font}\n\n"
            f"[cyan]Supported Image Formats:[/cyan] {', '.join(sorted(SUPPORTED_IMAGE_FORMATS))}\n"
            f"[cyan]Supported Video Formats:[/cyan] {', '.join(sorted(SUPPORTED_VIDEO_FORMATS))}\n"
            "[cyan]Video Output:[/cyan] same container, original frame rate, audio copied\n\n"
            "[dim]Compositing: alpha blending over the original pixels[/dim]",
            title="About",
            border_style="blue",
        )
    )


if __name__ == "__main__":
    app()
