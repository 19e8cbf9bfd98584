# src/emittergen/callsites/__main__.py
"""Command line entry point: ``python -m emittergen.callsites DIR``."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer

from .api import DEFAULT_OUTPUT, DEFAULT_VAR_NAME, GeneratorConfig, generate
from .errors import GeneratorError

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Generate a static call-site table for the emitter handles of a Python package.",
    add_completion=False,
)

DirectoryArgument = Annotated[
    Path,
    typer.Argument(help="Directory of the package to analyze.", show_default=False),
]
OutputOption = Annotated[
    Path,
    typer.Option(
        "--output",
        "-o",
        help="Output file; a bare file name is placed inside DIR.",
    ),
]
VarOption = Annotated[
    str,
    typer.Option("--var", help="Name of the generated table variable."),
]
PackageOption = Annotated[
    Optional[str],
    typer.Option(
        "--package",
        help="Package named in the generated module's docstring (defaults to the analyzed package).",
    ),
]
ManifestOption = Annotated[
    Optional[Path],
    typer.Option("--manifest-dir", help="Also export the call-site manifest as Parquet into this directory."),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Log analysis details at DEBUG level."),
]


@app.command()
def main(
    directory: DirectoryArgument,
    output: OutputOption = Path(DEFAULT_OUTPUT),
    var: VarOption = DEFAULT_VAR_NAME,
    package: PackageOption = None,
    manifest_dir: ManifestOption = None,
    verbose: VerboseOption = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    cfg = GeneratorConfig(
        directory=directory,
        output=output,
        var_name=var,
        package_name=package or "",
        manifest_dir=manifest_dir,
    )
    try:
        result = generate(cfg)
    except GeneratorError as e:
        logger.debug("generation failed: %s", e.detail or e.code)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Generated {result.output_path} with {len(result.callsites)} call sites")


if __name__ == "__main__":
    app()
