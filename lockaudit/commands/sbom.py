from pathlib import Path

import typer

from lockaudit.core.container import get_container
from lockaudit.core.decorators import handle_errors
from lockaudit.core.logging import console
from lockaudit.services.lockfile_service import load_lockfile
from lockaudit.services.sbom_service import render_sbom
from lockaudit.services.sbom_service import SbomBuilder
from lockaudit.services.sbom_service import SbomFormat


@handle_errors
def main(
    output_format: SbomFormat = typer.Option(SbomFormat.CYCLONEDX, '--format', help='SBOM schema'),
    include_dev: bool = typer.Option(False, '--include-dev', help='Include development dependencies'),
    output: Path | None = typer.Option(None, '--output', '-o', help='Write to file instead of stdout'),
):
    """
    Generate a software bill of materials (SPDX 2.3 or CycloneDX 1.5 JSON).
    """
    container = get_container()
    snapshot = load_lockfile(container.config.paths.lockfile)
    document = SbomBuilder(container.project_name).build(snapshot, output_format, include_dev=include_dev)
    text = render_sbom(document)

    if output is None:
        typer.echo(text, nl=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding='utf-8')
    console.print(f'[green]Wrote {output_format} SBOM to {output}[/]')
