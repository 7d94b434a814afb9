"""
Command-line interface for globalbr.

Commands:
- globalbr retrieve: Build merged Br/BrO and J-BrO fields for one month
- globalbr validate: Validate configuration and input files
- globalbr info: Display system and default configuration information
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from globalbr.errors import GlobalBrError

logger = logging.getLogger(__name__)


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.version_option(package_name="globalbr")
def main():
    """
    GLOBALBR: monthly global Br/BrO oxidant fields.

    Merges tropospheric bromine from GEOS-Chem or pTOMCAT with
    stratospheric bromine from GMI at the local tropopause.

    \b
    Quick Start:
        globalbr validate globalbr.yaml
        globalbr retrieve globalbr.yaml --month 7
    """
    pass


# =============================================================================
# Retrieve Command
# =============================================================================

def run_retrieve_command(
    config_path: Path,
    month: int,
    output: Optional[Path],
    use_gc: Optional[bool],
    plot: bool,
    verbose: bool,
    quiet: bool,
):
    """Load inputs, run one monthly retrieval and write the results."""
    from globalbr.config import load_config, setup_logging, validate_paths
    from globalbr.io import load_field_store, read_tropopause_level, save_fields
    from globalbr.merge import retrieve
    from globalbr.state import BromineState

    try:
        config = load_config(config_path)

        if quiet:
            setup_logging(config, level="ERROR")
        elif verbose:
            setup_logging(config, level="DEBUG")
        else:
            setup_logging(config)

        if output is not None:
            config.project.output_dir = output
        if use_gc is None:
            use_gc = config.source.use_gc_bromine

        for warning in validate_paths(config, use_gc):
            logger.warning(warning)

        store = load_field_store(config, month, keys=config.required_fields(use_gc))
        tropopause_level = read_tropopause_level(config.inputs.tropopause, month)

        state = BromineState(config.grid)
        try:
            fields = retrieve(
                state,
                store,
                month,
                tropopause_level,
                use_gc_bromine=use_gc,
                field_names=config.source.fields,
            )

            output_dir = Path(config.project.output_dir)
            if config.output.save_fields:
                out_file = save_fields(
                    output_dir / f"{config.project.name}_br_{month:02d}.npz", fields
                )
                click.echo(f"Saved fields to: {out_file}")

            if plot or config.output.generate_plots:
                from globalbr.visualization import plot_zonal_mean
                import matplotlib.pyplot as plt

                for species in ("br", "bro"):
                    fig = plot_zonal_mean(
                        fields,
                        species=species,
                        output_path=output_dir / f"{config.project.name}_{species}_{month:02d}.png",
                    )
                    plt.close(fig)

            if not quiet:
                summary = fields.get_summary()
                click.echo("\n" + "=" * 60)
                click.echo(f"GLOBAL Br: month {month:02d} ({fields.source_name} / GMI)")
                click.echo("=" * 60)
                click.echo(summary.to_string(index=False, float_format=lambda v: f"{v:.4g}"))
                click.echo("=" * 60)
        finally:
            state.release()

    except (FileNotFoundError, GlobalBrError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        logger.exception("Retrieval failed")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command()
@click.argument("config_path", type=click.Path(exists=True, path_type=Path))
@click.option("--month", "-m", type=click.IntRange(1, 12), required=True, help="Simulation month")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output directory")
@click.option("--gc/--tomcat", "use_gc", default=None,
              help="Tropospheric source (default from configuration)")
@click.option("--plot", is_flag=True, help="Save zonal mean plots")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress output")
def retrieve(config_path, month, output, use_gc, plot, verbose, quiet):
    """
    Build the merged Br/BrO and J-BrO fields for one month.

    \b
    Examples:
        globalbr retrieve globalbr.yaml --month 1
        globalbr retrieve globalbr.yaml -m 7 --tomcat --plot -o ./results
    """
    run_retrieve_command(config_path, month, output, use_gc, plot, verbose, quiet)


# =============================================================================
# Validate Command
# =============================================================================

@main.command()
@click.argument("config_path", type=click.Path(exists=True, path_type=Path))
def validate(config_path):
    """
    Validate configuration file.

    Checks the grid and that the input files for the configured
    tropospheric source exist.
    """
    from globalbr.config import load_config, validate_paths

    click.echo(f"Validating: {config_path}")

    try:
        config = load_config(config_path)

        click.echo("\n✓ Configuration loaded successfully")
        click.echo(f"\nName: {config.project.name}")

        grid = config.grid
        click.echo("\nGrid:")
        click.echo(f"  nx x ny x nz: {grid.nx} x {grid.ny} x {grid.nz}")
        click.echo(f"  llchem: {grid.llchem} (J-BrO copied on {grid.llchem_fix})")
        click.echo(f"  precision: {grid.precision}")

        source = "GEOS-Chem" if config.source.use_gc_bromine else "pTOMCAT"
        click.echo(f"\nTropospheric source: {source}")

        warnings = validate_paths(config)
        click.echo("\nInput Files:")
        for key in config.required_fields():
            click.echo(f"  ✓ {key}: {config.inputs.fields[key].path}")
        click.echo(f"  ✓ tropopause: {config.inputs.tropopause.path}")

        if warnings:
            click.echo(f"\n⚠ Configuration has {len(warnings)} warning(s):")
            for warning in warnings:
                click.echo(f"  - {warning}")
        else:
            click.echo("\n✓ Configuration is valid")

    except Exception as e:
        click.echo(f"\n✗ Validation failed: {e}", err=True)
        sys.exit(1)


# =============================================================================
# Info Command
# =============================================================================

@main.command()
def info():
    """Display system and default configuration information."""
    import platform
    import netCDF4
    import numpy
    from globalbr import __version__
    from globalbr.config import FieldNamesConfig, GridConfig
    from globalbr.merge import PPBV_TO_PPTV

    click.echo("=" * 60)
    click.echo("GLOBALBR: monthly global Br/BrO oxidant fields")
    click.echo("=" * 60)
    click.echo(f"Version: {__version__}")
    click.echo(f"Python: {platform.python_version()}")
    click.echo(f"NumPy: {numpy.__version__}")
    click.echo(f"netCDF4: {netCDF4.__version__}")

    grid = GridConfig()
    click.echo(f"\nDefault grid: {grid.nx} x {grid.ny} x {grid.nz} ({grid.precision})")
    click.echo(f"GEOS-Chem unit conversion: ppbv x {PPBV_TO_PPTV:g} -> pptv")

    click.echo("\nDefault field names:")
    for key, name in FieldNamesConfig().model_dump().items():
        click.echo(f"  {key}: {name}")


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
