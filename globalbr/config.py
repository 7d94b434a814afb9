"""
Configuration loading and validation for globalbr.

This module provides Pydantic models for validating the globalbr.yaml
configuration file and utility functions for loading configurations.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal

import numpy as np
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


# Logical field keys, in the order they are consumed by the merge
FIELD_KEYS = (
    "br_gc",
    "bro_gc",
    "br_tomcat",
    "bro_tomcat",
    "br_gmi",
    "bro_gmi",
    "jbro",
)


# =============================================================================
# Configuration Models
# =============================================================================


class ProjectConfig(BaseModel):
    """Project metadata configuration."""

    name: str = Field("globalbr", description="Project name")
    description: str = Field("", description="Project description")
    output_dir: Path = Field(Path("./output"), description="Output directory")


class GridConfig(BaseModel):
    """Model grid dimensions."""

    nx: int = Field(72, ge=1, description="Number of longitude cells (IIPAR)")
    ny: int = Field(46, ge=1, description="Number of latitude cells (JJPAR)")
    nz: int = Field(72, ge=1, description="Number of vertical levels (LLPAR)")
    llchem: int | None = Field(None, ge=1, description="Chemically active levels")
    llchem_fix: int | None = Field(None, ge=1, description="Levels copied into J-BrO")
    precision: Literal["float64", "float32"] = Field("float64")

    @model_validator(mode="after")
    def check_levels(self) -> "GridConfig":
        """Fill level defaults and check llchem_fix <= llchem <= nz."""
        if self.llchem is None:
            self.llchem = self.nz
        if self.llchem_fix is None:
            self.llchem_fix = self.llchem
        if self.llchem > self.nz:
            raise ValueError(f"llchem ({self.llchem}) exceeds nz ({self.nz})")
        if self.llchem_fix > self.llchem:
            raise ValueError(
                f"llchem_fix ({self.llchem_fix}) exceeds llchem ({self.llchem})"
            )
        return self

    @property
    def shape(self) -> tuple[int, int, int]:
        """Return (nx, ny, nz)."""
        return (self.nx, self.ny, self.nz)

    @property
    def horizontal_shape(self) -> tuple[int, int]:
        """Return (nx, ny)."""
        return (self.nx, self.ny)

    @property
    def dtype(self) -> np.dtype:
        """Numeric precision of the state buffers."""
        return np.dtype(self.precision)


class FieldNamesConfig(BaseModel):
    """Names under which upstream fields are registered in the field store."""

    br_gc: str = "Br_GC"
    bro_gc: str = "BrO_GC"
    br_tomcat: str = "Br_TOMCAT"
    bro_tomcat: str = "BrO_TOMCAT"
    br_gmi: str = "Br_GMI"
    bro_gmi: str = "BrO_GMI"
    jbro: str = "JBrO"


class SourceConfig(BaseModel):
    """Tropospheric source selection."""

    use_gc_bromine: bool = Field(
        True,
        description="Use GEOS-Chem Br/BrO (ppbv) in the troposphere instead of pTOMCAT (pptv)",
    )
    fields: FieldNamesConfig = Field(default_factory=FieldNamesConfig)


class FieldFileConfig(BaseModel):
    """Location of one upstream field on disk."""

    path: Path = Field(..., description="netCDF or NPZ file")
    variable: str | None = Field(None, description="Variable name (defaults to field name)")


class InputsConfig(BaseModel):
    """Upstream data files, keyed by logical field name."""

    fields: dict[str, FieldFileConfig] = Field(default_factory=dict)
    tropopause: FieldFileConfig | None = Field(
        None, description="Per-column tropopause level (1-based)"
    )

    @field_validator("fields", mode="before")
    @classmethod
    def check_field_keys(cls, v: Any) -> Any:
        """Reject unknown logical field names."""
        if isinstance(v, dict):
            unknown = sorted(set(v) - set(FIELD_KEYS))
            if unknown:
                raise ValueError(
                    f"Unknown input fields: {unknown}. Expected some of {list(FIELD_KEYS)}"
                )
        return v


class OutputConfig(BaseModel):
    """Output configuration."""

    save_fields: bool = Field(True)
    generate_plots: bool = Field(False)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field("INFO")
    log_file: Path | None = Field(None)


class GlobalBrConfig(BaseModel):
    """Root configuration model for globalbr."""

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    grid: GridConfig = Field(default_factory=GridConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    inputs: InputsConfig = Field(default_factory=InputsConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @field_validator("project", mode="before")
    @classmethod
    def ensure_output_dir(cls, v: dict[str, Any]) -> dict[str, Any]:
        """Ensure output_dir is a Path."""
        if isinstance(v, dict) and "output_dir" in v:
            v["output_dir"] = Path(v["output_dir"])
        return v

    def required_fields(self, use_gc_bromine: bool | None = None) -> list[str]:
        """
        Logical field keys needed for one retrieval.

        Parameters
        ----------
        use_gc_bromine : bool, optional
            Source switch; defaults to ``source.use_gc_bromine``.
        """
        if use_gc_bromine is None:
            use_gc_bromine = self.source.use_gc_bromine
        trop = ["br_gc", "bro_gc"] if use_gc_bromine else ["br_tomcat", "bro_tomcat"]
        return trop + ["br_gmi", "bro_gmi", "jbro"]


# =============================================================================
# Loading Functions
# =============================================================================


def load_config(config_path: str | Path) -> GlobalBrConfig:
    """
    Load and validate configuration from a YAML file.

    Parameters
    ----------
    config_path : str or Path
        Path to the globalbr.yaml configuration file.

    Returns
    -------
    GlobalBrConfig
        Validated configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If the configuration is invalid.
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, "r") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raise ValueError(f"Empty configuration file: {config_path}")

    # Resolve relative paths relative to config file location
    raw_config = _resolve_paths(raw_config, config_path.parent)

    config = GlobalBrConfig.model_validate(raw_config)

    logger.info(f"Configuration loaded: {config.project.name}")

    return config


def _resolve_paths(config: dict[str, Any], base_dir: Path) -> dict[str, Any]:
    """
    Recursively resolve relative paths in configuration.

    Parameters
    ----------
    config : dict
        Configuration dictionary.
    base_dir : Path
        Base directory for resolving relative paths.

    Returns
    -------
    dict
        Configuration with resolved paths.
    """
    def resolve(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: resolve(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [resolve(item) for item in obj]
        elif isinstance(obj, str):
            if obj.startswith("./") or obj.startswith("../"):
                return str(base_dir / obj)
            return obj
        return obj

    return resolve(config)


def validate_paths(
    config: GlobalBrConfig,
    use_gc_bromine: bool | None = None,
) -> list[str]:
    """
    Validate that the input files needed for a retrieval exist.

    Parameters
    ----------
    config : GlobalBrConfig
        Configuration object to validate.
    use_gc_bromine : bool, optional
        Source switch; defaults to ``source.use_gc_bromine``.

    Returns
    -------
    list[str]
        List of validation warnings (empty if all paths valid).

    Raises
    ------
    FileNotFoundError
        If required files are missing or not configured.
    """
    errors = []
    warnings = []

    required = config.required_fields(use_gc_bromine)
    for key in required:
        entry = config.inputs.fields.get(key)
        if entry is None:
            errors.append(f"No input configured for required field: inputs.fields.{key}")
        elif not Path(entry.path).exists():
            errors.append(f"Required file not found: inputs.fields.{key} = {entry.path}")

    if config.inputs.tropopause is None:
        errors.append("No input configured for inputs.tropopause")
    elif not Path(config.inputs.tropopause.path).exists():
        errors.append(f"Tropopause file not found: {config.inputs.tropopause.path}")

    # Fields for the other branch are optional
    for key, entry in config.inputs.fields.items():
        if key not in required and not Path(entry.path).exists():
            warnings.append(f"Optional file not found: inputs.fields.{key} = {entry.path}")

    if errors:
        raise FileNotFoundError("\n".join(errors))

    return warnings


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(
    config: GlobalBrConfig,
    level: str | None = None,
) -> logging.Logger:
    """
    Attach console and file handlers to the ``globalbr`` package logger.

    Handlers from an earlier call are closed and replaced, so repeated
    retrievals in one process do not duplicate output.

    Parameters
    ----------
    config : GlobalBrConfig
        Configuration object; supplies the default level and log file.
    level : str, optional
        Level name overriding ``config.output.log_level`` (e.g. from
        ``--verbose`` or ``--quiet``).

    Returns
    -------
    logging.Logger
        The configured package logger.
    """
    level_name = (level or config.output.log_level).upper()
    package_logger = logging.getLogger("globalbr")

    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.output.log_file:
        log_path = Path(config.output.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    package_logger.setLevel(getattr(logging, level_name))
    return package_logger
