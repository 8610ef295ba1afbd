"""
Configuration management for pso-registration.

Provides typed, immutable pydantic models and a YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import ConfigurationError


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_options(cls, **options: Any):
        """Validate keyword options, raising ConfigurationError on bad values."""
        try:
            return cls.model_validate(options)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid {cls.__name__}: {e}") from e


# -----------------------
# Typed config structures
# -----------------------


class RegistrationConfig(_FrozenModel):
    # Robust kernel and inner refinement
    dof: float = Field(default=5.0, gt=0, description="Degrees of freedom of the Student's-t weighting kernel")
    n_iter: int = Field(default=10, ge=0, description="Maximum local refinement iterations per evaluation")
    cost_drop_thresh: float = Field(
        default=0.01,
        ge=0,
        description="Cost drop below which an inner iteration counts as stalled",
    )
    n_cost_drop_it: int = Field(
        default=5,
        ge=1,
        description="Consecutive stalled inner iterations tolerated before stopping",
    )
    verbose: bool = Field(default=False, description="Log per-iteration refinement and per-generation progress")
    summary: bool = Field(default=False, description="Log a one-line summary per local refinement")
    max_correspondence_distance: Optional[float] = Field(
        default=None,
        gt=0,
        description="Correspondences farther than this are excluded (None = unbounded)",
    )
    scale_iterations: int = Field(default=5, ge=1, description="Fixed-point iterations for the residual scale")

    # Swarm
    num_particles: int = Field(default=50, gt=0)
    num_generations: int = Field(default=1000, ge=0)
    inertia: float = Field(default=0.7298, ge=0, description="PSO inertia weight (w)")
    cognitive: float = Field(default=1.49618, ge=0, description="PSO cognitive coefficient (c1)")
    social: float = Field(default=1.49618, ge=0, description="PSO social coefficient (c2)")
    init_rotation_deg: float = Field(
        default=180.0,
        ge=0,
        le=180,
        description="Initial particles are rotated by at most this angle",
    )
    init_translation_range: Optional[float] = Field(
        default=None,
        ge=0,
        description="Half-width of the initial translation box around centroid alignment (None = half the target diagonal)",
    )
    seed: Optional[int] = Field(default=None, description="Seed for the swarm random generator")


class InputConfig(_FrozenModel):
    source_filter_size: float = Field(default=0.0, ge=0, description="Voxel leaf size for the source cloud (0 = off)")
    target_filter_size: float = Field(default=0.0, ge=0, description="Voxel leaf size for the target cloud (0 = off)")


class OutputConfig(_FrozenModel):
    path: str = Field(default="output.pcd", description="Where the aligned source cloud is written")
    transform_path: Optional[str] = Field(default=None, description="Optional text file for the 4x4 best transform")


class VisualizationConfig(_FrozenModel):
    enabled: bool = Field(default=True)
    backend: Literal["pyvista", "pyvistaqt", "plotly"] = Field(default="pyvista")
    sample_size: Optional[int] = Field(default=50000, gt=0)


class LoggingConfig(_FrozenModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class ParallelConfig(_FrozenModel):
    enabled: bool = Field(default=False, description="Evaluate particles in worker processes")
    n_workers: Optional[int] = Field(default=None, ge=1, description="Worker processes (None = cpu_count - 1)")


class AppConfig(_FrozenModel):
    registration: RegistrationConfig = Field(default_factory=RegistrationConfig)
    input: InputConfig = Field(default_factory=InputConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    visualization: VisualizationConfig = Field(default_factory=VisualizationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/pso_registration/utils/config.py
    parents sequence:
      0 -> .../src/pso_registration/utils
      1 -> .../src/pso_registration
      2 -> .../src
      3 -> repo_root
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance

    Raises:
        FileNotFoundError: If the file is missing and allow_missing is False
        ConfigurationError: If the YAML content is not a valid configuration
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Could not parse configuration {cfg_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Invalid configuration in {cfg_path}: top level must be a mapping")

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ConfigurationError(f"Invalid configuration in {cfg_path}: {e}") from e


def with_overrides(cfg: AppConfig, overrides: Mapping[str, Any]) -> AppConfig:
    """
    Return a new validated AppConfig with dotted-key overrides applied.

    Overrides whose value is None are skipped, so unset CLI flags can be
    passed through unchanged.

    Example:
        with_overrides(cfg, {"registration.dof": 3.0, "input.source_filter_size": 0.05})
    """
    data: Dict[str, Any] = cfg.model_dump()
    for key, value in overrides.items():
        if value is None:
            continue
        section = data
        *parents, leaf = key.split(".")
        for part in parents:
            if part not in section or not isinstance(section[part], dict):
                raise ConfigurationError(f"Unknown configuration section in override '{key}'")
            section = section[part]
        if leaf not in section:
            raise ConfigurationError(f"Unknown configuration option in override '{key}'")
        section[leaf] = value

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration override: {e}") from e
