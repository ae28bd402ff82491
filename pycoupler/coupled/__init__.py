"""
Coupled-simulation package: configuration of a coupled run.

The run configuration is an immutable dataclass loaded from environment
variables (CPL_*), optionally overridden from a dict (CLI / JSON file), and
validated once before any model is built. The orchestration itself lives in
the sibling modules (state, field_exchanger, flux_calculator, time_manager,
checkpointer, conservation, driver).
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from datetime import datetime

import numpy as np

from .exceptions import ConfigurationError
from .time_manager import time_to_seconds

MODE_NAMES = (
    "amip",
    "slabplanet",
    "slabplanet_aqua",
    "slabplanet_terra",
    "slabplanet_eisenman",
)

_FLOAT_TYPES = {"Float64": np.float64, "Float32": np.float32}

_TIME_KEYS = ("dt_cpl", "dt", "t_start", "t_end")


# ---------------------------
# Configuration & Parameters
# ---------------------------


@dataclass(frozen=True)
class CouplerConfig:
    """Run configuration of a coupled simulation (env-driven)."""

    mode_name: str = "slabplanet"
    job_id: str = "coupled_run"
    float_type: str = "Float64"
    dt_cpl: float = 400.0
    dt: float = 400.0
    t_start: float = 0.0
    t_end: float = 864000.0
    start_date: str = "19790301"
    turb_flux_partition: str = "CombinedStateFluxes"
    energy_check: bool = False
    conservation_softfail: bool = False
    conservation_rtol: float = 1e-6
    hourly_checkpoint: bool = False
    hourly_checkpoint_dt: float = 480.0
    restart_dir: str = ""
    restart_t: float | None = None
    n_lat: int = 45
    n_lon: int = 90
    mono_surface: bool = False
    evolving_ocean: bool = True
    land_fraction_source: str = "idealized"
    land_mask_file: str = ""
    sst_file: str = ""
    sic_file: str = ""
    co2_file: str = ""
    co2_ppm: float = 400.0
    output_dir: str = "output"
    diagnostics_enable: bool = False
    plot_conservation: bool = False
    allow_partial_step: bool = False

    @classmethod
    def from_env(cls) -> CouplerConfig:
        def _ibool(name: str, default: str = "1") -> bool:
            try:
                return int(os.getenv(name, default)) == 1
            except Exception:
                return default == "1"

        def _int(name: str, default: str) -> int:
            try:
                return int(os.getenv(name, default))
            except Exception:
                return int(default)

        def _float(name: str, default: str) -> float:
            try:
                return float(os.getenv(name, default))
            except Exception:
                return float(default)

        def _time(name: str, default: str) -> float:
            try:
                return time_to_seconds(os.getenv(name, default))
            except ConfigurationError:
                return time_to_seconds(default)

        restart_t_env = os.getenv("CPL_RESTART_T", "")
        try:
            restart_t = time_to_seconds(restart_t_env) if restart_t_env not in ("", "None", "none") else None
        except ConfigurationError:
            restart_t = None

        return cls(
            mode_name=os.getenv("CPL_MODE", "slabplanet").strip(),
            job_id=os.getenv("CPL_JOB_ID", "coupled_run").strip(),
            float_type=os.getenv("CPL_FLOAT_TYPE", "Float64").strip(),
            dt_cpl=_time("CPL_DT_CPL", "400secs"),
            dt=_time("CPL_DT", "400secs"),
            t_start=_time("CPL_T_START", "0secs"),
            t_end=_time("CPL_T_END", "10days"),
            start_date=os.getenv("CPL_START_DATE", "19790301").strip(),
            turb_flux_partition=os.getenv("CPL_TURB_FLUX_PARTITION", "CombinedStateFluxes").strip(),
            energy_check=_ibool("CPL_ENERGY_CHECK", "0"),
            conservation_softfail=_ibool("CPL_CONSERVATION_SOFTFAIL", "0"),
            conservation_rtol=_float("CPL_CONSERVATION_RTOL", "1e-6"),
            hourly_checkpoint=_ibool("CPL_HOURLY_CHECKPOINT", "0"),
            hourly_checkpoint_dt=_float("CPL_HOURLY_CHECKPOINT_DT", "480"),
            restart_dir=os.getenv("CPL_RESTART_DIR", ""),
            restart_t=restart_t,
            n_lat=_int("CPL_N_LAT", "45"),
            n_lon=_int("CPL_N_LON", "90"),
            mono_surface=_ibool("CPL_MONO_SURFACE", "0"),
            evolving_ocean=_ibool("CPL_EVOLVING_OCEAN", "1"),
            land_fraction_source=os.getenv("CPL_LAND_FRACTION_SOURCE", "idealized").strip().lower(),
            land_mask_file=os.getenv("CPL_LAND_MASK_FILE", ""),
            sst_file=os.getenv("CPL_SST_FILE", ""),
            sic_file=os.getenv("CPL_SIC_FILE", ""),
            co2_file=os.getenv("CPL_CO2_FILE", ""),
            co2_ppm=_float("CPL_CO2_PPM", "400"),
            output_dir=os.getenv("CPL_OUTPUT_DIR", "output"),
            diagnostics_enable=_ibool("CPL_DIAGNOSTICS", "0"),
            plot_conservation=_ibool("CPL_PLOT_CONSERVATION", "0"),
            allow_partial_step=_ibool("CPL_ALLOW_PARTIAL_STEP", "0"),
        )

    @classmethod
    def from_dict(cls, values: dict, base: CouplerConfig | None = None) -> CouplerConfig:
        """Override `base` (default: from_env()) with the keys of `values`."""
        base = base if base is not None else cls.from_env()
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")
        updates = {}
        for key, value in values.items():
            if key in _TIME_KEYS or (key == "restart_t" and value is not None):
                value = time_to_seconds(value)
            updates[key] = value
        return dataclasses.replace(base, **updates)

    # ---- derived values ----

    @property
    def dtype(self):
        try:
            return _FLOAT_TYPES[self.float_type]
        except KeyError:
            raise ConfigurationError(
                f"Unknown float_type {self.float_type!r}; expected one of {sorted(_FLOAT_TYPES)}"
            ) from None

    @property
    def start_datetime(self) -> datetime:
        try:
            return datetime.strptime(self.start_date, "%Y%m%d")
        except ValueError:
            raise ConfigurationError(f"start_date must be YYYYMMDD, got {self.start_date!r}") from None

    @property
    def n_steps(self) -> int:
        """Number of coupling steps in [t_start, t_end] (last step may be partial)."""
        span = self.t_end - self.t_start
        return int(np.ceil(span / self.dt_cpl - 1e-9))

    @property
    def is_slabplanet(self) -> bool:
        return self.mode_name.startswith("slabplanet")

    def validated(self) -> CouplerConfig:
        """
        Check the configuration and return the effective one.

        Raises ConfigurationError on fatal problems. Energy checks requested
        for the (non-conservative) amip mode are switched off with a notice.
        """
        if self.mode_name not in MODE_NAMES:
            raise ConfigurationError(f"Unknown mode_name: {self.mode_name!r}; expected one of {MODE_NAMES}")
        # Imported here: flux_calculator depends on this package's exceptions only
        from .flux_calculator import parse_flux_scheme

        parse_flux_scheme(self.turb_flux_partition)
        _ = self.dtype
        _ = self.start_datetime
        if not self.dt_cpl > 0.0:
            raise ConfigurationError(f"Coupling interval must be positive, got dt_cpl={self.dt_cpl}")
        if not self.dt > 0.0:
            raise ConfigurationError(f"Component timestep must be positive, got dt={self.dt}")
        span = self.t_end - self.t_start
        if span < 0.0:
            raise ConfigurationError(f"t_end ({self.t_end}) precedes t_start ({self.t_start})")
        remainder = span - np.floor(span / self.dt_cpl + 1e-9) * self.dt_cpl
        if abs(remainder) > 1e-9 * max(1.0, span) and not self.allow_partial_step:
            raise ConfigurationError(
                f"dt_cpl={self.dt_cpl}s does not evenly divide the time span {span}s "
                "(set allow_partial_step to permit a final partial step)"
            )
        if self.land_fraction_source not in ("idealized", "file"):
            raise ConfigurationError(f"Unknown land_fraction_source: {self.land_fraction_source!r}")
        if self.land_fraction_source == "file" and not self.land_mask_file:
            raise ConfigurationError("land_fraction_source='file' requires land_mask_file")
        if self.n_lat < 1 or self.n_lon < 1:
            raise ConfigurationError(f"Grid must have at least one cell, got {self.n_lat}x{self.n_lon}")
        cfg = self
        if self.energy_check and self.mode_name == "amip":
            print("[Coupler] energy_check is not applicable to the open amip system; disabling it.")
            cfg = dataclasses.replace(cfg, energy_check=False)
        return cfg
