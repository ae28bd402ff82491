# scripts/run_coupled.py

"""
Command-line driver for a coupled run.

Configuration is read from CPL_* environment variables, then from an optional
JSON file (--config), then from the command-line flags below, later sources
overriding earlier ones.

    python3 -m scripts.run_coupled --mode slabplanet_aqua --t-end 10days
    python3 -m scripts.run_coupled --config amip.json --restart-dir output/checkpoint --restart-t 864000
"""

import argparse
import json
import os
import sys

# Add the project root to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pycoupler.coupled import MODE_NAMES, CouplerConfig
from pycoupler.coupled.driver import run_coupled
from pycoupler.jax_compat import backend as JAX_BACKEND
from pycoupler.jax_compat import is_enabled as JAX_IS_ENABLED


def build_config(argv=None) -> CouplerConfig:
    ap = argparse.ArgumentParser(description="Run a coupled atmosphere-surface simulation.")
    ap.add_argument("--config", type=str, default=None, help="JSON file with CouplerConfig keys")
    ap.add_argument("--mode", dest="mode_name", choices=MODE_NAMES, default=None)
    ap.add_argument("--job-id", dest="job_id", type=str, default=None)
    ap.add_argument("--dt-cpl", dest="dt_cpl", type=str, default=None, help='e.g. "400secs"')
    ap.add_argument("--dt", dest="dt", type=str, default=None, help="component substep")
    ap.add_argument("--t-end", dest="t_end", type=str, default=None, help='e.g. "10days"')
    ap.add_argument("--start-date", dest="start_date", type=str, default=None, help="YYYYMMDD")
    ap.add_argument("--turb-flux-partition", dest="turb_flux_partition", type=str, default=None,
                    help="CombinedStateFluxes | PartitionedStateFluxes")
    ap.add_argument("--restart-dir", dest="restart_dir", type=str, default=None)
    ap.add_argument("--restart-t", dest="restart_t", type=str, default=None)
    ap.add_argument("--energy-check", dest="energy_check", action="store_true", default=None)
    ap.add_argument("--hourly-checkpoint", dest="hourly_checkpoint", action="store_true", default=None)
    ap.add_argument("--output-dir", dest="output_dir", type=str, default=None)
    args = ap.parse_args(argv)

    values = {}
    if args.config:
        with open(args.config, "r") as fh:
            values.update(json.load(fh))
    for key, value in vars(args).items():
        if key != "config" and value is not None:
            values[key] = value
    return CouplerConfig.from_dict(values)


def main(argv=None):
    print("--- Initializing coupled simulation ---")
    print(f"[JAX] Acceleration enabled: {JAX_IS_ENABLED()} backend={JAX_BACKEND()} (toggle via CPL_USE_JAX=1)")
    cfg = build_config(argv)
    cs = run_coupled(cfg)
    print(f"[Coupler] Final date {cs.dates.date:%Y-%m-%d %H:%M:%S}, output in '{cs.output_dir}'")
    return cs


if __name__ == "__main__":
    main()
