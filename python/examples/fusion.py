#!/usr/bin/env python3
"""Run the UKF over a radar/lidar log file and report accuracy.

Optionally writes the estimates to a tab-separated file and plots the
track if matplotlib is installed.

Usage:
    python fusion.py data/obj_pose-laser-radar-synthetic-input.txt
    python fusion.py input.txt --output estimates.txt
    python fusion.py input.txt --no-radar --plot
"""

import argparse
import logging
import sys

import numpy as np

from ukf_fusion import SensorType, UkfError, UnscentedKalmanFilter
from ukf_fusion.datafile import read_measurements
from ukf_fusion.utils import (
    NIS_95_THRESHOLDS,
    calculate_rmse,
    nis_exceedance_rate,
    state_to_cartesian,
)

# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


def run(path, output=None, use_laser=True, use_radar=True, plot=False):
    records = read_measurements(path)
    if not records:
        print(f"No measurements in {path}")
        return 1

    ukf = UnscentedKalmanFilter(use_laser=use_laser, use_radar=use_radar)

    estimations = []
    ground_truth = []
    nis = {SensorType.LASER: [], SensorType.RADAR: []}
    rows = []

    for record in records:
        meas = record.measurement
        was_initialized = ukf.is_initialized
        ukf.process_measurement(meas)

        x = ukf.x
        estimations.append(state_to_cartesian(x))
        if record.ground_truth is not None:
            ground_truth.append(record.ground_truth)

        nis_value = float("nan")
        if was_initialized and meas.sensor_type is SensorType.LASER and use_laser:
            nis_value = ukf.nis_lidar
            nis[SensorType.LASER].append(nis_value)
        elif was_initialized and meas.sensor_type is SensorType.RADAR and use_radar:
            nis_value = ukf.nis_radar
            nis[SensorType.RADAR].append(nis_value)

        rows.append((meas.timestamp, meas.sensor_type.value, *x, nis_value))

    if output:
        with open(output, "w", encoding="utf-8") as fh:
            fh.write("time_us\tsensor\tpx\tpy\tv\tyaw\tyaw_rate\tnis\n")
            for row in rows:
                fh.write("\t".join(str(v) for v in row) + "\n")
        print(f"Saved: {output}")

    print(f"Processed {len(records)} measurements")
    if len(ground_truth) == len(estimations):
        rmse = calculate_rmse(estimations, ground_truth)
        print(f"  RMSE px={rmse[0]:.4f}  py={rmse[1]:.4f}  "
              f"vx={rmse[2]:.4f}  vy={rmse[3]:.4f}")
    for sensor_type, values in nis.items():
        if values:
            rate = nis_exceedance_rate(values, sensor_type)
            print(f"  {sensor_type.name:5s} NIS above 95% threshold: {rate:.1%} "
                  f"({len(values)} updates)")
    print(f"  Final P trace: {np.trace(ukf.P):.6f}")

    if plot:
        gt = np.array(ground_truth) if len(ground_truth) == len(estimations) else None
        _plot(np.array(estimations), gt, nis)
    return 0


def _plot(estimations, ground_truth, nis):
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        print("\nInstall matplotlib for plotting: pip install matplotlib")
        return

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 10))

    if ground_truth is not None:
        ax1.plot(ground_truth[:, 0], ground_truth[:, 1], "g-", alpha=0.8, label="Ground truth")
    ax1.plot(estimations[:, 0], estimations[:, 1], "b-", lw=2, label="UKF estimate")
    ax1.set_xlabel("x (m)")
    ax1.set_ylabel("y (m)")
    ax1.set_title("Track")
    ax1.axis("equal")
    ax1.legend(loc="upper right")
    ax1.grid(True, alpha=0.3)

    colors = {SensorType.LASER: "r", SensorType.RADAR: "m"}
    for sensor_type, values in nis.items():
        if values:
            ax2.plot(values, colors[sensor_type] + "-", alpha=0.7, label=f"{sensor_type.name} NIS")
    for sensor_type, color in colors.items():
        ax2.axhline(NIS_95_THRESHOLDS[sensor_type.meas_dim], color=color, ls="--", alpha=0.5)
    ax2.set_xlabel("Update")
    ax2.set_ylabel("NIS")
    ax2.set_title("Normalized Innovation Squared")
    ax2.legend(loc="upper right")
    ax2.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig("fusion.svg", dpi=150)
    print("\nSaved: fusion.svg")
    plt.show()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Radar/lidar fusion with a UKF")
    parser.add_argument("input", help="sensor log file")
    parser.add_argument("--output", help="write estimates to this file")
    parser.add_argument("--no-laser", action="store_true", help="ignore lidar after init")
    parser.add_argument("--no-radar", action="store_true", help="ignore radar after init")
    parser.add_argument("--plot", action="store_true")
    parser.add_argument("--verbose", action="store_true", help="log filter internals")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")

    try:
        status = run(
            args.input,
            output=args.output,
            use_laser=not args.no_laser,
            use_radar=not args.no_radar,
            plot=args.plot,
        )
    except (OSError, ValueError, UkfError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        status = 1
    sys.exit(status)
