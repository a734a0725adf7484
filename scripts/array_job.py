#!/usr/bin/env python3
"""
Run one array task of the sample-mean study, or collect all finished tasks.

Intended to be called from a scheduler array job, e.g. with SLURM::

    #SBATCH --array=1-12
    #SBATCH --time=00:30:00
    python scripts/array_job.py --directory results --max-time 00:25:00

Each task reads its unit index from ``--array-id`` (default
``$SLURM_ARRAY_TASK_ID``), runs that unit of the expanded design and writes
``<filename>-<unit>.pkl``.  Once the tasks have finished::

    python scripts/array_job.py --directory results --collect

merges the units and reports any replication shortfall.  Every task must use
the same ``--seed``.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

import numpy as np
from montegrid import (
    Design,
    FileStore,
    MomentSummary,
    ResultCollector,
    SimulationControl,
    SimulationDriver,
    expand,
)

DESIGN = Design.grid(N=[10, 20, 30])
REPLICATIONS = 3000
REPEAT = 4


def generate(condition, fixed_objects, rng: np.random.Generator) -> np.ndarray:
    return rng.normal(10.0, 5.0, size=int(condition["N"]))


def analyse(condition, data: np.ndarray, fixed_objects, rng: np.random.Generator) -> dict:
    return {"mean": float(np.mean(data))}


SUMMARY = MomentSummary(parameters={"mean": 10.0})


def main(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(description="Run or collect sample-mean array tasks.")
    parser.add_argument("--directory", default="results", help="Artifact directory.")
    parser.add_argument("--filename", default="sample-mean", help="Artifact basename.")
    parser.add_argument("--seed", type=int, default=20240611, help="Master seed.")
    parser.add_argument(
        "--array-id",
        type=int,
        default=os.environ.get("SLURM_ARRAY_TASK_ID"),
        help="Unit to run (default: $SLURM_ARRAY_TASK_ID).",
    )
    parser.add_argument(
        "--max-time",
        default=None,
        help="Per-condition budget as [D-]HH:MM:SS; stop early and keep what finished.",
    )
    parser.add_argument(
        "--collect",
        action="store_true",
        help="Merge finished units instead of running one.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log at INFO level.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    store = FileStore(args.directory)
    design = expand(DESIGN, repeat=REPEAT, replications=REPLICATIONS)

    if args.collect:
        collector = ResultCollector(store, args.filename, summarise=SUMMARY)
        missing = collector.missing_units(design)
        if missing:
            print(f"Units without results: {missing}", file=sys.stderr)
        print(collector.collect().to_string(index=False))
        print(collector.check_completeness(design).to_string(index=False))
        return 0 if not missing else 1

    if args.array_id is None:
        parser.error("--array-id is required outside a scheduler array job")

    control = SimulationControl(
        seed=args.seed,
        max_time=args.max_time,
        filename=args.filename,
        checkpoint_every=250,
    )
    driver = SimulationDriver(generate, analyse, SUMMARY, control=control, store=store)
    table = driver.run(design, array_id=int(args.array_id))
    print(table.to_string(index=False))
    return 0 if (table["STATUS"] != "failed").all() else 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main(sys.argv[1:]))
