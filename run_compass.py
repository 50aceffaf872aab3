#!/usr/bin/env python3
"""
Fit the COMPASS responder model to a pair of count tables.

Inputs are two individual x category count tables (CSV or Excel, first column
individual IDs, last column the null category) and an optional categories
matrix. Writes mean response probabilities, posterior proportions and
sampler diagnostics to the results directory.

Example
-------
    python run_compass.py --n-s n_s.csv --n-u n_u.csv --categories categories.csv \
        --iterations 40000 --replications 8 --seed 1 --results results/compass
"""
import argparse
import logging
from pathlib import Path

from compass_screen import (
    SamplerConfig,
    fit_compass,
    hyperparameter_ess,
    hyperparameter_trace_plot,
    load_compass_data,
    response_heatmap,
    write_fit_results,
)

logger = logging.getLogger(__name__)


def main():
    """Command-line interface for fitting COMPASS."""
    parser = argparse.ArgumentParser(
        description='Fit the COMPASS responder model to stimulated/unstimulated counts'
    )

    parser.add_argument(
        '--n-s',
        required=True,
        help='Path to stimulated counts table',
    )
    parser.add_argument(
        '--n-u',
        required=True,
        help='Path to unstimulated counts table',
    )
    parser.add_argument(
        '--categories',
        default=None,
        help='Path to categories matrix (optional)',
    )
    parser.add_argument(
        '--results',
        required=True,
        help='Path to output directory',
    )
    parser.add_argument(
        '--iterations',
        type=int,
        default=40000,
        help='Iterations per replication',
    )
    parser.add_argument(
        '--replications',
        type=int,
        default=8,
        help='Number of replications (only the last is kept)',
    )
    parser.add_argument(
        '--seed',
        type=int,
        default=None,
        help='Random seed',
    )
    parser.add_argument(
        '--init-with-fisher',
        action='store_true',
        help='Initialize responders from a one-sided odds ratio bound',
    )
    parser.add_argument(
        '--no-plots',
        action='store_true',
        help='Skip writing figures',
    )
    parser.add_argument(
        '-d', '--debug',
        action='store_true',
        help='Enable debug logging',
    )

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    results_path = Path(args.results)
    data = load_compass_data(args.n_s, args.n_u, args.categories)
    logger.info(f"Loaded {data.n_individuals} individuals x {data.n_categories} categories "
                f"from {args.n_s}")

    config = SamplerConfig(
        iterations=args.iterations,
        replications=args.replications,
        seed=args.seed,
        init_with_fisher=args.init_with_fisher,
        log_every=max(1, args.iterations // 10),
    )
    fit = fit_compass(data, config)

    write_fit_results(fit, results_path)
    hyperparameter_ess(fit).to_csv(results_path / "hyperparameter_ess.csv")

    if not args.no_plots:
        response_heatmap(fit, outpath=results_path / "response_heatmap.png")
        for which in ("alpha_s", "alpha_u"):
            hyperparameter_trace_plot(fit, which, outpath=results_path / f"{which}_trace.png")


if __name__ == '__main__':
    main()
