"""
End-to-end analysis of snail traits along an urbanization gradient.

Steps:
1. Load and clean site, snail and colour tables
2. Calibrate shell colour: reflectance and its propagated SD per specimen
3. Join into a model table, pin the proportion transform and covariate statistics
4. Fit (or reload) one hierarchical model per response
5. Back-transform food-intake predictions and plot them along the gradient
6. Test site-level residuals for spatial autocorrelation
"""

import argparse
from pathlib import Path
from typing import Any, Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from urbansnail import config
from urbansnail.calibration import (
    curves_to_frame,
    estimate_reflectance,
    fit_photo_curves,
)
from urbansnail.hb_models import build_design_matrix, fit_or_load
from urbansnail.plots import PlotConfig, plot_utils
from urbansnail.processing import (
    build_model_table,
    build_site_index,
    clean_snail_data,
    compute_correlation_matrix,
    correlogram,
    load_colour_data,
    load_site_data,
    load_snail_data,
    project_sites,
    site_residuals,
    standardize_variables,
    summarise_by_site,
)
from urbansnail.transforms import BoundedProportionTransform
from urbansnail.utils import create_output_dir_path, sanitize_filename

# response -> standardized predictors (intercept added separately)
RESPONSE_PREDICTORS = {
    "shell_diameter": ["urbanization_stzd"],
    "reflectance": ["urbanization_stzd"],
    "parasite": ["urbanization_stzd"],
    "log_speed": ["urbanization_stzd", "shell_diameter_stzd"],
    "food_proportion": ["urbanization_stzd", "shell_diameter_stzd"],
}

VARS_TO_STANDARDIZE = [config.URBANIZATION_COLUMN, "shell_diameter"]


def prepare_model_table(
    data_dir: Optional[Path] = None,
    on_calibration_error: str = "raise",
    verbose: bool = True,
) -> dict[str, Any]:
    """
    Load, calibrate and join the input tables.

    Parameters
    ----------
    data_dir : Path, optional
        Directory holding sites.csv, snails.csv and colour.csv.
        Defaults to config.data_dir.
    on_calibration_error : {'raise', 'mark'}
        Passed to calibration; 'mark' keeps going and leaves failed
        specimens without reflectance.
    verbose : bool
        Print progress

    Returns
    -------
    dict
        model_table, curves, reflectance, proportion_transform, standardization_stats
    """
    data_dir = Path(data_dir) if data_dir is not None else config.data_dir
    results = {}

    if verbose:
        print("Loading data...")
    sites = load_site_data(data_dir / "sites.csv")
    snails = clean_snail_data(load_snail_data(data_dir / "snails.csv"))
    if verbose:
        print(f"\tLoaded {len(snails)} individuals from {len(sites)} sites")

    reflectance = None
    colour_path = data_dir / "colour.csv"
    if colour_path.exists():
        if verbose:
            print("Calibrating shell colour...")
        colour = load_colour_data(colour_path)
        curves = fit_photo_curves(colour, on_error=on_calibration_error, verbose=verbose)
        reflectance = estimate_reflectance(
            colour, curves=curves, on_error=on_calibration_error, verbose=verbose
        )
        results["colour"] = colour
        results["curves"] = curves
        results["reflectance"] = reflectance
    elif verbose:
        print(f"\tNo colour table at {colour_path}, skipping calibration")

    if verbose:
        print("Building model table...")
    df = build_model_table(snails, sites, reflectance, verbose=verbose)

    # n is pinned here, on the full table, and reused for every inverse
    if "food_proportion" in df.columns:
        transform = BoundedProportionTransform.from_observations(df["food_proportion"])
        df["food_proportion_beta"] = transform.transform(df["food_proportion"])
        results["proportion_transform"] = transform
        if verbose:
            print(f"\tBounded-proportion transform pinned at n={transform.n}")

    if verbose:
        print("Standardizing variables...")
    df, std_stats = standardize_variables(
        df, [c for c in VARS_TO_STANDARDIZE if c in df.columns]
    )
    results["standardization_stats"] = std_stats
    results["model_table"] = df
    return results


def _model_response(response: str, family: str) -> str:
    # the beta model is fitted on the transformed proportion
    return f"{response}_beta" if family == "beta" else response


def fit_response_model(
    df: pd.DataFrame,
    response: str,
    family: str,
    model_dir: Path,
    site_map: dict,
    proportion_transform: Optional[BoundedProportionTransform] = None,
    standardization_stats=None,
    refit: bool = False,
    **sampler_kwargs: Any,
):
    """
    Fit or reload the model of one response and return it with its data rows.
    """
    predictors = [p for p in RESPONSE_PREDICTORS[response] if p in df.columns]
    target = _model_response(response, family)
    required = [target] + predictors
    if response == "reflectance":
        required.append("reflectance_sd")
    rows = df.dropna(subset=required)

    X, col_names = build_design_matrix(rows, predictors)
    site_idx = rows["site"].map(site_map).to_numpy(dtype=int)
    fit_kwargs = dict(
        X=X,
        y=rows[target].to_numpy(dtype=float),
        site_idx=site_idx,
        site_map=site_map,
        col_names=col_names,
        standardization_stats=standardization_stats,
        **sampler_kwargs,
    )
    if response == "reflectance":
        fit_kwargs["measurement_sd"] = rows["reflectance_sd"].to_numpy(dtype=float)
    if family == "beta":
        fit_kwargs["proportion_transform"] = proportion_transform

    model = fit_or_load(model_dir, family, refit=refit, **fit_kwargs)
    return model, rows, X, site_idx


def expected_on_response_scale(model, X: np.ndarray, site_idx: np.ndarray) -> np.ndarray:
    """Posterior mean expectation, back-transformed for beta models."""
    draws = model.predict_expectation(X, site_idx)
    if model.family == "beta":
        draws = model.proportion_transform.inverse(draws)
    return draws.mean(axis=0)


def run_full_analysis(
    data_dir: Optional[Path] = None,
    output_dir: Optional[Path] = None,
    models_dir: Optional[Path] = None,
    fit_models: bool = True,
    refit: bool = False,
    save_diagnostics: bool = False,
    on_calibration_error: str = "raise",
    n_permutations: int = 999,
    n_samples: int = 1000,
    n_tune: int = 1000,
    n_chains: int = 4,
    target_accept: float = 0.95,
    max_treedepth: int = 15,
    random_seed: int = 42,
) -> dict[str, Any]:
    """
    Run the complete snail urbanization analysis pipeline.

    Parameters
    ----------
    data_dir : Path, optional
        Directory with the input CSVs
    output_dir : Path, optional
        Parent directory for a timestamped results folder
    models_dir : Path, optional
        Cache directory for fitted models. A model whose saved trace exists
        there is reloaded instead of refitted.
    fit_models : bool
        Whether to fit the Bayesian models
    refit : bool
        Ignore cached models
    save_diagnostics : bool
        Whether to save MCMC diagnostics
    on_calibration_error : {'raise', 'mark'}
        Behaviour on a failed colour calibration
    n_permutations : int
        Permutations per correlogram distance class
    n_samples, n_tune, n_chains, target_accept, max_treedepth, random_seed
        NUTS sampler settings

    Returns
    -------
    dict
        dictionary containing all results
    """
    output_dir = create_output_dir_path(
        Path(output_dir) if output_dir is not None else config.figures_dir
    )
    models_dir = Path(models_dir) if models_dir is not None else config.models_dir

    results = prepare_model_table(data_dir, on_calibration_error=on_calibration_error)
    df = results["model_table"]

    # 1. Calibration outputs
    if "curves" in results:
        print("Saving calibration results...")
        curves_to_frame(results["curves"]).to_csv(
            output_dir / "calibration_curves.csv", index=False
        )
        results["reflectance"].to_csv(output_dir / "reflectance.csv", index=False)
        calibration_dir = output_dir / "calibration"
        for photo in sorted(results["colour"]["photo"].unique()):
            fig = plot_utils.plot_calibration_curves(
                results["colour"],
                results["curves"],
                photo,
                calibration_dir / f"{sanitize_filename(photo)}.png",
            )
            plt.close(fig)
        fig = plot_utils.plot_reflectance_uncertainty(
            results["reflectance"], output_dir / "reflectance_uncertainty.png"
        )
        plt.close(fig)

    # 2. Descriptive statistics
    print("Computing descriptive statistics...")
    site_summary = summarise_by_site(df)
    site_summary.to_csv(output_dir / "site_summary.csv", index=False)
    results["site_summary"] = site_summary
    corr_matrix = compute_correlation_matrix(df)
    corr_matrix.to_csv(output_dir / "correlation_matrix.csv")
    fig = plot_utils.plot_correlation_matrix(corr_matrix, output_dir / "corrplot.png")
    plt.close(fig)

    df.to_csv(output_dir / "model_table.csv", index=False)

    if not fit_models:
        print(f"Analysis complete (no models fitted). Results saved to {output_dir}")
        return results

    # 3. Models
    _, site_map = build_site_index(df)
    results["site_map"] = site_map
    sampler_kwargs = dict(
        n_samples=n_samples,
        n_tune=n_tune,
        n_chains=n_chains,
        target_accept=target_accept,
        max_treedepth=max_treedepth,
        random_seed=random_seed,
    )
    results["models"] = {}
    results["coefficient_summaries"] = {}
    results["correlograms"] = {}

    for response, family in config.RESPONSES.items():
        if _model_response(response, family) not in df.columns:
            print(f"\tResponse '{response}' not in data, skipping")
            continue

        response_dir = output_dir / response
        print(f"\nModelling {response} ({family})...")
        model, rows, X, site_idx = fit_response_model(
            df,
            response,
            family,
            models_dir / response,
            site_map,
            proportion_transform=results.get("proportion_transform"),
            standardization_stats=results["standardization_stats"],
            refit=refit,
            **sampler_kwargs,
        )
        results["models"][response] = model

        coef_summary = model.get_coefficient_summary()
        response_dir.mkdir(parents=True, exist_ok=True)
        coef_summary.to_csv(response_dir / "coefficients.csv")
        results["coefficient_summaries"][response] = coef_summary
        fig = model.plot_coefficients(response_dir / "coefficients.png")
        plt.close(fig)

        if save_diagnostics:
            model.save_diagnostics(response_dir / "diagnostics")

        # 4. Residual spatial autocorrelation
        rows = rows.assign(predicted=expected_on_response_scale(model, X, site_idx))
        residuals = site_residuals(rows, observed=response, predicted="predicted")
        if len(residuals) >= 3:
            print("\tComputing residual correlogram...")
            corr = correlogram(
                residuals["residual"].to_numpy(),
                project_sites(residuals),
                n_permutations=n_permutations,
                random_seed=random_seed,
            )
            corr.to_csv(response_dir / "correlogram.csv", index=False)
            results["correlograms"][response] = corr
            fig = plot_utils.plot_correlogram(corr, output_path=response_dir / "correlogram.png")
            plt.close(fig)

        # 5. Food intake along the gradient, back on the proportion scale
        if family == "beta":
            print("\tPlotting predictions along the urbanization gradient...")
            stats = results["standardization_stats"]
            urban = np.linspace(
                df[config.URBANIZATION_COLUMN].min(),
                df[config.URBANIZATION_COLUMN].max(),
                100,
            )
            grid = pd.DataFrame({config.URBANIZATION_COLUMN: urban})
            # other covariates held at their mean
            for predictor in model.col_names[1:]:
                base = predictor.replace("_stzd", "")
                if base != config.URBANIZATION_COLUMN:
                    grid[base] = stats[base][0]
            grid = stats.apply(grid)
            X_grid, _ = build_design_matrix(grid, model.col_names[1:])
            draws = model.predict_expectation(X_grid, n_draws=1000, random_seed=random_seed)
            fig = plot_utils.plot_proportion_predictions(
                urban,
                draws,
                model.proportion_transform,
                observed_x=rows[config.URBANIZATION_COLUMN].to_numpy(),
                observed_y=rows[response].to_numpy(),
                output_path=response_dir / "predictions.png",
                config=PlotConfig(xlabel="Urbanization"),
            )
            plt.close(fig)

    print(f"\nAnalysis complete. Results saved to {output_dir}")
    return results


# =============================================================================
# COMMAND LINE INTERFACE
# =============================================================================


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Run the snail urbanization analysis"
    )
    parser.add_argument(
        "--data", "-d", type=str, default=None, help="Directory with input CSV files"
    )
    parser.add_argument(
        "--output", "-o", type=str, default=None, help="Output directory for results"
    )
    parser.add_argument(
        "--models", "-m", type=str, default=None, help="Cache directory for fitted models"
    )
    parser.add_argument(
        "--no-fit",
        action="store_true",
        default=False,
        help="Only calibrate, join and summarise; do not fit models",
    )
    parser.add_argument(
        "--refit",
        action="store_true",
        default=False,
        help="Refit models even if a saved fit exists",
    )
    parser.add_argument(
        "--save-diagnostics",
        "-sd",
        action="store_true",
        default=False,
        help="Save model diagnostics",
    )
    parser.add_argument(
        "--mark-calibration-errors",
        action="store_true",
        default=False,
        help="Mark specimens with failed calibration as invalid instead of aborting",
    )
    parser.add_argument(
        "--permutations",
        type=int,
        default=999,
        help="Permutations per correlogram distance class",
    )
    parser.add_argument(
        "--max-treedepth",
        "-mt",
        type=int,
        default=15,
        help="Maximum tree depth for NUTS sampler",
    )
    parser.add_argument(
        "--target-accept",
        "-ta",
        type=float,
        default=0.95,
        help="Target acceptance rate for NUTS sampler",
    )
    parser.add_argument(
        "--num_chains",
        "-nc",
        type=int,
        default=4,
        help="Number of chains for MCMC sampling",
    )
    parser.add_argument(
        "--samples", "-s", type=int, default=1000, help="Number of posterior samples"
    )
    parser.add_argument(
        "--tune", "-t", type=int, default=1000, help="Number of tuning samples"
    )
    parser.add_argument(
        "--random-seed",
        "-rs",
        type=int,
        default=42,
        help="Random seed for reproducibility",
    )

    args = parser.parse_args(argv)

    results = run_full_analysis(
        data_dir=Path(args.data) if args.data else None,
        output_dir=Path(args.output) if args.output else None,
        models_dir=Path(args.models) if args.models else None,
        fit_models=not args.no_fit,
        refit=args.refit,
        save_diagnostics=args.save_diagnostics,
        on_calibration_error="mark" if args.mark_calibration_errors else "raise",
        n_permutations=args.permutations,
        n_samples=args.samples,
        n_tune=args.tune,
        n_chains=args.num_chains,
        target_accept=args.target_accept,
        max_treedepth=args.max_treedepth,
        random_seed=args.random_seed,
    )

    print("\nSummary:")
    print(f"  Individuals: {len(results['model_table'])}")
    for response, summary in results.get("coefficient_summaries", {}).items():
        print(f"\n{response}:")
        print(summary[["mean", "sd"]])


if __name__ == "__main__":
    main()
