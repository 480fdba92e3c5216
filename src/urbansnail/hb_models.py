"""
Hierarchical Bayesian regressions of snail traits on urbanization.

Each response (shell size, shell reflectance, parasite presence, movement
speed, food intake) is modelled with fixed effects for the standardized
covariates and random intercepts for sampling sites.  The likelihood
depends on the response:

- gaussian: continuous traits.  When a per-observation measurement SD is
  supplied (the propagated reflectance uncertainty), it is added to the
  residual variance, so noisier estimates weigh less.
- beta: food-intake proportions after the bounded-proportion transform.
- bernoulli: parasite presence.

Sampling is done by PyMC and summaries by arviz.  Fitted models are saved
to disk and reloaded when the saved trace is already present.
"""

import json
import warnings
from pathlib import Path
from typing import Any, Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from scipy.special import expit as inv_logit

# Optional imports for Bayesian modeling
try:
    import arviz as az
    import pymc as pm

    HAS_PYMC = True
except ImportError:
    HAS_PYMC = False
    warnings.warn("PyMC not installed. Bayesian modeling will not be available.")

from urbansnail.processing.processdata import StandardizationStats
from urbansnail.transforms import BoundedProportionTransform

FAMILIES = ("gaussian", "beta", "bernoulli")

COVARIATE_LABELS_DICT = {
    "urbanization_stzd": "Urbanization",
    "impervious_stzd": "Impervious surface",
    "temperature_stzd": "Temperature",
    "shell_diameter_stzd": "Shell diameter",
    "reflectance_stzd": "Shell reflectance",
}


# =============================================================================
# DESIGN MATRIX
# =============================================================================


def build_design_matrix(
    df: pd.DataFrame, predictors: list[str], add_intercept: bool = True
) -> tuple[np.ndarray, list[str]]:
    """
    Build design matrix for a regression.

    Parameters
    ----------
    df : pd.DataFrame
        Data with standardized predictors
    predictors : list of str
        Predictor column names (should be standardized versions)
    add_intercept : bool
        Whether to add intercept column

    Returns
    -------
    np.ndarray
        Design matrix X
    list
        Column names
    """
    missing = [p for p in predictors if p not in df.columns]
    if missing:
        raise ValueError(f"Predictor columns not found: {missing}")

    X = df[predictors].to_numpy(dtype=float)
    col_names = list(predictors)

    if add_intercept:
        X = np.column_stack([np.ones(len(df)), X])
        col_names = ["Intercept"] + col_names

    return X, col_names


# =============================================================================
# MODEL
# =============================================================================


class HierarchicalRegression:
    """
    Hierarchical Bayesian regression with site random intercepts.

    Attributes
    ----------
    family : str
        One of FAMILIES
    trace : arviz.InferenceData
        MCMC trace from model fitting
    model : pymc.Model
        PyMC model object
    summary : pd.DataFrame
        Summary statistics for model parameters
    site_map : dict
        Site id -> site index used at fit time
    proportion_transform : BoundedProportionTransform
        Transform the beta response was built with; its n is reused for
        back-transforming predictions
    standardization_stats : StandardizationStats
        Covariate statistics the design matrix was built with
    """

    def __init__(self, family: str = "gaussian"):
        if family not in FAMILIES:
            raise ValueError(f"Unknown family {family!r}; expected one of {FAMILIES}")
        self.family = family
        self.trace = None
        self.model = None
        self.summary = None
        self.col_names = None
        self.site_map = None
        self.n_observations = None
        self.n_sites = None
        self.proportion_transform = None
        self.standardization_stats = None
        self.sampler_settings = {}

    def fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        site_idx: np.ndarray,
        site_map: Optional[dict] = None,
        col_names: Optional[list[str]] = None,
        measurement_sd: Optional[np.ndarray] = None,
        n_samples: int = 1000,
        n_tune: int = 1000,
        n_chains: int = 4,
        target_accept: float = 0.95,
        max_treedepth: int = 15,
        random_seed: int = 42,
        cores: Optional[int] = None,
    ) -> "HierarchicalRegression":
        """
        Fit the model.

        Parameters
        ----------
        X : np.ndarray
            Design matrix (n_obs x n_predictors), intercept included
        y : np.ndarray
            Response. For the beta family it must lie strictly in (0, 1);
            for bernoulli it must be 0/1.
        site_idx : np.ndarray
            Dense 0-based site index of each observation
        site_map : dict, optional
            Site id -> site index, saved for consistent predictions
        col_names : list, optional
            Names of columns in X
        measurement_sd : np.ndarray, optional
            Known measurement SD per observation (gaussian family only)
        n_samples : int
            Number of posterior samples per chain
        n_tune : int
            Number of tuning samples
        n_chains : int
            Number of MCMC chains
        target_accept : float
            Target acceptance rate for NUTS sampler
        max_treedepth : int
            Maximum tree depth for NUTS sampler
        random_seed : int
            Random seed for reproducibility
        cores : int, optional
            Processes to sample chains in; PyMC decides if None

        Returns
        -------
        self
        """
        if not HAS_PYMC:
            raise ImportError(
                "\tPyMC is required for model fitting. Install with: pip install pymc"
            )

        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)
        site_idx = np.asarray(site_idx, dtype=int)
        self._check_response(y)
        if measurement_sd is not None:
            if self.family != "gaussian":
                raise ValueError("measurement_sd is only supported for the gaussian family")
            measurement_sd = np.asarray(measurement_sd, dtype=float)
            if measurement_sd.shape != y.shape or np.any(~np.isfinite(measurement_sd)):
                raise ValueError("measurement_sd must be finite and match y in length")

        n_obs, n_predictors = X.shape
        # sites without observations in this response still get an effect
        n_sites = len(site_map) if site_map is not None else int(site_idx.max()) + 1
        if site_idx.min() < 0 or site_idx.max() >= n_sites:
            raise ValueError(f"site_idx must lie in [0, {n_sites - 1}]")

        self.col_names = col_names
        self.site_map = site_map
        self.n_observations = n_obs
        self.n_sites = n_sites
        self.sampler_settings = {
            "n_samples": n_samples,
            "n_tune": n_tune,
            "n_chains": n_chains,
            "target_accept": target_accept,
            "max_treedepth": max_treedepth,
            "random_seed": random_seed,
        }

        with pm.Model() as self.model:
            # Fixed effects priors (weakly informative, SD 100)
            beta = pm.Normal("beta", mu=0, sigma=100, shape=n_predictors)

            # Site-level random effects - non-centered parameterization
            sigma_site = pm.HalfCauchy("sigma_site", beta=25)
            site_offset = pm.Normal("site_offset", mu=0, sigma=1, shape=n_sites)
            site_effect = pm.Deterministic("site_effect", sigma_site * site_offset)

            # Linear predictor
            eta = pm.math.dot(X, beta) + site_effect[site_idx]

            if self.family == "gaussian":
                sigma = pm.HalfCauchy("sigma", beta=25)
                if measurement_sd is not None:
                    total_sd = pm.math.sqrt(sigma**2 + measurement_sd**2)
                else:
                    total_sd = sigma
                pm.Normal("y_obs", mu=eta, sigma=total_sd, observed=y)

            elif self.family == "beta":
                # Precision parameter
                theta = pm.HalfCauchy("theta", beta=25)
                pi = pm.math.invlogit(eta)
                pm.Beta("y_obs", alpha=theta * pi, beta=theta * (1 - pi), observed=y)

            else:
                pm.Bernoulli("y_obs", logit_p=eta, observed=y)

            step = pm.NUTS(target_accept=target_accept, max_treedepth=max_treedepth)
            self.trace = pm.sample(
                n_samples,
                tune=n_tune,
                chains=n_chains,
                step=step,
                random_seed=random_seed,
                cores=cores,
                return_inferencedata=True,
            )

        self.summary = az.summary(self.trace)

        return self

    def _check_response(self, y: np.ndarray) -> None:
        if np.any(~np.isfinite(y)):
            raise ValueError("Response contains missing or non-finite values")
        if self.family == "beta" and np.any((y <= 0) | (y >= 1)):
            raise ValueError(
                "Beta response must lie strictly in (0, 1); apply the bounded-proportion transform first"
            )
        if self.family == "bernoulli" and not np.all(np.isin(y, (0, 1))):
            raise ValueError("Bernoulli response must be 0/1")

    def _posterior(self, name: str) -> np.ndarray:
        values = self.trace.posterior[name].values
        return values.reshape(-1, *values.shape[2:])

    def _draw_indices(self, n_draws: Optional[int], random_seed: int) -> np.ndarray:
        n_total = self.trace.posterior.sizes["chain"] * self.trace.posterior.sizes["draw"]
        if n_draws is None or n_draws >= n_total:
            return np.arange(n_total)
        rng = np.random.default_rng(random_seed)
        return rng.choice(n_total, size=n_draws, replace=False)

    def map_sites(self, sites) -> np.ndarray:
        """
        Site ids -> site indices from training, -1 for unseen sites.
        """
        if self.site_map is None:
            raise ValueError("Model has no site_map; pass site indices directly")
        site_idx = np.array([self.site_map.get(s, -1) for s in sites], dtype=int)
        unmapped = int(np.sum(site_idx == -1))
        if unmapped:
            warnings.warn(
                f"{unmapped} site(s) not found in training data; using population-level effect"
            )
        return site_idx

    def predict_expectation(
        self,
        X_new: np.ndarray,
        site_idx: Optional[np.ndarray] = None,
        n_draws: Optional[int] = None,
        random_seed: int = 42,
    ) -> np.ndarray:
        """
        Posterior draws of the expected response.

        NOTE: for the beta family the draws are on the TRANSFORMED scale.
        Use the model's proportion_transform.inverse() to go back to
        proportions.

        Parameters
        ----------
        X_new : np.ndarray
            New design matrix
        site_idx : np.ndarray, optional
            Site indices. None, or -1 entries, give population-level
            predictions (site effect of zero).
        n_draws : int, optional
            Number of posterior draws to use (all if None)
        random_seed : int
            Seed for draw selection

        Returns
        -------
        np.ndarray
            (n_draws, n_obs) expected values
        """
        if self.trace is None:
            raise ValueError("\tModel must be fit before prediction")

        X_new = np.asarray(X_new, dtype=float)
        beta_samples = self._posterior("beta")
        if X_new.shape[1] != beta_samples.shape[1]:
            raise ValueError(
                f"X_new has {X_new.shape[1]} columns, model has {beta_samples.shape[1]}"
            )
        site_samples = self._posterior("site_effect")

        idx = self._draw_indices(n_draws, random_seed)

        eta = beta_samples[idx] @ X_new.T
        if site_idx is not None:
            site_idx = np.asarray(site_idx, dtype=int)
            if np.any(site_idx >= site_samples.shape[1]):
                raise ValueError(
                    f"Site index out of range; model trained on {site_samples.shape[1]} sites"
                )
            known = site_idx >= 0
            eta[:, known] += site_samples[idx][:, site_idx[known]]

        if self.family == "gaussian":
            return eta
        return inv_logit(eta)

    def predict(
        self,
        X_new: np.ndarray,
        site_idx: Optional[np.ndarray] = None,
        n_samples: int = 1000,
        random_seed: int = 42,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Posterior predictive mean and standard deviation.

        NOTE: for the beta family predictions are in BETA-TRANSFORMED space.

        Returns
        -------
        np.ndarray
            Mean predictions
        np.ndarray
            Standard deviation of predictions
        """
        rng = np.random.default_rng(random_seed)
        mu = self.predict_expectation(
            X_new, site_idx, n_draws=n_samples, random_seed=random_seed
        )
        idx = self._draw_indices(n_samples, random_seed)

        if self.family == "gaussian":
            sigma = self._posterior("sigma")[idx][:, None]
            predictions = rng.normal(mu, sigma)
        elif self.family == "beta":
            theta = self._posterior("theta")[idx][:, None]
            predictions = rng.beta(theta * mu, theta * (1 - mu))
        else:
            predictions = rng.binomial(1, mu)

        return predictions.mean(axis=0), predictions.std(axis=0)

    def get_coefficient_summary(self, hdi_prob: float = 0.94) -> pd.DataFrame:
        """
        Get summary statistics for regression coefficients.

        Returns
        -------
        pd.DataFrame
            Summary with mean, sd and highest-density interval
        """
        if self.trace is None:
            raise ValueError("\tModel must be fit first")

        beta_summary = az.summary(self.trace, var_names=["beta"], hdi_prob=hdi_prob)

        if self.col_names is not None:
            # Rename index to use column names
            new_index = []
            for idx in beta_summary.index:
                i = int(idx.split("[")[1].split("]")[0])
                new_index.append(self.col_names[i])
            beta_summary.index = new_index

        return beta_summary

    def plot_coefficients(
        self, output_path: Optional[Path] = None, figsize: tuple[int, int] = (8, 5)
    ) -> plt.Figure:
        """
        Create coefficient plot with credible intervals.

        Parameters
        ----------
        output_path : Path, optional
            Path to save figure
        figsize : tuple
            Figure size

        Returns
        -------
        matplotlib.figure.Figure
        """
        coef_summary = self.get_coefficient_summary()
        lower_col, upper_col = [c for c in coef_summary.columns if c.startswith("hdi_")]

        # Exclude intercept for plotting
        if "Intercept" in coef_summary.index:
            coef_summary = coef_summary.drop("Intercept")

        fig, ax = plt.subplots(figsize=figsize)
        coef_summary = coef_summary.sort_values("mean")
        y_pos = np.arange(len(coef_summary))

        # Determine colors based on whether the interval excludes zero
        colors = []
        for _, row in coef_summary.iterrows():
            if row[lower_col] > 0:
                colors.append("blue")
            elif row[upper_col] < 0:
                colors.append("red")
            else:
                colors.append("gray")

        ax.hlines(
            y_pos,
            coef_summary[lower_col],
            coef_summary[upper_col],
            color="black",
            linewidth=1,
        )
        for color, label in [
            ("blue", "Positive"),
            ("red", "Negative"),
            ("gray", "Interval includes zero"),
        ]:
            ax.scatter([], [], c=color, s=100, edgecolor="black", label=label)

        ax.scatter(
            coef_summary["mean"], y_pos, c=colors, s=100, zorder=5, edgecolor="black"
        )
        ax.axvline(x=0, color="gray", linestyle="--", linewidth=1)

        ax.set_yticks(y_pos)
        ax.set_yticklabels(
            [COVARIATE_LABELS_DICT.get(ind, ind) for ind in coef_summary.index]
        )
        ax.set_xlabel(f"Estimated coefficient ({self.family})")
        ax.legend(loc="lower right")
        ax.grid(which="major", axis="x", linestyle="--", linewidth=0.5)
        plt.tight_layout()

        if output_path:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            fig.savefig(output_path, dpi=300, bbox_inches="tight")

        return fig

    def save_diagnostics(self, output_path: Path) -> None:
        """
        Save trace, posterior and ESS plots for the fixed effects.

        Parameters
        ----------
        output_path : Path
            Directory to save diagnostics in
        """
        output_path.mkdir(parents=True, exist_ok=True)
        print(f"Saving diagnostics to {output_path}")

        print("\t[DIAGNOSTIC 1/3] Plotting trace...")
        az.plot_trace(self.trace, var_names=["beta", "sigma_site"])
        plt.savefig(output_path / "trace.png")
        plt.close("all")

        print("\t[DIAGNOSTIC 2/3] Plotting posterior...")
        az.plot_posterior(self.trace, var_names=["beta"])
        plt.savefig(output_path / "posterior.png")
        plt.close("all")

        print("\t[DIAGNOSTIC 3/3] Plotting ESS...")
        az.plot_ess(self.trace, var_names=["beta"])
        plt.savefig(output_path / "ess.png")
        plt.close("all")

    def save_model(self, output_path: Path) -> None:
        """
        Save the trained model to disk.

        Parameters
        ----------
        output_path : Path
            Directory path to save model files
        """
        if self.trace is None:
            raise ValueError("Model must be fit before saving")

        output_path = Path(output_path)
        output_path.mkdir(parents=True, exist_ok=True)

        print(f"Saving model to {output_path}")

        trace_path = output_path / "model_trace.nc"
        print(f"\tSaving trace to {trace_path}")
        self.trace.to_netcdf(trace_path)

        metadata = {
            "family": self.family,
            "col_names": self.col_names,
            "n_observations": self.n_observations,
            "n_sites": self.n_sites,
            # keys as strings for JSON
            "site_map": {str(k): int(v) for k, v in self.site_map.items()}
            if self.site_map is not None
            else None,
            "proportion_n": self.proportion_transform.n
            if self.proportion_transform is not None
            else None,
            "standardization_stats": self.standardization_stats.to_dict()
            if self.standardization_stats is not None
            else None,
            **self.sampler_settings,
        }

        metadata_path = output_path / "model_metadata.json"
        print(f"\tSaving metadata to {metadata_path}")
        with open(metadata_path, "w") as f:
            json.dump(metadata, f, indent=2)

        print("Model saved successfully")

    @classmethod
    def load_model(cls, model_path: Path) -> "HierarchicalRegression":
        """
        Load a trained model from disk.

        Parameters
        ----------
        model_path : Path
            Directory path containing model files

        Returns
        -------
        HierarchicalRegression
            Loaded model instance
        """
        if not HAS_PYMC:
            raise ImportError(
                "\tarviz is required to load a model. Install with: pip install pymc"
            )

        model_path = Path(model_path)
        trace_path = model_path / "model_trace.nc"
        metadata_path = model_path / "model_metadata.json"

        if not trace_path.exists():
            raise FileNotFoundError(f"Trace file not found: {trace_path}")
        if not metadata_path.exists():
            raise FileNotFoundError(f"Metadata file not found: {metadata_path}")

        print(f"Loading model from {model_path}")

        with open(metadata_path, "r") as f:
            metadata = json.load(f)

        model = cls(family=metadata["family"])
        model.trace = az.from_netcdf(trace_path)
        model.col_names = metadata.get("col_names")
        model.n_observations = metadata.get("n_observations")
        model.n_sites = metadata.get("n_sites")
        model.site_map = metadata.get("site_map")
        model.sampler_settings = {
            k: metadata[k]
            for k in (
                "n_samples",
                "n_tune",
                "n_chains",
                "target_accept",
                "max_treedepth",
                "random_seed",
            )
            if k in metadata
        }
        if metadata.get("proportion_n") is not None:
            model.proportion_transform = BoundedProportionTransform(
                int(metadata["proportion_n"])
            )
        if metadata.get("standardization_stats") is not None:
            model.standardization_stats = StandardizationStats(
                {k: tuple(v) for k, v in metadata["standardization_stats"].items()}
            )

        print("Model loaded successfully")
        return model


def _same_stats(saved: StandardizationStats, current: StandardizationStats) -> bool:
    saved, current = saved.to_dict(), current.to_dict()
    if saved.keys() != current.keys():
        return False
    return all(np.allclose(saved[k], current[k]) for k in saved)


def fit_or_load(
    model_path: Path,
    family: str,
    refit: bool = False,
    **fit_kwargs: Any,
) -> HierarchicalRegression:
    """
    Load a saved model if its trace exists, otherwise fit and save it.

    Parameters
    ----------
    model_path : Path
        Directory of the saved model
    family : str
        Likelihood family
    refit : bool
        Ignore any saved model
    **fit_kwargs
        Passed to HierarchicalRegression.fit. May also contain
        proportion_transform and standardization_stats, which are stored on
        the model before saving.

    Returns
    -------
    HierarchicalRegression

    Raises
    ------
    ValueError
        If the saved model has another family, or was fitted with a different
        proportion n or different standardization statistics, or if a beta
        model comes without its proportion transform
    """
    model_path = Path(model_path)
    proportion_transform = fit_kwargs.pop("proportion_transform", None)
    standardization_stats = fit_kwargs.pop("standardization_stats", None)

    if not refit and (model_path / "model_trace.nc").exists():
        model = HierarchicalRegression.load_model(model_path)
        if model.family != family:
            raise ValueError(
                f"Saved model at {model_path} is {model.family!r}, requested {family!r}"
            )
        if family == "beta" and model.proportion_transform is None:
            raise ValueError(
                f"Saved beta model at {model_path} has no proportion transform; refit the model"
            )
        if (
            proportion_transform is not None
            and model.proportion_transform != proportion_transform
        ):
            raise ValueError(
                f"Saved model was fitted with n={model.proportion_transform.n}, "
                f"current data give n={proportion_transform.n}; refit the model"
            )
        if (
            standardization_stats is not None
            and model.standardization_stats is not None
            and not _same_stats(model.standardization_stats, standardization_stats)
        ):
            raise ValueError(
                f"Saved model was fitted with standardization statistics "
                f"{model.standardization_stats.to_dict()}, current data give "
                f"{standardization_stats.to_dict()}; refit the model"
            )
        return model

    if family == "beta" and proportion_transform is None:
        raise ValueError("A beta model needs the proportion_transform its response was built with")

    model = HierarchicalRegression(family=family)
    model.proportion_transform = proportion_transform
    model.standardization_stats = standardization_stats
    model.fit(**fit_kwargs)
    model.save_model(model_path)
    return model
