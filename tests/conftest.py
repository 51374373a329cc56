"""
Shared pytest fixtures for survstrat.

Data Generation Fixtures:
├── survival_adata (100 samples x 20 genes with OS_time / OS_event / age)
├── survival_scores (two signature score columns aligned to survival_adata)
└── ordinal_adata (10 samples with expression 1..10 for exact bucket checks)
"""

import logging

import anndata as ad
import numpy as np
import pandas as pd
import pytest

# Keep lifelines / anndata chatter out of test output
logging.getLogger("anndata").setLevel(logging.ERROR)


@pytest.fixture
def survival_adata():
    """Synthetic cohort where GENE_0 expression tracks survival time."""
    np.random.seed(42)

    n_samples = 100
    n_genes = 20

    X = np.random.randn(n_samples, n_genes) * 2 + 8
    risk = np.random.randn(n_samples)
    X[:, 0] = -risk * 3 + 8

    base_time = np.random.exponential(scale=600, size=n_samples)
    os_time = np.clip(base_time * np.exp(risk * 0.8), 5, 3000)
    censor_time = np.random.uniform(200, 2500, n_samples)
    os_event = (os_time <= censor_time).astype(int)
    os_time = np.minimum(os_time, censor_time)

    obs = pd.DataFrame(
        {
            "OS_time": os_time,
            "OS_event": os_event,
            "vital_status": np.where(os_event == 1, "Dead", "Alive"),
            "age": np.random.randint(30, 80, n_samples).astype(float),
            "stage": np.random.choice(["I", "II", "III"], n_samples),
        },
        index=[f"sample_{i}" for i in range(n_samples)],
    )
    var = pd.DataFrame(index=[f"GENE_{i}" for i in range(n_genes)])
    return ad.AnnData(X=X, obs=obs, var=var)


@pytest.fixture
def survival_scores(survival_adata):
    """Two score columns indexed by sample id."""
    rng = np.random.default_rng(7)
    n = survival_adata.n_obs
    return pd.DataFrame(
        {
            "NK_score": rng.normal(0.5, 0.1, n),
            "TGFb_score": rng.normal(0.4, 0.15, n),
        },
        index=survival_adata.obs_names,
    )


@pytest.fixture
def ordinal_adata():
    """Ten samples with expression 1..10, alternating events."""
    obs = pd.DataFrame(
        {
            "OS_time": [float(t) for t in range(10, 110, 10)],
            "OS_event": [1, 0] * 5,
            "age": [float(a) for a in range(40, 50)],
        },
        index=[f"s{i}" for i in range(1, 11)],
    )
    X = np.arange(1, 11, dtype=float).reshape(-1, 1)
    return ad.AnnData(X=X, obs=obs, var=pd.DataFrame(index=["GENE_A"]))
