"""
Inverse Probability Weighting — bootstrap intervals
====================================================
Robust standard errors ignore that the weights were estimated. The
nonparametric bootstrap refits the exposure model, the weights and the
outcome model on every resample, so its interval covers all three.
"""

import numpy as np
import pandas as pd
from pseudopop import BootstrapConfig, IPWEstimator

RNG = np.random.default_rng(3)
N = 2_000

# ── 1. Simulate data ──────────────────────────────────────────────────────────
x = RNG.normal(size=N)
a = RNG.binomial(1, 1 / (1 + np.exp(-0.8 * x))).astype(float)
y = 1.0 * a + x + RNG.normal(size=N)

df = pd.DataFrame({"x": x, "a": a, "y": y})

# ── 2. Robust vs bootstrap intervals ──────────────────────────────────────────
robust = IPWEstimator("a", "y", covariates=["x"]).fit(df)

config = BootstrapConfig(replicate_count=500, interval_method="t", seed=42)
boot = IPWEstimator("a", "y", covariates=["x"], interval="bootstrap", config=config).fit(df)

print(robust.summary())
print(boot.summary())
print(boot.bootstrap.summary())

# ── 3. Percentile interval from the same replicates ───────────────────────────
lo, hi = boot.bootstrap.interval(method="percentile")
print(f"Percentile 95% CI : [{lo:.4f}, {hi:.4f}]")
