"""
Inverse Probability Weighting — continuous exposure
====================================================
Estimate the dose-response slope of a continuous exposure (change in
smoking intensity) using normal-density weights, and compare stabilized
with unstabilized weights.
"""

import numpy as np
import pandas as pd
from pseudopop import IPWEstimator, Term

RNG = np.random.default_rng(2)
N = 3_000
TRUE_SLOPE = -0.3

# ── 1. Simulate data ──────────────────────────────────────────────────────────
age    = RNG.uniform(25, 75, size=N)
smoke  = RNG.normal(20, 8, size=N)
change = -0.2 * smoke + 0.1 * age + RNG.normal(scale=4.0, size=N)
wt82   = TRUE_SLOPE * change + 0.05 * smoke - 0.02 * age + RNG.normal(size=N)

df = pd.DataFrame({"age": age, "smoke": smoke, "change": change, "wt82": wt82})

# ── 2. Stabilized vs unstabilized weights ─────────────────────────────────────
covs   = ["age", Term("age", "square"), "smoke"]
stab   = IPWEstimator("change", "wt82", covariates=covs).fit(df)
unstab = IPWEstimator("change", "wt82", covariates=covs, stabilize=False).fit(df)

print(stab.summary())
print(f"True slope                 : {TRUE_SLOPE:.4f}")
print(f"Stabilized weight variance : {stab.weights.variance:.4g}")
print(f"Unstabilized variance      : {unstab.weights.variance:.4g}")
