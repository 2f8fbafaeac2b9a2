"""
Inverse Probability Weighting — basic example
==============================================
Estimate the average effect of a binary exposure (quitting smoking) on
weight gain whilst adjusting for age and sex via stabilized IP weights.
"""

import numpy as np
import pandas as pd
from pseudopop import IPWEstimator, Term

RNG = np.random.default_rng(0)
N = 3_000

# ── 1. Simulate data ──────────────────────────────────────────────────────────
age   = RNG.uniform(25, 75, size=N)
sex   = RNG.binomial(1, 0.5, size=N)
logit = -3.0 + 0.05 * age + 0.4 * sex
qsmk  = RNG.binomial(1, 1 / (1 + np.exp(-logit))).astype(float)
wt82  = 3.0 * qsmk - 0.1 * age + 1.0 * sex + RNG.normal(scale=3.0, size=N)

df = pd.DataFrame({"age": age, "sex": sex, "qsmk": qsmk, "wt82": wt82})

# ── 2. Estimate via IPW ───────────────────────────────────────────────────────
result = IPWEstimator(
    exposure="qsmk", outcome="wt82", covariates=["age", Term("sex", "categorical")]
).fit(df)

print(result.summary())
print(result.weights.summary())
