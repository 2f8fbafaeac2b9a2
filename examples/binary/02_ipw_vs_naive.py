"""
Inverse Probability Weighting — bias correction
================================================
Shows how weighting removes confounding bias by comparing the IPW
estimate against a naive (unweighted) difference in means.
"""

import numpy as np
import pandas as pd
from pseudopop import IPWEstimator

RNG = np.random.default_rng(1)
N = 5_000
TRUE_ATE = 2.0

# ── 1. Simulate data with strong confounding ──────────────────────────────────
# ability raises both the chance of education AND income directly,
# so a naive comparison over-estimates the effect of education.
ability   = RNG.normal(size=N)
p         = 1 / (1 + np.exp(-1.2 * ability))
education = RNG.binomial(1, p).astype(float)
income    = TRUE_ATE * education + 1.5 * ability + RNG.normal(size=N)

df = pd.DataFrame({"ability": ability, "education": education, "income": income})

# ── 2. Estimate ───────────────────────────────────────────────────────────────
result = IPWEstimator("education", "income", covariates=["ability"]).fit(df)

# ── 3. Compare estimates ──────────────────────────────────────────────────────
print(result.summary())
print(f"True ATE            : {TRUE_ATE:.4f}")
print(f"IPW estimate        : {result.effect:.4f}  (bias: {result.effect - TRUE_ATE:+.4f})")
print(f"Unadjusted estimate : {result.unadjusted_effect:.4f}  (bias: {result.unadjusted_effect - TRUE_ATE:+.4f})")

# ── 4. Check the weights ──────────────────────────────────────────────────────
print(result.diagnose().summary())
print(result.executive_summary())
