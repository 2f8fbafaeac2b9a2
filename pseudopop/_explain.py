"""
Narrative explanation of an IPW result.

``explain_ipw`` takes a fitted ``IPWResult`` and returns a multi-line report
in plain language; ``IPWResult.executive_summary()`` calls it.
"""
from __future__ import annotations

_SEP = "━" * 66


def _fmt_p(p: float) -> str:
    if p < 0.001:
        return "p < 0.001"
    return f"p = {p:.3f}"


def _fmt_ci(lo: float, hi: float) -> str:
    return f"[{lo:.4f}, {hi:.4f}]"


def _list_vars(names: list[str]) -> str:
    if len(names) == 1:
        return names[0]
    return ", ".join(names[:-1]) + f" and {names[-1]}"


def _effect_sentence(result) -> str:
    T, Y = result.exposure, result.outcome
    direction = "increase" if result.effect >= 0 else "decrease"
    if result.exposure_type == "binary":
        return (
            f"Had everyone received {T}, mean {Y} is estimated to {direction} by "
            f"{abs(result.effect):.4f} compared to no one receiving it"
        )
    return (
        f"A one-unit increase in {T} is estimated to cause an {direction} of "
        f"{abs(result.effect):.4f} in mean {Y}"
    )


def _method_block(result) -> str:
    T, Y = result.exposure, result.outcome
    covs = [t.column for t in result.covariates]
    w = result.weights
    model = "logistic" if result.exposure_type == "binary" else "linear"
    given = _list_vars(covs) if covs else "no covariates"

    text = (
        f"Inverse probability weighting reweights each observation by the inverse "
        f"of the probability (or density) of the exposure it actually received, "
        f"estimated from a {model} regression of {T} on {given}. In the weighted "
        f"pseudo-population {T} is independent of the measured covariates, so a "
        f"regression of {Y} on {T} alone estimates the marginal causal effect."
    )
    if w.stabilized:
        text += (
            " Weights are stabilized by the marginal distribution of the exposure, "
            "which keeps their mean near one and reduces their variance."
        )
    if w.truncated_at is not None:
        text += (
            f" Weights were truncated at the {100 - w.truncated_at:g}th and "
            f"{w.truncated_at:g}th percentiles."
        )
    return "\n".join(["METHOD", text])


def _interval_block(result) -> str:
    mode = result.interval_mode
    if mode == "naive":
        text = (
            "The confidence interval uses the model-based standard error of the "
            "weighted regression. It treats the weights as known and typically "
            "understates uncertainty."
        )
    elif mode == "robust":
        text = (
            "The confidence interval uses an HC2 sandwich standard error, which "
            "accounts for the heteroskedasticity weighting induces but not for "
            "uncertainty in the estimated exposure model."
        )
    else:
        b = result.bootstrap
        method = "studentized (bootstrap-t)" if b.interval_method == "t" else "percentile"
        text = (
            f"The confidence interval comes from {b.n_used} bootstrap replicates "
            f"({method}). Each replicate refits the exposure model, the weights and "
            f"the outcome model, so the interval reflects uncertainty in all three."
        )
        if b.n_failed:
            text += f" {b.n_failed} replicate(s) failed to fit and were excluded."
    return "\n".join(["UNCERTAINTY", text])


def _assumptions_block(assumptions: list) -> str:
    n = len(assumptions)
    n_u = sum(1 for a in assumptions if not a.testable)
    lines = [
        "ASSUMPTIONS",
        f"{n_u} of the {n} required assumptions cannot be checked in the data and "
        f"must be justified on substantive grounds.",
        "",
    ]
    for a in assumptions:
        lines.append(f"  {a.tag}  {a.name}")
    return "\n".join(lines)


def explain_ipw(result) -> str:
    T, Y = result.exposure, result.outcome
    lo, hi = result.conf_int
    bias = result.unadjusted_effect - result.effect
    level = 100 * (1 - result.alpha)

    result_lines = [
        "RESULT",
        f"{_effect_sentence(result)} "
        f"(estimate = {result.effect:.4f}, {level:g}% CI: {_fmt_ci(lo, hi)}, "
        f"SE = {result.std_err:.4f}, {_fmt_p(result.pvalue)}).",
    ]
    if result.covariates:
        bias_dir = "upward" if bias > 0 else "downward"
        result_lines += [
            "",
            f"The unweighted estimate was {result.unadjusted_effect:.4f}. The "
            f"difference of {abs(bias):.4f} is the {bias_dir} confounding bias "
            f"removed by weighting.",
        ]

    report = result.diagnose()
    diag_lines = ["WEIGHT DIAGNOSTICS"]
    diag_lines += [f"  [{c.status}]  {c.name}: {c.detail}" for c in report.checks]

    blocks = [
        "\n".join([_SEP, "Executive Summary — Inverse Probability Weighting",
                   f"  {T} → {Y}  |  exposure: {result.exposure_type}", _SEP]),
        _method_block(result),
        _assumptions_block(result.assumptions),
        "\n".join(result_lines),
        _interval_block(result),
        "\n".join(diag_lines),
        "\n".join([
            "CAVEATS",
            f"Weighting only balances the covariates in the exposure model. "
            f"Unmeasured common causes of {T} and {Y} will still bias the estimate, "
            f"and a misspecified exposure model leaves residual confounding. "
            f"Large weights signal near-violations of positivity and make the "
            f"estimate rest on few observations.",
        ]),
        _SEP,
    ]
    return "\n\n".join(blocks)
