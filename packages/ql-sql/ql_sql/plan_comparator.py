"""Before/after comparison of measured plans."""

from typing import Optional, Sequence

from .schemas import OperatorKind, PlanMetrics

CANNOT_COMPARE = "Cannot compare plans: the original or the optimized plan was not measured."
UNDEFINED = "undefined"


def percent_change(before: Optional[float], after: Optional[float]) -> str:
    """Signed percent change, ``"+12.5%"`` style; undefined for a zero or missing baseline."""
    if before is None or after is None or before == 0:
        return UNDEFINED
    return f"{(after - before) / before * 100:+.1f}%"


def _fmt_ms(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.3f} ms"


def _fmt_cost(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.2f}"


def _fmt_int(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{int(value):,}"


def _fmt_operators(operators: Sequence[OperatorKind]) -> str:
    return " -> ".join(op.value for op in operators) if operators else "(none)"


def compare_plans(before: Optional[PlanMetrics], after: Optional[PlanMetrics]) -> str:
    """Describe how the optimized plan differs from the original one.

    Returns CANNOT_COMPARE when either plan is absent.
    """
    if before is None or after is None:
        return CANNOT_COMPARE

    rows = [
        ("Execution time", before.execution_time_ms, after.execution_time_ms, _fmt_ms),
        ("Planning time", before.planning_time_ms, after.planning_time_ms, _fmt_ms),
        ("Total cost", before.total_cost, after.total_cost, _fmt_cost),
        ("Row estimate", before.row_estimate, after.row_estimate, _fmt_int),
        ("Row width", before.row_width, after.row_width, _fmt_int),
    ]

    lines = []
    for label, old, new, fmt in rows:
        lines.append(f"{label}: {fmt(old)} -> {fmt(new)} ({percent_change(old, new)})")

    lines.append(f"Operators before: {_fmt_operators(before.operators)}")
    lines.append(f"Operators after: {_fmt_operators(after.operators)}")
    return "\n".join(lines)
