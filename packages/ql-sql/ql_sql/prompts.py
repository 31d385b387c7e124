"""Prompt construction for the reasoning model.

One prompt per request, chosen from four variants:

    connection present | standard engine -> SQL + plan + table metadata
    connection present | MPP engine      -> same, plus data-distribution guidance
    no connection      | standard engine -> SQL only, with a no-connection notice
    no connection      | MPP engine      -> SQL only, notice + distribution guidance

The reply format (four headed sections) is shared with the response parser
through the SECTION_* constants below.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from ql_shared.config import DEFAULT_SYSTEM_PROMPT

from .schemas import PlanMetrics, TableMetadata

SYSTEM_PROMPT = DEFAULT_SYSTEM_PROMPT

# Reply section titles, in the order the model must produce them
SECTION_OPTIMIZED_QUERY = "Optimized query"
SECTION_RATIONALE = "Rationale"
SECTION_PERFORMANCE_IMPACT = "Performance impact"
SECTION_POTENTIAL_RISKS = "Potential risks"
RESPONSE_SECTIONS = (
    SECTION_OPTIMIZED_QUERY,
    SECTION_RATIONALE,
    SECTION_PERFORMANCE_IMPACT,
    SECTION_POTENTIAL_RISKS,
)

NO_CONNECTION_NOTICE = (
    "No database connection is available for this request: the execution "
    "plan and table metadata are unknown. Base the rewrite on the SQL text "
    "alone and state your assumptions about data volumes in the rationale."
)

STANDARD_ENGINE = "PostgreSQL"
MPP_ENGINE = "Greenplum (massively parallel, shared-nothing)"

MPP_GUIDANCE = """\
The target is a massively parallel engine. Data is spread across segments by
a distribution key, so in addition to the usual rewrites consider:
- joins on distribution keys avoid Redistribute and Broadcast Motion nodes;
- filtering and pre-aggregating before a join shrinks the data that moves;
- a Gather Motion close to the top of the plan should carry as few rows as possible;
- correlated subqueries are especially costly when they force repeated motions."""

OUTPUT_FORMAT = f"""\
Answer with exactly these four Markdown sections, in this order:

### {SECTION_OPTIMIZED_QUERY}
```sql
<the complete rewritten statement; repeat the original if no rewrite helps>
```

### {SECTION_RATIONALE}
<what changed and why it is faster>

### {SECTION_PERFORMANCE_IMPACT}
<expected effect on execution time, cost and rows processed>

### {SECTION_POTENTIAL_RISKS}
<any case where the result could differ, or where the rewrite could be slower>"""


def _format_number(value: Optional[float]) -> str:
    if value is None:
        return "unknown"
    if isinstance(value, float) and not value.is_integer():
        return f"{value:,.2f}"
    return f"{int(value):,}"


def format_plan(plan: Optional[PlanMetrics]) -> str:
    """Render plan metrics followed by the raw EXPLAIN ANALYZE output."""
    if plan is None:
        return "Execution plan: not available."

    lines = [
        "Execution plan summary:",
        f"- execution time: {plan.execution_time_ms:.3f} ms",
        f"- planning time: {_ms(plan.planning_time_ms)}",
        f"- total cost: {plan.total_cost:.2f}",
        f"- estimated rows: {plan.row_estimate:,}",
        f"- row width: {plan.row_width} bytes",
    ]
    if plan.operators:
        lines.append("- operators: " + " -> ".join(op.value for op in plan.operators))
    lines.extend(["", "EXPLAIN ANALYZE output:", "```", plan.raw_plan_text.rstrip(), "```"])
    return "\n".join(lines)


def _ms(value: Optional[float]) -> str:
    return "not reported" if value is None else f"{value:.3f} ms"


def format_table(metadata: TableMetadata) -> str:
    stats = metadata.statistics
    header = (
        f"Table {metadata.table_name}: "
        f"~{_format_number(stats.estimated_rows)} rows, "
        f"{_format_number(stats.page_count)} pages, "
        f"{_format_number(stats.total_size_bytes)} bytes"
    )
    lines = [header, "  Columns:"]
    for column in metadata.columns:
        line = f"    - {column.name} {column.type}"
        if not column.nullable:
            line += " NOT NULL"
        if column.default is not None:
            line += f" DEFAULT {column.default}"
        column_stats = stats.per_column.get(column.name)
        if column_stats is not None:
            details = []
            if column_stats.distinct_count is not None:
                details.append(f"distinct~{column_stats.distinct_count:,}")
            if column_stats.null_fraction is not None:
                details.append(f"nulls {column_stats.null_fraction:.1%}")
            if details:
                line += f" [{', '.join(details)}]"
        lines.append(line)

    if metadata.indexes:
        lines.append("  Indexes:")
        for index in metadata.indexes:
            unique = " UNIQUE" if index.unique else ""
            lines.append(f"    - {index.name} ({', '.join(index.columns)}){unique}")
    else:
        lines.append("  Indexes: none")
    return "\n".join(lines)


def format_metadata(metadata: Optional[Dict[str, TableMetadata]]) -> str:
    """Render every table, sorted by name."""
    if not metadata:
        return "Table metadata: not available."
    blocks = [format_table(metadata[name]) for name in sorted(metadata)]
    return "Table metadata:\n\n" + "\n\n".join(blocks)


def build_prompt(
    sql_text: str,
    plan: Optional[PlanMetrics] = None,
    metadata: Optional[Dict[str, TableMetadata]] = None,
    is_mpp: bool = False,
    has_connection: bool = False,
) -> str:
    """Build the user prompt for one optimization request.

    Args:
        sql_text: The statement to optimize, as submitted
        plan: Metrics of the original statement, if measured
        metadata: Catalog metadata keyed by table name, if collected
        is_mpp: Target is a Greenplum-style MPP engine
        has_connection: A target database was available for this request

    Returns:
        Prompt text; identical inputs always give identical output.
    """
    engine = MPP_ENGINE if is_mpp else STANDARD_ENGINE
    sections: List[str] = [
        f"Optimize the following SQL statement for {engine}. "
        "The rewrite must return exactly the same rows as the original.",
        f"```sql\n{sql_text.strip()}\n```",
    ]

    if has_connection:
        sections.append(format_plan(plan))
        sections.append(format_metadata(metadata))
    else:
        sections.append(NO_CONNECTION_NOTICE)

    if is_mpp:
        sections.append(MPP_GUIDANCE)

    sections.append(OUTPUT_FORMAT)
    return "\n\n".join(sections) + "\n"
