"""SQL syntax validation and table-reference extraction (sqlglot)."""

import logging
from typing import List, Union

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from ql_shared.errors import InvalidSyntax

logger = logging.getLogger(__name__)

# Greenplum-style MPP engines speak the PostgreSQL dialect as well
DEFAULT_DIALECT = "postgres"

# Statements the engine accepts for optimization
_STATEMENT_TYPES = (exp.Query, exp.Insert, exp.Update, exp.Delete, exp.Merge)


def validate_sql(sql: str, dialect: str = DEFAULT_DIALECT) -> exp.Expression:
    """Parse ``sql`` and return its single statement.

    Args:
        sql: Raw SQL text as submitted
        dialect: sqlglot dialect name

    Returns:
        The parsed statement

    Raises:
        InvalidSyntax: Blank input, parse errors, more than one statement,
            or text that does not parse to a statement.
    """
    if not sql or not sql.strip():
        raise InvalidSyntax("SQL text is empty")

    try:
        statements = [s for s in sqlglot.parse(sql, read=dialect) if s is not None]
    except SqlglotError as e:
        logger.info("Rejected SQL with syntax error: %s", e)
        raise InvalidSyntax(f"Invalid SQL: {e}") from e

    if not statements:
        raise InvalidSyntax("No SQL statement found")
    if len(statements) > 1:
        raise InvalidSyntax(f"Expected a single SQL statement, got {len(statements)}")

    statement = statements[0]
    if not isinstance(statement, _STATEMENT_TYPES):
        raise InvalidSyntax(f"Unsupported or unrecognized statement: {statement.key.upper()}")
    return statement


def is_query(statement: exp.Expression) -> bool:
    """True for read-only statements (SELECT, set operations, CTE queries)."""
    return isinstance(statement, exp.Query)


def extract_tables(statement: Union[exp.Expression, str], dialect: str = DEFAULT_DIALECT) -> List[str]:
    """Return the base tables a query reads from.

    Covers FROM and JOIN clauses at every nesting level: derived tables,
    subqueries, CTE bodies and every branch of UNION / INTERSECT / EXCEPT.
    CTE names and table functions are not base tables. Names keep the case
    they were written in and are schema-qualified when the query qualifies
    them; duplicates are dropped, first occurrence wins.

    Statements that are not queries, or text that does not parse, give an
    empty list.
    """
    if isinstance(statement, str):
        try:
            statement = validate_sql(statement, dialect=dialect)
        except InvalidSyntax:
            return []

    if not is_query(statement):
        return []

    cte_names = {cte.alias_or_name for cte in statement.find_all(exp.CTE)}

    tables: dict[str, None] = {}
    # Depth-first so names come out in the order they are written
    for table in statement.find_all(exp.Table, bfs=False):
        if not isinstance(table.this, exp.Identifier):
            continue  # e.g. FROM generate_series(...)
        name = table.name
        if not name:
            continue
        if not table.db and name in cte_names:
            continue
        qualified = f"{table.db}.{name}" if table.db else name
        tables.setdefault(qualified, None)

    return list(tables)
