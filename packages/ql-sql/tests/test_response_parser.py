"""Tests for splitting model replies into optimization fragments."""

from ql_sql.response_parser import (
    OPTIMIZED_QUERY,
    RATIONALE,
    ResponseSectionParser,
    SectionMarker,
)
from ql_sql.schemas import NO_DATA

OPTIMIZED_SQL = """SELECT o.id, c.name
FROM orders o
JOIN customers c ON c.id = o.customer_id
WHERE o.status = 'shipped'"""

MARKDOWN_REPLY = f"""Here is my analysis.

### Optimized query
```sql
{OPTIMIZED_SQL}
```

### Rationale
The filter is pushed below the join.

### Performance impact
Roughly 5x faster on the sample plan.

### Potential risks
None if status is never NULL.
"""


class TestResponseSectionParser:

    def test_markdown_headings(self):
        fragment = ResponseSectionParser().parse(MARKDOWN_REPLY)
        assert fragment.optimized_sql == OPTIMIZED_SQL
        assert fragment.rationale == "The filter is pushed below the join."
        assert fragment.performance_impact == "Roughly 5x faster on the sample plan."
        assert fragment.potential_risks == "None if status is never NULL."

    def test_sql_block_extracted_byte_for_byte(self):
        sql = "SELECT  a,\n\tb  -- keep   spacing\nFROM t"
        reply = f"### Optimized query\n```sql\n\n{sql}\n\n```\n### Rationale\nx\n"
        assert ResponseSectionParser().parse(reply).optimized_sql == sql

    def test_bold_and_numbered_headings(self):
        reply = (
            "**1. Optimized Query:**\n"
            "```\nSELECT 1\n```\n"
            "**Rationale:** Constant folding.\n"
            "3. Impact:\n"
            "Negligible.\n"
            "4) RISKS\n"
            "None.\n"
        )
        fragment = ResponseSectionParser().parse(reply)
        assert fragment.optimized_sql == "SELECT 1"
        assert fragment.rationale == "Constant folding."
        assert fragment.performance_impact == "Negligible."
        assert fragment.potential_risks == "None."

    def test_headings_case_insensitive(self):
        reply = "## OPTIMIZED SQL\n```sql\nSELECT 2\n```\n## rationale\nok\n"
        fragment = ResponseSectionParser().parse(reply)
        assert fragment.optimized_sql == "SELECT 2"
        assert fragment.rationale == "ok"

    def test_falls_back_to_first_code_block(self):
        reply = "I would write it like this:\n\n```sql\nSELECT 3\n```\n\n### Rationale\nShorter.\n"
        fragment = ResponseSectionParser().parse(reply)
        assert fragment.optimized_sql == "SELECT 3"
        assert fragment.rationale == "Shorter."

    def test_missing_sections_become_no_data(self):
        fragment = ResponseSectionParser().parse("I cannot help with that.")
        assert fragment.optimized_sql == NO_DATA
        assert fragment.rationale == NO_DATA
        assert fragment.performance_impact == NO_DATA
        assert fragment.potential_risks == NO_DATA
        assert fragment.has_sql is False

    def test_heading_inside_code_block_ignored(self):
        reply = "### Optimized query\n```sql\n# Rationale\nSELECT 4\n```\n### Rationale\nreal one\n"
        fragment = ResponseSectionParser().parse(reply)
        assert fragment.optimized_sql == "# Rationale\nSELECT 4"
        assert fragment.rationale == "real one"

    def test_unknown_markdown_heading_ends_section(self):
        reply = MARKDOWN_REPLY + "\n### Notes\nUnrelated text.\n"
        fragment = ResponseSectionParser().parse(reply)
        assert fragment.potential_risks == "None if status is never NULL."

    def test_custom_markers(self):
        parser = ResponseSectionParser(markers=(
            SectionMarker(OPTIMIZED_QUERY, r"запрос"),
            SectionMarker(RATIONALE, r"обоснование"),
        ))
        reply = "### Запрос\n```sql\nSELECT 5\n```\n### Обоснование\nИндекс.\n"
        fragment = parser.parse(reply)
        assert fragment.optimized_sql == "SELECT 5"
        assert fragment.rationale == "Индекс."
        assert fragment.potential_risks == NO_DATA

    def test_split_sections_first_occurrence_wins(self):
        reply = "### Rationale\nfirst\n### Rationale\nsecond\n"
        sections = ResponseSectionParser().split_sections(reply)
        assert sections[RATIONALE].startswith("first")
