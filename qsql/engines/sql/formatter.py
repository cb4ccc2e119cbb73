"""
Whitespace normalisation of rendered SQL.
"""


def clean_sql(sql: str) -> str:
    """
    Collapse rendered SQL into one compact line.

    Each line is stripped and blank lines dropped; the rest are joined with a
    single space, runs of spaces are collapsed and the result is stripped.
    Idempotent: ``clean_sql(clean_sql(x)) == clean_sql(x)``.
    """
    lines = [line.strip() for line in sql.split("\n")]
    result = " ".join(line for line in lines if line)
    while "  " in result:
        result = result.replace("  ", " ")
    return result.strip()
