"""Conversion of psql output into JSON-shaped query results."""

from __future__ import annotations

import csv
import io
import json
import logging
import re
from dataclasses import replace
from typing import Any

from .errors import ToolExecutionError, ValidationError
from .models import ConnectionConfig, StructuredResult, ToolResult
from .tools import PsqlConfig, ToolInvoker, ToolKind

LOG = logging.getLogger(__name__)

_ROWS_ALIAS = "pg_embedded_rows"
_ROW_HEADS = {"select", "with", "values", "table"}
_RETURNING = re.compile(r"\breturning\b", re.IGNORECASE)
_HEAD = re.compile(r"[\s(]*([A-Za-z_]+)")
_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_JSON_NUMBER = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_COMMAND_TAG = re.compile(r"^(?:INSERT \d+|UPDATE|DELETE|SELECT|MERGE|COPY|FETCH|MOVE) (\d+)$")

# Base psql flags for machine-readable output.
_BASE_PSQL = PsqlConfig(no_psqlrc=True, variables=(("ON_ERROR_STOP", "1"),))
# Row output must not be followed by command tags such as `INSERT 0 1`.
_ROWS_PSQL = replace(_BASE_PSQL, quiet=True)


def require_sql(sql: str) -> str:
    """Return the statement without surrounding whitespace; reject empty input."""

    statement = sql.strip() if sql else ""
    if not statement:
        raise ValidationError("SQL cannot be empty")
    return statement


def returns_rows(statement: str) -> bool:
    """Whether a single statement produces a row set that can be aggregated.

    Leading comments and parentheses are skipped, and text inside literals or
    comments never counts as a keyword.
    """

    code = mask_sql(statement)
    match = _HEAD.match(code)
    if match is None:
        return False
    return match.group(1).lower() in _ROW_HEADS or bool(_RETURNING.search(code))


def mask_sql(statement: str) -> str:
    """Blank out quoted text and comments, keeping every other character in place."""

    chunks: list[str] = []
    length = len(statement)
    i = 0
    while i < length:
        pair = statement[i : i + 2]
        char = statement[i]
        if pair == "--":
            end = statement.find("\n", i)
            end = length if end == -1 else end
        elif pair == "/*":
            end = _block_comment_end(statement, i)
        elif char in "'\"":
            end = _quoted_end(statement, i, char)
        elif char == "$" and _starts_dollar_quote(statement, i):
            tag = _DOLLAR_TAG.match(statement, i).group()
            close = statement.find(tag, i + len(tag))
            end = length if close == -1 else close + len(tag)
        else:
            chunks.append(char)
            i += 1
            continue
        chunks.append(" " * (end - i))
        i = end
    return "".join(chunks)


def _quoted_end(statement: str, start: int, quote: str) -> int:
    i = start + 1
    while True:
        close = statement.find(quote, i)
        if close == -1:
            return len(statement)
        if statement[close + 1 : close + 2] == quote:
            i = close + 2
            continue
        return close + 1


def _block_comment_end(statement: str, start: int) -> int:
    depth = 0
    i = start
    while i < len(statement):
        pair = statement[i : i + 2]
        if pair == "/*":
            depth += 1
            i += 2
        elif pair == "*/":
            depth -= 1
            i += 2
            if depth == 0:
                return i
        else:
            i += 1
    return len(statement)


def _starts_dollar_quote(statement: str, i: int) -> bool:
    # $1 parameters and identifiers such as a$b are not quote openers
    if i and (statement[i - 1].isalnum() or statement[i - 1] == "_"):
        return False
    return _DOLLAR_TAG.match(statement, i) is not None


def canonical_json(rows: list[Any]) -> str:
    return json.dumps(rows, separators=(",", ":"), ensure_ascii=False)


def wrap_as_json(statement: str) -> str:
    """Aggregate a row-producing statement into a single JSON array value."""

    # newlines keep a trailing line comment from swallowing the outer query
    return (
        f"WITH {_ROWS_ALIAS} AS (\n{statement}\n) "
        f"SELECT COALESCE(json_agg({_ROWS_ALIAS}), '[]'::json) FROM {_ROWS_ALIAS}"
    )


def parse_command_count(stdout: str) -> int | None:
    """Row count from the last command tag psql printed, e.g. ``INSERT 0 3``."""

    for line in reversed(stdout.splitlines()):
        match = _COMMAND_TAG.match(line.strip())
        if match:
            return int(match.group(1))
    return None


def parse_csv_rows(output: str) -> list[dict[str, Any]]:
    """Parse ``psql --csv`` output into row mappings.

    Unquoted empty cells are SQL NULLs, cells spelling a JSON number become
    numbers and everything else stays text.
    """

    reader = csv.reader(io.StringIO(output), quoting=csv.QUOTE_NOTNULL)
    header: list[str] | None = None
    rows: list[dict[str, Any]] = []
    for record in reader:
        if header is None:
            header = ["" if name is None else name for name in record]
            continue
        if not record:
            continue
        rows.append({name: _csv_value(cell) for name, cell in zip(header, record)})
    return rows


def _csv_value(cell: str | None) -> Any:
    if cell is None:
        return None
    if _JSON_NUMBER.fullmatch(cell):
        return json.loads(cell)
    return cell


def _single_statement(statement: str) -> str | None:
    """The statement without trailing semicolons and comments, or None for a batch."""

    code = mask_sql(statement).rstrip()
    while code.endswith(";"):
        code = code[:-1].rstrip()
    if ";" in code:
        return None
    return statement[: len(code)]


class ResultTransformer:
    """Runs SQL through psql and normalizes the output into ``StructuredResult``."""

    def __init__(self, invoker: ToolInvoker) -> None:
        self._invoker = invoker

    def execute_sql_json(
        self,
        sql: str,
        connection: ConnectionConfig,
        *,
        timeout: float | None = None,
    ) -> StructuredResult:
        """Run SQL and return rows as aggregated by the server's ``json_agg``."""

        statement = require_sql(sql)
        body = _single_statement(statement)
        if body is None or not returns_rows(body):
            return self._run_plain(statement, connection, timeout)
        config = replace(_ROWS_PSQL, tuples_only=True, no_align=True, timeout=timeout)
        result = self._psql(wrap_as_json(body), config, connection)
        try:
            rows = json.loads(result.stdout) if result.stdout.strip() else []
        except json.JSONDecodeError as exc:
            raise ToolExecutionError(f"Could not parse JSON query output: {exc}", result) from exc
        if not isinstance(rows, list):
            raise ToolExecutionError("Query output was not a JSON array", result)
        return self._structured(result, rows)

    def execute_sql_structured(
        self,
        sql: str,
        connection: ConnectionConfig,
        *,
        timeout: float | None = None,
    ) -> StructuredResult:
        """Run SQL with CSV output and convert the table into the same JSON shape."""

        statement = require_sql(sql)
        body = _single_statement(statement)
        if body is None or not returns_rows(body):
            return self._run_plain(statement, connection, timeout)
        config = replace(_ROWS_PSQL, csv=True, timeout=timeout)
        result = self._psql(body, config, connection)
        return self._structured(result, parse_csv_rows(result.stdout))

    def _run_plain(self, statement: str, connection: ConnectionConfig, timeout: float | None) -> StructuredResult:
        result = self._psql(statement, replace(_BASE_PSQL, timeout=timeout), connection)
        return StructuredResult(
            data=None,
            stdout=result.stdout,
            stderr=result.stderr,
            success=True,
            row_count=parse_command_count(result.stdout),
        )

    def _psql(self, statement: str, config: PsqlConfig, connection: ConnectionConfig) -> ToolResult:
        result = self._invoker.run(ToolKind.PSQL, replace(config, command=statement), connection)
        if not result.success:
            raise ToolExecutionError.from_result("SQL execution", result)
        return result

    @staticmethod
    def _structured(result: ToolResult, rows: list[Any]) -> StructuredResult:
        return StructuredResult(
            data=canonical_json(rows),
            stdout=result.stdout,
            stderr=result.stderr,
            success=True,
            row_count=len(rows),
        )


__all__ = [
    "ResultTransformer",
    "canonical_json",
    "mask_sql",
    "parse_command_count",
    "parse_csv_rows",
    "require_sql",
    "returns_rows",
    "wrap_as_json",
]
