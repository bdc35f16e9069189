"""Reference extraction — which tables does a transformation read from?

Matching is structural, not semantic: a table name counts as a reference when
it appears as a whole-word, case-insensitive token anywhere in the definition,
including string literals and comments. False positives are accepted; a missed
dependency would let a table run before its source.
"""

from __future__ import annotations
import logging
import re
from typing import Iterable

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

logger = logging.getLogger("sluice.dag.references")

# Identifier characters; a name must not be flanked by any of these
_IDENT = r"[\w$]"

_RELATION_RE = re.compile(
    r"\b(?:from|join)\s+((?:\"[^\"]+\"|[A-Za-z_][\w$]*)(?:\.(?:\"[^\"]+\"|[A-Za-z_][\w$]*))*)",
    re.IGNORECASE,
)


def _token_pattern(name: str) -> re.Pattern:
    return re.compile(rf"(?<!{_IDENT}){re.escape(name)}(?!{_IDENT})", re.IGNORECASE)


def find_references(
    text: str,
    candidate_names: Iterable[str],
    self_name: str | None = None,
) -> set[str]:
    """Return the candidate names that appear as whole-word tokens in `text`.

    Self-references are ignored.
    """
    own = self_name.casefold() if self_name else None
    found = set()
    for name in candidate_names:
        if own is not None and name.casefold() == own:
            continue
        if _token_pattern(name).search(text):
            found.add(name)
    return found


def find_relation_names(text: str, dialect: str = "duckdb") -> set[str]:
    """Relation names a SQL definition reads from (CTE aliases excluded).

    Used only to report unresolved references, so parse failures degrade to
    a FROM/JOIN regex rather than raising.
    """
    try:
        statements = [s for s in sqlglot.parse(text, read=dialect) if s is not None]
    except SqlglotError as e:
        logger.debug(f"Falling back to regex relation scan: {e}")
        return {m.group(1).replace('"', "") for m in _RELATION_RE.finditer(text)}

    names = set()
    for statement in statements:
        ctes = {cte.alias_or_name.casefold() for cte in statement.find_all(exp.CTE)}
        for table in statement.find_all(exp.Table):
            if not table.name or table.name.casefold() in ctes:
                continue
            names.add(".".join(part for part in (table.db, table.name) if part))
    return names
