"""Selection of databases and tables to scan.

Patterns are comma- or pipe-separated globs (``sales_*|audit``), or a
regular expression when prefixed with ``regex:`` (``regex:^tmp_\\d+$``).
"""

from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from changescan.lib.catalog import CatalogClient
from changescan.lib.entities import TableHandle
from changescan.lib.errors import (
    CatalogConnectionFailure,
    CatalogListingFailure,
    ConfigurationError,
)

logger = logging.getLogger(__name__)

__all__ = ["DatasetSelector", "NamePattern", "Selection"]

REGEX_PREFIX = "regex:"


class NamePattern:
    """A compiled name pattern.

    Example:
        >>> NamePattern("sales_*|audit").matches("sales_eu")
        True
        >>> NamePattern("regex:^tmp_\\\\d+$").matches("tmp_42")
        True
    """

    def __init__(self, pattern: str = "*", *, case_sensitive: bool = False):
        self.pattern = (pattern or "*").strip() or "*"
        self.case_sensitive = case_sensitive
        self._match = self._compile()

    def _compile(self) -> Callable[[str], bool]:
        flags = 0 if self.case_sensitive else re.IGNORECASE

        if self.pattern.startswith(REGEX_PREFIX):
            expression = self.pattern[len(REGEX_PREFIX):]
            try:
                regex = re.compile(expression, flags)
            except re.error as e:
                raise ConfigurationError(
                    f"Invalid regular expression: {e}", field="pattern", value=self.pattern
                ) from e
            return lambda name: regex.fullmatch(name) is not None

        # Hive metastore patterns use | for alternatives
        globs = [g.strip() for g in re.split(r"[,|]", self.pattern) if g.strip()]
        compiled = [re.compile(fnmatch.translate(g), flags) for g in globs]
        return lambda name: any(r.match(name) for r in compiled)

    def matches(self, name: str) -> bool:
        return self._match(name)

    def __repr__(self) -> str:
        return f"NamePattern({self.pattern!r})"


@dataclass
class Selection:
    """Tables chosen for one scan plus the databases that failed listing."""

    tables: List[TableHandle] = field(default_factory=list)
    failures: List[CatalogListingFailure] = field(default_factory=list)


class DatasetSelector:
    """Resolves the databases and tables matching configured patterns.

    Example:
        >>> selector = DatasetSelector("sales", "orders_*", exclude=["sales.orders_tmp"])
        >>> with pool.lease() as client:
        ...     selection = selector.select(client)
    """

    def __init__(
        self,
        database_pattern: str = "*",
        table_pattern: str = "*",
        exclude: Optional[Sequence[str]] = None,
    ) -> None:
        self.database_pattern = NamePattern(database_pattern)
        self.table_pattern = NamePattern(table_pattern)
        self._exclude: List[Tuple[NamePattern, NamePattern]] = [
            self._split_exclude(entry) for entry in exclude or []
        ]

    @staticmethod
    def _split_exclude(entry: str) -> Tuple[NamePattern, NamePattern]:
        database, sep, table = entry.partition(".")
        if not sep:
            raise ConfigurationError(
                "Exclusions must be written as 'database.table'",
                field="exclude_tables",
                value=entry,
            )
        return NamePattern(database), NamePattern(table)

    def matches_database(self, database: str) -> bool:
        return self.database_pattern.matches(database)

    def matches_table(self, table: TableHandle) -> bool:
        if not self.table_pattern.matches(table.name):
            return False
        return not any(
            db.matches(table.database) and tbl.matches(table.name)
            for db, tbl in self._exclude
        )

    def select_databases(self, client: CatalogClient) -> List[str]:
        """List matching database names.

        Raises:
            CatalogListingFailure: If the catalog cannot list databases
        """
        try:
            databases = client.list_databases()
        except CatalogConnectionFailure:
            raise
        except Exception as e:
            raise CatalogListingFailure("Could not list databases", cause=e) from e
        return [d for d in databases if self.matches_database(d)]

    def select(self, client: CatalogClient) -> Selection:
        """List the matching tables of every matching database.

        A database whose tables cannot be listed is recorded in
        ``Selection.failures`` and skipped; the rest are still returned.

        Raises:
            CatalogListingFailure: If the database list itself fails
        """
        selection = Selection()

        for database in self.select_databases(client):
            try:
                tables = client.list_tables(database)
            except CatalogConnectionFailure:
                raise
            except Exception as e:
                logger.warning("Could not list tables of database %s: %s", database, e)
                selection.failures.append(
                    CatalogListingFailure(
                        "Could not list tables", database=database, cause=e
                    )
                )
                continue

            matched = [t for t in tables if self.matches_table(t)]
            logger.debug(
                "Database %s: %d of %d table(s) selected",
                database,
                len(matched),
                len(tables),
            )
            selection.tables.extend(matched)

        return selection

    def __repr__(self) -> str:
        return (
            f"DatasetSelector(database_pattern={self.database_pattern.pattern!r}, "
            f"table_pattern={self.table_pattern.pattern!r})"
        )
