"""Incremental change detection over a metadata catalog.

For every selected table the scheduler finds the tables or partitions
updated since the dataset's prior watermark and inside the lookback
window, and emits one work descriptor per such entity along with the
dataset's next watermark candidate.

Admission test for an entity with update time ``t``:
    t is known
    and lookback.admit(t, now)
    and (no prior watermark or t > prior watermark)

Watermarks are tracked per table. For a partitioned table the candidate
is the largest admitted partition update time; datasets with nothing
admitted get no candidate, so the host keeps their prior watermark.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from changescan.lib.catalog import CatalogClientPool
from changescan.lib.entities import DatasetIdentifier, PartitionHandle, TableHandle
from changescan.lib.errors import (
    CatalogConnectionFailure,
    CatalogListingFailure,
    UpdateTimeNotFound,
)
from changescan.lib.logging import DatasetLogger, get_dataset_logger
from changescan.lib.lookback import LookbackPolicy, current_time_ms
from changescan.lib.providers import CatalogEntity, UpdateTimeProvider, describe
from changescan.lib.selector import DatasetSelector
from changescan.lib.watermark import WatermarkKey, normalize_watermarks, watermarks_by_urn
from changescan.lib.work import WorkDescriptor

logger = logging.getLogger(__name__)

__all__ = [
    "ChangeScheduler",
    "FailureKind",
    "RunningMax",
    "ScanFailure",
    "ScanResult",
]


class FailureKind(Enum):
    """Why an entity could not be evaluated."""

    UPDATE_TIME_NOT_FOUND = "update_time_not_found"
    CATALOG_LISTING_FAILURE = "catalog_listing_failure"


@dataclass(frozen=True)
class ScanFailure:
    """An entity (or catalog subtree) skipped during a scan."""

    entity: str
    kind: FailureKind
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"entity": self.entity, "kind": self.kind.value, "message": self.message}


@dataclass
class ScanResult:
    """Output of one scan.

    ``watermarks`` only holds datasets that advanced. ``failures`` lets a
    caller tell "nothing changed" apart from "some entities could not be
    evaluated".
    """

    descriptors: List[WorkDescriptor] = field(default_factory=list)
    watermarks: Dict[DatasetIdentifier, int] = field(default_factory=dict)
    failures: List[ScanFailure] = field(default_factory=list)
    tables_scanned: int = 0

    @property
    def has_failures(self) -> bool:
        return len(self.failures) > 0

    @property
    def failed_entities(self) -> List[str]:
        return [f.entity for f in self.failures]

    def watermarks_by_urn(self) -> Dict[str, int]:
        return watermarks_by_urn(self.watermarks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "descriptors": [d.to_properties() for d in self.descriptors],
            "watermarks": self.watermarks_by_urn(),
            "failures": [f.to_dict() for f in self.failures],
            "tables_scanned": self.tables_scanned,
        }

    def __str__(self) -> str:
        return (
            f"{len(self.descriptors)} work descriptor(s) from {self.tables_scanned} table(s), "
            f"{len(self.watermarks)} dataset(s) advanced, {len(self.failures)} failure(s)"
        )


class RunningMax:
    """Thread-safe running maximum of admitted update times."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: Optional[int] = None

    def offer(self, value: int) -> None:
        with self._lock:
            if self._value is None or value > self._value:
                self._value = value

    @property
    def value(self) -> Optional[int]:
        with self._lock:
            return self._value


@dataclass
class _TableOutcome:
    descriptors: List[WorkDescriptor] = field(default_factory=list)
    watermark: Optional[int] = None
    failures: List[ScanFailure] = field(default_factory=list)


class ChangeScheduler:
    """Finds changed tables and partitions and emits work for them.

    Example:
        >>> scheduler = ChangeScheduler(
        ...     pool,
        ...     DatasetSelector("sales", "*"),
        ...     MetastoreUpdateTimeProvider(),
        ...     lookback=LookbackPolicy.from_config("30d"),
        ... )
        >>> result = scheduler.scan({"sales@orders": 1736937000000})
        >>> for descriptor in result.descriptors:
        ...     submit(descriptor.to_properties())
        >>> persist(result.watermarks_by_urn())
    """

    def __init__(
        self,
        pool: CatalogClientPool,
        selector: DatasetSelector,
        provider: UpdateTimeProvider,
        lookback: Union[None, LookbackPolicy, timedelta] = None,
        *,
        max_workers: int = 1,
        partition_workers: int = 1,
        strict_watermark: bool = True,
        ignore_path_identifiers: Sequence[str] = (),
    ) -> None:
        self.pool = pool
        self.selector = selector
        self.provider = provider
        if isinstance(lookback, LookbackPolicy):
            self.lookback = lookback
        else:
            self.lookback = LookbackPolicy(lookback)
        self.max_workers = max(1, max_workers)
        self.partition_workers = max(1, partition_workers)
        self.strict_watermark = strict_watermark
        self.ignore_path_identifiers = tuple(i for i in ignore_path_identifiers if i)

    def should_create_work_for(self, update_time: int, prior: Optional[int], now: int) -> bool:
        """Admission test for one entity against its dataset's watermark.

        An entity exactly at the watermark counts as already processed
        unless ``strict_watermark`` is off.
        """
        if not self.lookback.admit(update_time, now):
            return False
        if prior is None:
            return True
        if self.strict_watermark:
            return update_time > prior
        return update_time >= prior

    def is_ignored(self, location: Optional[str]) -> bool:
        """Whether a storage location carries an ignored path identifier."""
        if not location or not self.ignore_path_identifiers:
            return False
        return any(identifier in location for identifier in self.ignore_path_identifiers)

    def scan(
        self,
        prior_watermarks: Optional[Mapping[WatermarkKey, int]] = None,
        now: Optional[int] = None,
        *,
        selector: Optional[DatasetSelector] = None,
    ) -> ScanResult:
        """Scan the selected tables.

        Args:
            prior_watermarks: Watermarks from earlier scans keyed by
                ``database@table`` or DatasetIdentifier
            now: Reference time in ms (default: current time)
            selector: Overrides the scheduler's selector for this scan

        Returns:
            ScanResult with descriptors in catalog order, advanced
            watermarks and partial failures

        Raises:
            CatalogConnectionFailure: If a catalog client cannot be leased
        """
        started = time.time()
        now = current_time_ms() if now is None else int(now)
        priors = normalize_watermarks(prior_watermarks)
        selector = selector or self.selector
        result = ScanResult()

        logger.info(
            "Starting scan: %r, lookback=%s, %d prior watermark(s)",
            selector,
            self.lookback.lookback,
            len(priors),
        )

        try:
            with self.pool.lease() as client:
                selection = selector.select(client)
        except CatalogListingFailure as e:
            logger.error("Catalog listing failed, nothing scanned: %s", e.message)
            result.failures.append(
                ScanFailure("*", FailureKind.CATALOG_LISTING_FAILURE, _describe_error(e))
            )
            return result

        result.failures.extend(
            ScanFailure(f.database or "*", FailureKind.CATALOG_LISTING_FAILURE, _describe_error(f))
            for f in selection.failures
        )

        outcomes = self._scan_tables(selection.tables, priors, now)
        for table, outcome in zip(selection.tables, outcomes):
            result.descriptors.extend(outcome.descriptors)
            result.failures.extend(outcome.failures)
            if outcome.watermark is not None:
                result.watermarks[table.identifier] = outcome.watermark
        result.tables_scanned = len(outcomes)

        logger.info("Scan complete in %.2fs: %s", time.time() - started, result)
        return result

    def _scan_tables(
        self,
        tables: List[TableHandle],
        priors: Dict[DatasetIdentifier, int],
        now: int,
    ) -> List[_TableOutcome]:
        partition_executor: Optional[Executor] = None
        if self.partition_workers > 1:
            partition_executor = ThreadPoolExecutor(
                max_workers=self.partition_workers, thread_name_prefix="changescan-partition"
            )

        try:
            if self.max_workers == 1 or len(tables) <= 1:
                outcomes = [
                    self._scan_table(t, priors.get(t.identifier), now, partition_executor)
                    for t in tables
                ]
            else:
                outcomes = self._scan_tables_parallel(tables, priors, now, partition_executor)
        finally:
            if partition_executor is not None:
                partition_executor.shutdown(wait=True)

        return outcomes

    def _scan_tables_parallel(
        self,
        tables: List[TableHandle],
        priors: Dict[DatasetIdentifier, int],
        now: int,
        partition_executor: Optional[Executor],
    ) -> List[_TableOutcome]:
        logger.debug("Scanning %d table(s) with %d workers", len(tables), self.max_workers)

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="changescan-table"
        ) as executor:
            futures: List[Future] = [
                executor.submit(
                    self._scan_table, t, priors.get(t.identifier), now, partition_executor
                )
                for t in tables
            ]
            try:
                # Collected in submission order to keep catalog order
                return [future.result() for future in futures]
            except CatalogConnectionFailure:
                for future in futures:
                    future.cancel()
                raise

    def _scan_table(
        self,
        table: TableHandle,
        prior: Optional[int],
        now: int,
        partition_executor: Optional[Executor],
    ) -> _TableOutcome:
        log = get_dataset_logger(__name__, database=table.database, table=table.name)

        if self.is_ignored(table.location):
            log.debug("Skipping table at ignored location %s", table.location)
            return _TableOutcome()

        if table.is_partitioned:
            outcome = self._scan_partitioned(table, prior, now, partition_executor, log)
        else:
            outcome = self._scan_unpartitioned(table, prior, now, log)

        log.debug(
            "%s: %d work descriptor(s), watermark %s -> %s",
            table.identifier.urn,
            len(outcome.descriptors),
            prior,
            outcome.watermark,
        )
        return outcome

    def _scan_unpartitioned(
        self,
        table: TableHandle,
        prior: Optional[int],
        now: int,
        log: DatasetLogger,
    ) -> _TableOutcome:
        outcome = _TableOutcome()
        update_time = self._update_time(table, outcome.failures, log)

        if update_time is not None and self.should_create_work_for(update_time, prior, now):
            outcome.descriptors.append(
                WorkDescriptor(dataset=table.identifier, table=table, update_time=update_time)
            )
            outcome.watermark = update_time

        return outcome

    def _scan_partitioned(
        self,
        table: TableHandle,
        prior: Optional[int],
        now: int,
        partition_executor: Optional[Executor],
        log: DatasetLogger,
    ) -> _TableOutcome:
        outcome = _TableOutcome()

        try:
            partitions = self._list_partitions(table)
        except CatalogListingFailure as e:
            log.warning("Skipping table %s: %s", table.identifier.urn, e.message)
            outcome.failures.append(
                ScanFailure(table.identifier.urn, FailureKind.CATALOG_LISTING_FAILURE, _describe_error(e))
            )
            return outcome

        running_max = RunningMax()

        def evaluate(partition: PartitionHandle) -> Tuple[Optional[int], List[ScanFailure]]:
            failures: List[ScanFailure] = []
            if self.is_ignored(partition.location):
                log.debug("Skipping partition at ignored location %s", partition.location)
                return None, failures
            update_time = self._update_time(partition, failures, log)
            if update_time is None or not self.should_create_work_for(update_time, prior, now):
                return None, failures
            running_max.offer(update_time)
            return update_time, failures

        mapper: Callable[..., Iterable[Tuple[Optional[int], List[ScanFailure]]]]
        mapper = partition_executor.map if partition_executor is not None else map
        evaluated = list(mapper(evaluate, partitions))

        for partition, (update_time, failures) in zip(partitions, evaluated):
            outcome.failures.extend(failures)
            if update_time is not None:
                outcome.descriptors.append(
                    WorkDescriptor(
                        dataset=table.identifier,
                        table=table,
                        update_time=update_time,
                        partition=partition,
                    )
                )

        candidate = running_max.value
        if candidate is not None and (prior is None or candidate > prior):
            outcome.watermark = candidate

        log.debug(
            "%d of %d partition(s) admitted for %s",
            len(outcome.descriptors),
            len(partitions),
            table.identifier.urn,
        )
        return outcome

    def _list_partitions(self, table: TableHandle) -> List[PartitionHandle]:
        """List a table's partitions under a client lease.

        Raises:
            CatalogListingFailure: If listing fails or a partition does not
                match the table's partition keys
            CatalogConnectionFailure: If no client can be leased
        """
        with self.pool.lease() as client:
            try:
                partitions = client.list_partitions(table)
            except CatalogConnectionFailure:
                raise
            except Exception as e:
                raise CatalogListingFailure(
                    "Could not list partitions",
                    database=table.database,
                    table=table.name,
                    cause=e,
                ) from e

        for partition in partitions:
            if len(partition.values) != len(table.partition_keys):
                raise CatalogListingFailure(
                    "Partition values do not match partition keys",
                    database=table.database,
                    table=table.name,
                    details={
                        "partition_keys": list(table.partition_keys),
                        "values": list(partition.values),
                    },
                )
        return partitions

    def _update_time(
        self,
        entity: CatalogEntity,
        failures: List[ScanFailure],
        log: DatasetLogger,
    ) -> Optional[int]:
        try:
            return self.provider.get_update_time(entity)
        except UpdateTimeNotFound as e:
            log.warning("No update time for %s, skipping: %s", describe(entity), e.message)
            failures.append(
                ScanFailure(describe(entity), FailureKind.UPDATE_TIME_NOT_FOUND, _describe_error(e))
            )
            return None


def _describe_error(error: Exception) -> str:
    cause = getattr(error, "cause", None)
    message = getattr(error, "message", str(error))
    if cause is not None:
        return f"{message}: {cause}"
    return message
