"""Change-scan test suite.

Test organization:
- unit/test_scheduler.py: change detection, watermarks, lookback scenarios, ordering
- unit/test_providers.py: metastore, filesystem and fallback update times
- unit/test_catalog.py: client contract, connection leases, catalog snapshots
- unit/test_cli.py: scan/validate commands end to end

Shared builders for tables and partitions live in conftest.py.
"""
