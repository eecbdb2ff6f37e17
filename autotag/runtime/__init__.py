"""Runtime orchestration (bulk runs, background worker, single-product tagging).

This layer is responsible for:
- claiming queued bulk runs from SQLite
- paging through a shop's catalog and applying its enabled rules
- persisting run progress so an interrupted run can resume

It should remain independent from the HTTP layer (`autotag/api`), so both CLI and
API can reuse the same execution logic.
"""
