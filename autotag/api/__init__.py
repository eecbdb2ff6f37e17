"""HTTP API layer (FastAPI).

This module exposes a small, versioned `/api/v1` surface for the embedded admin UI to:
- create/list/edit a shop's tagging rules and try one against a product
- enqueue bulk runs and follow their progress and trace events
- receive product-update webhooks

The API is intentionally thin: core behavior lives in `autotag/rules`, `autotag/runtime`
and `autotag/storage`.
"""
