# Routes package init
"""
DocDigest Backend: API Routes Package
=======================================

Route Inventory:
    - process.py:    POST /api/process          (authenticated upload)
                     POST /api/process-guest    (guest upload, page ceiling only)
    - usage.py:      GET  /api/usage            (ledger snapshot + limits)
    - summaries.py:  GET  /api/summaries        (caller's history)
                     GET  /api/summaries/{id}   (one summary, owner only)
    - plans.py:      GET  /api/plans            (plan table)
    - health.py:     GET  /health               (service health check)

Routes are thin: read the request, call a service, shape the response.
"""
