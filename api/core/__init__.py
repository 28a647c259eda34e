"""
Shared, cross-cutting code for the API.

`core/` holds the small building blocks every resource uses (DB pool and
query helpers, settings, errors, logging). Keep resource-specific SQL and
mapping in the resource package (e.g. `users/`).
"""
