"""GitLab project membership management module.

Search projects and list their members on a GitLab instance, cache selected
members and named groups of them locally, and apply batch add/remove
operations to a project with per-user outcome reporting.

Layers:
- domain/: dataclasses, enums and errors
- providers/: remote directory contract and the GitLab adapter
- store.py / orm.py: SQLite-backed local cache
- orchestration.py / progress.py / classification.py: batch engine
- service.py / controllers.py / schemas.py: HTTP boundary
"""
