"""
Backing sources for library containers.

- base: BaseSource contract (``list_entries``) and SourceError
- filesystem: directory walker with its classifier rules
- plex: Plex catalog client with its classifier rules
- factory: builds top-level containers from configured applications
"""
