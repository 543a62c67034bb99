"""Sync managers for the local mirror.

``hierarchy`` holds the operator-driven platform and account operations as
plain async functions; ``pull``, ``push`` and ``knowledge`` hold the
reconcilers.  Managers take a ``HierarchyStore`` and ``GatewaySessions`` by
reference and raise domain exceptions (``SyncError`` subclasses), never CLI
exceptions -- that translation is the command line's responsibility.
"""
