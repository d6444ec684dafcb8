"""snapmerge: incremental backup merge engine.

Reconciles a previously exported snapshot of the relational store against
the live store without full replacement, resolving per-record conflicts
under a configurable policy and reporting exactly what changed.

Packages:
- merge:    artifact extraction, conflict analysis, merge execution
- tracking: field-level change/patch tracking for configuration objects
- db:       SQLAlchemy models and session handling
- cli:      typer command-line caller
"""

__version__ = "0.1.0"
