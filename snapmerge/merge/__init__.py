"""Incremental backup merge engine.

Public API:
- service.MergeService            : analyze / merge / create incremental snapshot
- extractor.extract               : raw artifact → BackupArtifact
- analyzer.analyze                : classify incoming rows (read only)
- executor.apply                  : apply row decisions in one unit of work
- executor.create_incremental_snapshot : capture current store state
"""
