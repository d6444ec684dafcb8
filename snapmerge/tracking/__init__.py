"""Change/patch tracking for configuration objects.

Public API:
- changes.diff                     : per-field ChangeRecords between two versions
- changes.patch                    : minimal {field: newValue} patch
- changes.apply_incremental_update : apply a partial update with audit trail
- changes.merge_change_records     : combine change sets into one timeline
- changes.validate_sync            : detect drift between mirrored objects
- changes.reconcile                : two-sided field merge under a strategy
"""
