"""State layer.

Single place where the reconciliation rules between the persisted
session, backend snapshots and the live route-change stream are decided.
"""
