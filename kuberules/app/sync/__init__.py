"""
Watch-driven rule synchronization.
"""

from .synchronizer import EngineMirrorHandler, RuleEventHandler, RuleSynchronizer, SyncState

__all__ = ["EngineMirrorHandler", "RuleEventHandler", "RuleSynchronizer", "SyncState"]
