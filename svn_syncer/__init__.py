"""
SVN Syncer - Replay Subversion history into a Git repository.

This package replays each Subversion revision as one Git commit and keeps
a persistent sync history, so repeated runs only pick up new revisions.
"""

__version__ = "1.0.0"
