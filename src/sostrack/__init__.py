"""
SOSTrack

Emergency location tracking: keeps an SOS session's live position synced to
the remote store until the session is explicitly stopped.
"""

__version__ = "1.0.0"
