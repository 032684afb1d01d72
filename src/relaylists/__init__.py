"""
relaylists: multi-tier list synchronization.

Follow sets, bookmarks and mute lists live in three places at once:
the session cache, a durable per-account file, and a swarm of relays
that may each hold a stale or partial copy. This package keeps them
consistent without ever losing an entry it cannot read.
"""

import os

__version__ = "0.1.0"
__author__ = "smilinTux"

RELAYLISTS_HOME = os.environ.get("RELAYLISTS_HOME", "~/.relaylists")
