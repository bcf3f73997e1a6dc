"""
Tourney - Tournament Progression Engine

Runs multiplayer tournaments end to end: registering players, pairing them
round by round, recording results and declaring a winner.

Main components:
- db: SQLAlchemy models, async sessions and the tournament repository
- pairing: Pairing strategies per format (Swiss, group stage)
- services: Round orchestration and match result processing
- cache: Snapshot cache kept consistent with committed state
- auth: Shared-secret hashing and the access guard
- notifications: Lifecycle events and the WebSocket broadcast hub
- web: FastAPI HTTP/WebSocket adapter
"""

__version__ = "1.0.0"
