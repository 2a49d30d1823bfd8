"""
CARRIER App - Mobile API for PeerCarrier carriers

REST endpoints for the carrier app:
- Go online / offline
- Location updates (HTTP fallback, WebSocket preferred)
- Profile and profile photo
"""
