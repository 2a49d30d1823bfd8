"""
CORE App - Users and carrier presence for PeerCarrier
"""
