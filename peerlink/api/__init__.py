"""
HTTP/WebSocket surface of the signaling relay.
"""
