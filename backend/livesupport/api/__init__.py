"""
HTTP and WebSocket surface of the coordinator.
"""
