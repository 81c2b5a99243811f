"""Room domain services: store, session resolution, lifecycle and sync.

Socket handlers and HTTP routes import from here, keeping transport
concerns separated from the room state machine.
"""
