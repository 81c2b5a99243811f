"""Shared helpers for Socket.IO tests."""


def events(sio, name=None):
    """Drain received packets, optionally keeping only the payloads of ``name`` events."""
    received = sio.get_received('/ws')
    if name is None:
        return received
    return [pkt['args'][0] for pkt in received if pkt['name'] == name]


def names(received):
    return [pkt['name'] for pkt in received]


def payloads(received, name):
    return [pkt['args'][0] for pkt in received if pkt['name'] == name]


class FakeScheduler:
    """Collects background tasks so tests decide when grace timers fire."""

    def __init__(self):
        self.tasks = []

    def spawn(self, target, *args):
        self.tasks.append((target, args))

    def run_all(self):
        tasks, self.tasks = self.tasks, []
        for target, args in tasks:
            target(*args)
        return len(tasks)
