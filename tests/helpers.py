"""Shared test helpers."""

from datetime import UTC, datetime


def at(hour: int, minute: int = 0, day: int = 1) -> datetime:
    """A fixed instant on 2030-01-<day> UTC."""
    return datetime(2030, 1, day, hour, minute, tzinfo=UTC)


class RecordingNotifier:
    """Notifier that keeps every published event."""

    def __init__(self):
        self.events = []

    async def publish(self, topic, event):
        self.events.append((topic, event))

    def types(self):
        return [event["type"] for _, event in self.events]
