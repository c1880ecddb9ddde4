from reechat.models import Channel, Message


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_message(channel_id: str = "general", user: str = "alice", timestamp: int = 1000, content: str = "hi", **extra) -> Message:
    return Message(channel_id=channel_id, user=user, icon="", content=content, timestamp=timestamp, **extra)


def make_page(channel_id: str, start: int, count: int) -> list[Message]:
    return [make_message(channel_id, user="bob", timestamp=start + i, content=f"old {start + i}") for i in range(count)]


def make_channel(channel_id: str = "general", name: str = "") -> Channel:
    return Channel(id=channel_id, name=name or channel_id, icon="#")
