import asyncio

from castreceiver.message_bus import MessageBus

from fakes import FakeWebSocket


class _JoiningWebSocket(FakeWebSocket):
    """Connects another sender while a broadcast is being written."""

    def __init__(self, bus, newcomer):
        super().__init__()
        self.bus = bus
        self.newcomer = newcomer

    async def send_str(self, text):
        await super().send_str(text)
        self.bus.add(self.newcomer)


class _LeavingWebSocket(FakeWebSocket):

    def __init__(self, bus):
        super().__init__()
        self.bus = bus

    async def send_str(self, text):
        await super().send_str(text)
        self.bus.discard(self)


class _DeadWebSocket(FakeWebSocket):

    async def send_str(self, text):
        raise ConnectionResetError("gone")


def test_sender_connecting_during_broadcast():
    async def scenario():
        bus = MessageBus()
        newcomer = FakeWebSocket()
        joining = _JoiningWebSocket(bus, newcomer)
        bus.add(joining)

        await bus.send_error("first")
        await bus.send_error("second")

        assert len(bus) == 2
        assert [m["message"] for m in joining.messages] == ["first", "second"]
        assert [m["message"] for m in newcomer.messages] == ["second"]

    asyncio.run(scenario())


def test_sender_disconnecting_during_broadcast():
    async def scenario():
        bus = MessageBus()
        leaving = _LeavingWebSocket(bus)
        staying = FakeWebSocket()
        bus.add(leaving)
        bus.add(staying)

        await bus.send_playback_error("NoCompatibleStream")

        assert len(bus) == 1
        assert staying.of_type("playbackerror")

    asyncio.run(scenario())


def test_dead_sockets_are_dropped():
    async def scenario():
        bus = MessageBus()
        alive = FakeWebSocket()
        bus.add(_DeadWebSocket())
        bus.add(alive)

        await bus.send_report("playbackprogress", {"PositionTicks": 0})

        assert len(bus) == 1
        assert alive.of_type("playbackprogress")[0]["data"] == {"PositionTicks": 0}

    asyncio.run(scenario())
