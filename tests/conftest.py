import asyncio
from unittest import mock

import pytest

from ircwire.client import Client
from ircwire import config
from . import mock_open_connection


@pytest.fixture
def config_example_mode():
    with config.example_mode():
        yield


@pytest.fixture
def irc_client_class():
    return Client


@pytest.fixture
def irc_client_config():
    """Override to change client options for a test module/class."""
    return {}


@pytest.fixture
def make_client(irc_client_class, irc_client_config):
    """Factory for clients with test-friendly defaults."""
    def make(**kwargs):
        options = dict(server='irc.example.com', nick='ircwire', auto_connect=False, retry_delay=0.01)
        options.update(irc_client_config)
        options.update(kwargs)
        return irc_client_class(**options)
    return make


@pytest.fixture
async def irc_client(make_client):
    client = make_client()
    # Connect fake stream reader/writer, the read loop is running
    with mock_open_connection():
        await client.connect()

    # Mock all the things!
    client.send_line = mock.Mock(wraps=client.send_line)

    yield client

    client.disconnect()
    await asyncio.wait_for(client.finished.wait(), 1)


class IRCClientHelper:
    def __init__(self, irc_client):
        self.client = irc_client

    def reset_mock(self):
        self.client.send_line.reset_mock()
        self.client.writer.write.reset_mock()

    def patch(self, attrs, create=False):
        """Shortcut for patching attribute(s) of the client.

        If the attribute exists it is wrapped by the mock so that calls aren't
        blocked.
        """
        if isinstance(attrs, str):
            return mock.patch.object(self.client, attrs, create=create,
                                     wraps=getattr(self.client, attrs, None))
        else:
            return [mock.patch.object(self.client, attr, create=create,
                                      wraps=getattr(self.client, attr, None))
                    for attr in attrs]

    def record(self, *event_types):
        """Collect every event of *event_types* in the returned list."""
        events = []
        for event_type in event_types:
            self.client.on(event_type, events.append)
        return events

    async def receive_bytes(self, data):
        """Shortcut for pushing received data to the client's read loop."""
        self.client.reader.feed_data(data)
        await asyncio.sleep(0)
        await asyncio.sleep(0)

    def receive(self, lines):
        """Shortcut to push a series of lines to the client."""
        if isinstance(lines, str):
            lines = [lines]
        return [self.client.line_received(l) for l in lines]

    def assert_bytes_sent(self, data):
        """Check the raw bytes that have been sent via the transport.

        Compares *data* to the collection of everything sent to
        ``writer.write(...)``.  Resets the mock so the next call will not
        contain what was checked by this call.
        """
        sent = b''.join(args[0] for args, _ in self.client.writer.write.call_args_list)
        assert sent == data
        self.client.writer.write.reset_mock()

    def assert_sent(self, lines, reset_mock=True):
        """Check that a list of (unicode) strings have been sent.

        Resets the mock so the next call will not contain what was checked by
        this call.
        """
        if isinstance(lines, str):
            lines = [lines]
        self.client.send_line.assert_has_calls([mock.call(l) for l in lines])
        if reset_mock:
            self.client.send_line.reset_mock()


@pytest.fixture
def irc_client_helper(irc_client):
    helper = IRCClientHelper(irc_client)
    # Registration isn't interesting to most tests
    helper.reset_mock()
    return helper
