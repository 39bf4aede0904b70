from contextlib import contextmanager
from unittest import mock
import asyncio


def mock_stream_writer(reader):
    """Create a fake :class:`asyncio.StreamWriter` paired with *reader*.

    Closing the writer feeds EOF to the reader, like closing a real transport.
    """
    writer = mock.Mock(spec=asyncio.StreamWriter)
    closing = False

    def close():
        nonlocal closing
        if not closing:
            closing = True
            reader.feed_eof()

    writer.close.side_effect = close
    writer.is_closing.side_effect = lambda: closing
    writer.get_extra_info.side_effect = lambda name, default=None: default
    return writer


async def _open_connection(*args, **kwargs):
    reader = asyncio.StreamReader()
    return reader, mock_stream_writer(reader)


@contextmanager
def mock_open_connection(side_effect=_open_connection):
    """Replace ``asyncio.open_connection`` with a fake stream reader/writer."""
    with mock.patch('asyncio.open_connection', new_callable=mock.AsyncMock, side_effect=side_effect) as m:
        yield m


@contextmanager
def mock_open_connection_paused():
    """Like :func:`mock_open_connection`, but connecting blocks until ``m.resume()`` is called."""
    paused = asyncio.Event()

    async def open_connection(*args, **kwargs):
        await paused.wait()
        return await _open_connection(*args, **kwargs)

    with mock_open_connection(open_connection) as m:
        m.resume = paused.set
        yield m
