from collections import defaultdict
from datetime import datetime
from functools import partial
import asyncio
import logging

from ircwire.util import maybe_future


LOG = logging.getLogger('ircwire.events')


class EventBus:
    """
    A publish/subscribe event bus with support for asynchronous handlers.

    Handlers are subscribed to an event type and called with the
    :class:`Event` object.  :meth:`emit` calls all handlers for an event, in
    the order they were subscribed, before returning, so events are processed
    in the order they are emitted.  If a handler returns an awaitable, it is
    scheduled as a task on the running event loop.

    A handler that raises (or whose awaitable raises) doesn't prevent the
    remaining handlers from running.  The exception is passed to
    *on_exception* as ``on_exception(exception, event)`` if supplied,
    otherwise to the event loop's exception handler.

    :param on_exception: Called with exceptions raised by handlers
    """
    def __init__(self, on_exception=None):
        self.on_exception = on_exception
        self.handlers = defaultdict(list)
        self.futures = set()

    def subscribe(self, event_type, handler=None):
        """Call *handler* for each *event_type* event.

        Can also be used as a decorator:

        >>> bus = EventBus()
        >>> @bus.subscribe('message')
        ... def on_message(event):
        ...     pass
        """
        if handler is None:
            return partial(self.subscribe, event_type)
        self.handlers[event_type].append(handler)
        return handler

    def unsubscribe(self, event_type, handler):
        """Stop calling *handler* for *event_type* events."""
        try:
            self.handlers[event_type].remove(handler)
        except ValueError:
            LOG.warning('handler %r was not subscribed to %r', handler, event_type)

    def once(self, event_type, handler):
        """Call *handler* for the next *event_type* event only."""
        def wrapper(event):
            self.unsubscribe(event_type, wrapper)
            return handler(event)
        return self.subscribe(event_type, wrapper)

    def has_handlers(self, event_type):
        return len(self.handlers.get(event_type, ())) > 0

    def emit(self, event):
        """Run all handlers for *event*."""
        LOG.debug('emitting event: %s', event)
        # Handlers may unsubscribe themselves (or others) while running
        for handler in list(self.handlers.get(event.event_type, ())):
            LOG.debug('running handler: %r', handler)
            future = self._run_handler(handler, event)
            if future:
                self.futures.add(future)
                future.add_done_callback(self.futures.discard)

    def _run_handler(self, handler, event):
        """Call *handler* with *event* and report any exception.

        If *handler* returns an awaitable, then it is wrapped in a coroutine
        that will report any exception from awaiting it.
        """
        result = None
        try:
            result = handler(event)
        except Exception as e:
            self._handle_exception(e, event)
        future = maybe_future(result, log=LOG)
        if future:
            future = asyncio.ensure_future(self._finish_async_handler(future, event))
        return future

    async def _finish_async_handler(self, future, event):
        """Await *future* and report any exception.
        """
        try:
            await future
        except Exception as e:
            self._handle_exception(e, event)

    def _handle_exception(self, exception, event):
        if self.on_exception is not None:
            self.on_exception(exception, event)
        else:
            report_exception(exception, event)


def report_exception(exception, event, message='Unhandled exception in event handler'):
    """Pass *exception* to the running event loop's exception handler, or log it."""
    context = {
        'message': message,
        'exception': exception,
        'ircwire_event': event,
    }
    try:
        asyncio.get_running_loop().call_exception_handler(context)
    except RuntimeError:
        LOG.error(message, exc_info=exception)


class Event(dict):
    """IRC event information.

    Events are dicts of event information, plus some attributes which are
    applicable for all events.
    """
    #: The :class:`~ircwire.client.Client` which triggered the event.
    client = None
    #: The name of the event.
    event_type = None
    #: The value of :meth:`datetime.datetime.now()` when the event was
    #: triggered.
    datetime = None

    def __init__(self, client, event_type, data=None):
        dict.__init__(self, data if data is not None else {})

        self.client = client
        self.event_type = event_type
        self.datetime = datetime.now()

    def __str__(self):
        return f'<Event {self.event_type!r} {self!r}>'

    @classmethod
    def extend(cls, event, event_type=None, data=None):
        """Create a new event by extending an existing event.

        The main purpose of this classmethod is to duplicate an event as a new
        event type, preserving existing information.  For example:

        >>> e = Event(None, 'message', {'target': '#channel'})
        >>> Event.extend(e, 'message:#channel')['target']
        '#channel'
        """
        # Duplicate event information
        e = cls(event.client,
                event.event_type,
                event)
        e.datetime = event.datetime

        # Apply optional updates
        if event_type is not None:
            e.event_type = event_type
        if data is not None:
            e.update(data)

        return e

    def reply(self, message):
        """Send a reply.

        For events that have a ``reply_to`` key, instruct the :attr:`client`
        to send a reply.
        """
        self.client.say(self['reply_to'], message)
