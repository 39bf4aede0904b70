import asyncio
import enum
import logging
import re
import ssl
from typing import List, Optional

import attr

from . import config, util
from .events import Event, EventBus, report_exception
from .irc import CommandType, IRCCodec, IRCMessage
from .send import DirectSend, QueuedSend


LOG = logging.getLogger('ircwire.client')


class IRCClientError(Exception):
    pass


class IRCCertificateError(IRCClientError):
    """The server's TLS certificate was not trusted."""
    def __init__(self, reason):
        super().__init__(f'untrusted certificate: {reason}')
        self.reason = reason


class ConnectionState(enum.Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    TLS_PENDING = 'tls-pending'
    REGISTERING = 'registering'
    CONNECTED = 'connected'
    ABORTED = 'aborted'


@attr.s(slots=True)
class WhoisRecord:
    """WHOIS information for *nick*, collected from several numeric replies."""
    nick: str = attr.ib()
    user: Optional[str] = attr.ib(default=None)
    host: Optional[str] = attr.ib(default=None)
    realname: Optional[str] = attr.ib(default=None)
    idle: Optional[str] = attr.ib(default=None)
    channels: Optional[List[str]] = attr.ib(default=None)
    server: Optional[str] = attr.ib(default=None)
    serverinfo: Optional[str] = attr.ib(default=None)
    operator: Optional[str] = attr.ib(default=None)
    account: Optional[str] = attr.ib(default=None)
    accountinfo: Optional[str] = attr.ib(default=None)
    away: Optional[str] = attr.ib(default=None)


@attr.s(frozen=True, slots=True)
class ChannelInfo:
    """One channel from a ``LIST`` reply."""
    name: str = attr.ib()
    user_count = attr.ib()
    topic: Optional[str] = attr.ib(default=None)


class Client:
    """Internet Relay Chat client protocol.

    A line-oriented protocol for communicating with IRC servers.  It handles
    receiving data at several layers of abstraction:

    * :meth:`line_received`: decoded line
    * :meth:`message_received`: parsed :class:`~ircwire.irc.IRCMessage`
    * ``irc_<COMMAND>(msg)``: called when ``msg.command == '<COMMAND>'``
    * events emitted on :attr:`events`, e.g. ``message``, ``join:#channel``

    It also handles sending data at several layers of abstraction:

    * :meth:`send_line`: raw IRC command, e.g. ``client.send_line('JOIN #ircwire')``
    * :meth:`send`: command and arguments, e.g. ``client.send('JOIN', '#ircwire')``
    * ``<action>(...)``: e.g. ``client.join('#ircwire')``

    Subscribe to events with :meth:`on`:

    >>> client = Client(server='irc.libera.chat', nick='ircwire')
    >>> @client.on('registered')
    ... def joined(event):
    ...     event.client.join('#ircwire')
    """
    #: Codec for encoding/decoding IRC messages.
    codec = IRCCodec()

    #: Generate a default configuration.  Easier to call this and update the
    #: result than relying on ``dict.copy()``.
    DEFAULTS = staticmethod(lambda: dict(
        server=None,
        nick=None,
        password=None,
        user_name='ircwire',
        real_name='ircwire IRC client',
        cloak_user=None,
        cloak_passwd=None,
        ircv_host=None,
        port=6667,
        debug=False,
        show_errors=False,
        auto_rejoin=True,
        auto_connect=True,
        retry_count=None,
        retry_delay=10.0,
        secure=False,
        flood_protection=False,
        flood_protection_delay=1.0,
        strip_colors=False,
        heartbeat_interval=120.0,
        ping_timeout=30.0,
        quit_message='ircwire says goodbye',
        channels=[],
    ))

    class Config(config.Config):
        server = config.option(str, required=True, example="irc.libera.chat", help="IRC server hostname")
        port = config.option(int, default=6667, help="IRC server port")
        secure = config.option(bool, default=False, help="Connect using TLS")
        nick = config.option(str, required=True, example="ircwire", help="IRC nick")
        password = config.option(str, env="IRC_PASSWORD", help="Server password, sent with PASS")
        user_name = config.option(str, default="ircwire", help="IRC user")
        real_name = config.option(str, default="ircwire IRC client", help="IRC 'real name'")
        cloak_user = config.option(str, help="WEBIRC gateway user")
        cloak_passwd = config.option(str, env="IRC_CLOAK_PASSWD", help="WEBIRC gateway password")
        ircv_host = config.option(str, help="WEBIRC host to present for the connecting user")
        channels = config.option(config.WordList, default=list, example=["#ircwire"],
                                 help="Channels to join once registered")
        debug = config.option(bool, default=False, help="Debug logging for this connection")
        show_errors = config.option(bool, default=False, help="Log error replies from the server")
        auto_rejoin = config.option(bool, default=True, help="Rejoin a channel after being kicked")
        retry_count = config.option(int, help="Reconnection attempts before giving up (unset=unlimited)")
        retry_delay = config.option(float, default=10.0, help="Seconds to wait before reconnecting")
        flood_protection = config.option(bool, default=False, help="Limit the rate of outgoing lines")
        flood_protection_delay = config.option(float, default=1.0,
                                               help="Seconds between outgoing lines with flood protection")
        strip_colors = config.option(bool, default=False, help="Remove colour/formatting codes from received lines")
        heartbeat_interval = config.option(float, default=120.0, help="Seconds between client PINGs")
        ping_timeout = config.option(float, default=30.0, help="Seconds to wait for PONG before reconnecting")
        quit_message = config.option(str, default="ircwire says goodbye", help="QUIT message on disconnect")

    #: Certificate verification failures (by OpenSSL error code) that can be
    #: trusted anyway, see the ``invalidCert`` event.
    RECOVERABLE_CERT_ERRORS = {
        18: 'DEPTH_ZERO_SELF_SIGNED_CERT',
        10: 'CERT_HAS_EXPIRED',
    }

    #: Informational replies that are deliberately ignored.
    IGNORED_COMMANDS = {
        'RPL_YOURHOST',
        'RPL_CREATED',
        'RPL_MYINFO',
        'RPL_LUSERCLIENT',
        'RPL_LUSEROP',
        'RPL_LUSERUNKNOWN',
        'RPL_LUSERCHANNELS',
        'RPL_LUSERME',
        'RPL_LOCALUSERS',
        'RPL_GLOBALUSERS',
        'RPL_STATSCONN',
    }

    #: ``PREFIX`` token from RPL_ISUPPORT, e.g. ``PREFIX=(ov)@+``.
    ISUPPORT_PREFIX_REGEX = re.compile(r'PREFIX=\((.*?)\)(.*)')

    def __init__(self, *, loop=None, **kwargs):
        self._loop = loop

        self.__config = self.DEFAULTS()
        unknown = set(kwargs) - set(self.__config)
        if unknown:
            raise TypeError(f"unknown option(s): {', '.join(sorted(unknown))}")
        self.__config.update(**kwargs)
        if not self.__config['server'] or not self.__config['nick']:
            raise ValueError('server and nick are required')
        if ' ' in self.__config['user_name']:
            raise ValueError('user_name must not contain spaces')

        self.log = LOG.getChild(self.__config['server'])
        if self.__config['debug']:
            self.log.setLevel(logging.DEBUG)

        self.events = EventBus(on_exception=self._handler_exception)

        self.reader, self.writer = None, None
        self.state = ConnectionState.DISCONNECTED
        self.connected = asyncio.Event()
        self.disconnected = asyncio.Event()
        self.disconnected.set()
        self.finished = asyncio.Event()
        self._requested_disconnect = False
        # Bumped by connect() and disconnect(), timers armed under an older
        # generation do nothing when they fire
        self._generation = 0
        self._retry_count = 0
        self._retry_timer = None
        self._connect_task = None
        self._read_task = None
        self._heartbeat = None
        self._ping_timer = None
        self._trust_decision = None

        if self.__config['flood_protection']:
            self._send = QueuedSend(self._write_line,
                                    period=self.__config['flood_protection_delay'],
                                    log=self.log)
        else:
            self._send = DirectSend(self._write_line)

        self.nick = self.__config['nick']
        self.hostname = None
        self._nick_mod = 0
        self.prefix_for_mode = {}
        self.mode_for_prefix = {}
        self.whois_data = {}
        self.channellist = []
        self.motd = ''

    @classmethod
    def from_config(cls, data, *, loop=None):
        """Create a client from plain configuration *data*, validated against :class:`Client.Config`."""
        options = config.unstructure(config.structure(data, cls.Config))
        return cls(loop=loop, **{k: v for k, v in options.items() if v is not None})

    @property
    def loop(self):
        return self._loop or asyncio.get_running_loop()

    # Events

    def on(self, event_type, handler=None):
        """Subscribe *handler* to *event_type* events, or use as a decorator."""
        return self.events.subscribe(event_type, handler)

    def emit(self, event_type, **data):
        """Create and emit a new event."""
        event = Event(self, event_type, data)
        self.events.emit(event)
        return event

    def _emit_scoped(self, event, channel):
        """Emit a copy of *event* scoped to *channel*, e.g. ``join:#channel``.

        Channel names are case-insensitive, so a lower-case copy is emitted as
        well when it's different.
        """
        self.events.emit(Event.extend(event, f'{event.event_type}:{channel}'))
        if channel != channel.lower():
            self.events.emit(Event.extend(event, f'{event.event_type}:{channel.lower()}'))

    def _handler_exception(self, exception, event):
        if event.event_type == 'invalidCert':
            event['accept'](False)
        if self._requested_disconnect:
            self.log.debug('ignoring %r from %r handler during disconnect', exception, event.event_type)
        elif event.event_type == 'error':
            report_exception(exception, event, 'Unhandled exception in error handler')
        else:
            self.log.error('Unhandled exception in %r handler', event.event_type, exc_info=exception)
            self.emit('error', error=exception)

    # Connection lifecycle

    async def __aenter__(self):
        if self.__config['auto_connect']:
            await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        self.disconnect()

    async def run(self):
        """Connect, reconnecting when the connection is lost, until
        :meth:`disconnect` is called or the retry limit is reached."""
        await self.connect()
        await self.finished.wait()

    async def connect(self, retry_count=0):
        """Connect to the IRC server.

        *retry_count* is the number of reconnection attempts made so far.
        """
        if self.writer is not None or self.state in {ConnectionState.CONNECTING, ConnectionState.TLS_PENDING}:
            self.log.warning('ignored attempt to connect when already connected (%s)', self.state.value)
            return

        self._cancel_retry()
        self._generation += 1
        generation = self._generation
        self._retry_count = retry_count
        self._requested_disconnect = False
        self.finished.clear()
        self.state = ConnectionState.CONNECTING

        host, port = self.__config['server'], self.__config['port']
        self.log.debug('connecting to %s:%s...', host, port)
        self.emit('connecting')
        try:
            reader, writer = await self._open_connection(host, port)
        except IRCCertificateError as e:
            if generation != self._generation:
                return
            # Retrying would only ask about the same certificate again
            self.emit('netError', error=e)
            self._requested_disconnect = True
            self.connection_lost()
            return
        except (OSError, IRCClientError) as e:
            if generation != self._generation:
                return
            self.log.debug('connection failed: %r', e)
            self.emit('netError', error=e)
            self.connection_lost()
            return

        if generation != self._generation:
            # disconnect() was called while connecting
            writer.close()
            return

        self.reader, self.writer = reader, writer
        self.connected.set()
        self.disconnected.clear()
        self._send.start()
        self._read_task = self.loop.create_task(self.read_loop(writer))
        self.connection_made()

    async def _open_connection(self, host, port):
        if not self.__config['secure']:
            return await asyncio.open_connection(host, port)

        try:
            return await asyncio.open_connection(host, port, ssl=ssl.create_default_context())
        except ssl.SSLCertVerificationError as e:
            reason = self.RECOVERABLE_CERT_ERRORS.get(getattr(e, 'verify_code', None))
            if reason is None:
                reason = getattr(e, 'verify_message', None) or str(e)
                self.log.error('TLS auth error: %s', reason)
                raise IRCCertificateError(reason) from e

        # Let the user decide about this certificate
        self.log.warning('Certificate needs manual trust: %s', reason)
        self.state = ConnectionState.TLS_PENDING
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        reader, writer = await asyncio.open_connection(host, port, ssl=context)
        ssl_object = writer.get_extra_info('ssl_object')
        cert = ssl_object.getpeercert(binary_form=True) if ssl_object is not None else None
        if not await self._trust_certificate(cert, reason):
            writer.close()
            self.log.error('TLS auth error: %s', reason)
            raise IRCCertificateError(reason)
        return reader, writer

    async def _trust_certificate(self, cert, reason):
        """Emit ``invalidCert`` and wait for a handler to call ``event['accept'](trusted)``.

        Nobody listening means the certificate isn't trusted.
        """
        if not self.events.has_handlers('invalidCert'):
            return False
        decision = self._trust_decision = self.loop.create_future()

        def accept(trusted=True):
            if not decision.done():
                decision.set_result(bool(trusted))

        self.emit('invalidCert', cert=cert, reason=reason, accept=accept)
        try:
            return await decision
        finally:
            self._trust_decision = None

    def connection_made(self):
        """Callback for successful connection.

        Register with the IRC server.
        """
        self.log.debug('connection made')
        self.state = ConnectionState.REGISTERING
        password = self.__config['password']
        if password:
            self.send('PASS', password)

        cloak = [self.__config[k] for k in ('cloak_user', 'cloak_passwd', 'ircv_host')]
        if all(cloak):
            self.send('WEBIRC', *cloak, '127.0.0.1')

        nick = self.__config['nick']
        self.send('NICK', nick)
        self.nick = nick
        self.send('USER', self.__config['user_name'], 8, '*', self.__config['real_name'])
        self.emit('connect')

    async def read_loop(self, writer):
        """Read and dispatch lines until the connection closes."""
        reader = self.reader
        while True:
            try:
                line = await reader.readline()
            except (OSError, ValueError) as e:
                self.log.debug('connection got error: %r', e)
                self.emit('netError', error=e)
                break
            if not line.endswith(b'\n'):
                break
            self.line_received(self.codec.decode(line.rstrip(b'\r\n')))
        self._close_transport()
        self.connection_lost(writer)

    def connection_lost(self, writer=None):
        """Handle a closed connection by scheduling a reconnect.

        Won't reconnect if the closed connection was deliberate (i.e.
        :meth:`disconnect` was called) or *retry_count* attempts have already
        been made.
        """
        if writer is not None and writer is not self.writer:
            return
        self.log.debug('connection lost')
        self.stop_heartbeat()
        cancelled = self._send.stop()
        if cancelled:
            self.log.warning(f"{len(cancelled)} outgoing line(s) discarded")
        self.reader, self.writer = None, None
        self.connected.clear()
        self.disconnected.set()
        self.state = ConnectionState.DISCONNECTED
        self.emit('close')

        if self._requested_disconnect:
            self.finished.set()
            return

        retry_limit = self.__config['retry_count']
        if retry_limit is not None and self._retry_count >= retry_limit:
            self.log.info('Maximum retry count (%s) reached, aborting', retry_limit)
            self.state = ConnectionState.ABORTED
            self.emit('abort', retry_count=retry_limit)
            self.finished.set()
            return

        delay = self.__config['retry_delay']
        self.log.info('Disconnected, reconnecting in %s seconds', delay)
        self._retry_timer = self.loop.call_later(delay, self._retry, self._generation, self._retry_count + 1)

    def _retry(self, generation, retry_count):
        if generation != self._generation:
            return
        self._retry_timer = None
        self._connect_task = self.loop.create_task(self.connect(retry_count))

    def _cancel_retry(self):
        if self._retry_timer is not None:
            self.log.debug('clearing retry timer')
            self._retry_timer.cancel()
            self._retry_timer = None

    def _close_transport(self):
        if self.writer is not None and not self.writer.is_closing():
            self.writer.close()

    def disconnect(self, message=None, callback=None):
        """Disconnect from the IRC server, sending ``QUIT`` first.

        Stops any pending reconnection.  *callback* is called once the
        connection is closing (immediately if there is no connection).
        """
        self.log.debug('client disconnect')
        self._generation += 1
        self.stop_heartbeat()
        self._cancel_retry()
        if self._trust_decision is not None and not self._trust_decision.done():
            self._trust_decision.set_result(False)

        if self.writer is None:
            self.log.debug('disconnect called when not connected')
            self._requested_disconnect = True
            if self.state is not ConnectionState.ABORTED:
                self.state = ConnectionState.DISCONNECTED
            self.finished.set()
        else:
            if not self.writer.is_closing():
                # Bypass the send strategy, this is the last thing we'll send
                self._write_line(self.codec.encode(f"QUIT :{message or self.__config['quit_message']}"))
            self._requested_disconnect = True
            self._close_transport()

        if callback is not None:
            callback()

    # Heartbeat

    def start_heartbeat(self):
        self.stop_heartbeat()
        interval = self.__config['heartbeat_interval']
        self._heartbeat = self.loop.create_task(self._send_heartbeats(interval))

    def stop_heartbeat(self):
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None
        self.stop_ping_timeout()

    async def _send_heartbeats(self, interval):
        """Send ``PING`` every *interval* seconds, expecting a ``PONG`` soon after."""
        while True:
            await asyncio.sleep(interval)
            self.send('PING', self.hostname or self.__config['server'])
            self.start_ping_timeout()

    def start_ping_timeout(self):
        self.stop_ping_timeout()
        self._ping_timer = self.loop.call_later(self.__config['ping_timeout'],
                                                self._ping_timed_out, self._generation)

    def stop_ping_timeout(self):
        if self._ping_timer is not None:
            self._ping_timer.cancel()
            self._ping_timer = None

    def _ping_timed_out(self, generation):
        if generation != self._generation or self._ping_timer is None:
            return
        self._ping_timer = None
        self.log.warning('ping timeout, reconnecting')
        self.emit('netError', error=IRCClientError('ping timeout'))
        self._close_transport()

    # Receiving

    def line_received(self, line: str):
        """Callback for received raw IRC line."""
        self.emit('recvLine', line=line)
        msg = IRCMessage.parse(line, self.__config['strip_colors'])
        self.log.debug('>>> %s', msg.pretty)
        try:
            self.message_received(msg)
        except Exception as e:
            if self._requested_disconnect:
                self.log.debug('ignoring %r while disconnecting', e)
            else:
                self.log.exception('Uncaught error for: %s', line)
                self.emit('error', error=e)

    def message_received(self, msg):
        """Callback for received parsed IRC message."""
        method = getattr(self, 'irc_' + msg.command, None)
        if method is not None:
            method(msg)
        elif msg.command_type is CommandType.ERROR:
            self.emit('error', error=msg)
            if self.__config['show_errors']:
                self.log.error('ERROR: %r', msg)
        elif msg.command not in self.IGNORED_COMMANDS:
            self.log.warning('Unhandled message: %r', msg)

    # Sending

    def send_line(self, line: str):
        """Send a raw IRC line to the server.

        Encodes and sends *line* to the server. If the line would be longer than the
        maximum allowed by RFC 1459, it is trimmed to fit (without breaking UTF-8
        sequences).

        If flood protection is enabled, the line may not be sent immediately.
        Lines sent while there is no connection are dropped.
        """
        if self.writer is None or self._requested_disconnect:
            self.log.debug('dropping line, not connected: %r', line)
            return None
        encoded = self.codec.encode(line)
        trimmed = util.truncate_utf8(encoded, 510)  # RFC line length is 512 including \r\n
        if len(trimmed) < len(encoded):
            self.log.warning(f"outgoing line trimmed from {len(encoded)} to {len(trimmed)} bytes")
        return self._send(trimmed)

    def send(self, command, *args):
        """Send *command* with *args*.

        The last argument is always sent as the trailing parameter:

        ``client.send('PRIVMSG', '#channel', 'hi')`` sends ``PRIVMSG #channel :hi``.
        """
        params = [str(a) for a in args]
        if params:
            params[-1] = ':' + params[-1]
        return self.send_line(' '.join([command] + params))

    def _write_line(self, data: bytes):
        """Actually send the line to the server."""
        if self.writer is None or self._requested_disconnect:
            self.log.debug('dropping line, not connected: %r', data)
            return
        line = self.codec.decode(data)
        self.log.debug('<<< %s', line)
        self.emit('sendLine', line=line)
        self.writer.write(data + b'\r\n')

    def join(self, channel, callback=None):
        """Join a channel, ``channel`` may include a key (``"#channel key"``).

        *callback* is called with the ``join`` event for the channel.
        """
        parts = channel.split(' ')
        if callback is not None:
            self.events.once(f'join:{parts[0]}', callback)
        self.send('JOIN', *parts)

    def part(self, channel, callback=None):
        """Leave a channel."""
        if callback is not None:
            self.events.once(f'part:{channel}', callback)
        self.send('PART', channel)

    def say(self, target, text):
        """Send *text* to a channel/nick, one ``PRIVMSG`` per line."""
        if text is None:
            return
        for line in util.split_lines(text):
            self.send('PRIVMSG', target, line)
            self.emit('selfMessage', target=target, text=line)

    def action(self, target, text):
        """Send *text* as CTCP ACTION(s) to a channel/nick."""
        if text is None:
            return
        for line in util.split_lines(text):
            self.send('PRIVMSG', target, f'\x01ACTION {line}\x01')
            self.emit('selfAction', target=target, text=line)

    def notice(self, target, text):
        self.send('NOTICE', target, text)

    def ctcp(self, to, type_, text):
        """Send CTCP *text* as a ``privmsg`` (query) or ``notice`` (reply)."""
        if type_ == 'privmsg':
            self.say(to, f'\x01{text}\x01')
        else:
            self.notice(to, f'\x01{text}\x01')

    def whois(self, nick, callback=None):
        """Ask the server about *nick*.

        *callback* is called with the ``whois`` event for *nick*.
        """
        if callback is not None:
            def wrapper(event):
                if event['whois'].nick == nick:
                    self.events.unsubscribe('whois', wrapper)
                    return callback(event)
            self.events.subscribe('whois', wrapper)
        self.send('WHOIS', nick)

    def list(self, *args):
        """Request the channel list, see the ``channellist`` event."""
        self.send('LIST', *args)

    # Messages received from the server

    def irc_RPL_WELCOME(self, msg):
        """Received welcome from server, now we can start communicating.

        Welcome includes the accepted nick as the first parameter.  This may
        be different to the nick we requested (e.g. truncated to a maximum
        length).
        """
        self.hostname = msg.prefix
        self.nick = msg.pad_args(1)[0] or self.nick
        self.state = ConnectionState.CONNECTED
        self.emit('registered', message=msg)
        if self.writer is not None:
            self.start_heartbeat()
        for channel in self.__config['channels'] or ():
            self.join(channel)

    def irc_RPL_ISUPPORT(self, msg):
        """Server features, we only care about the channel mode prefixes."""
        for arg in msg.args:
            match = self.ISUPPORT_PREFIX_REGEX.search(arg)
            if match:
                modes, prefixes = match.groups()
                self.prefix_for_mode = dict(zip(modes, prefixes))
                self.mode_for_prefix = dict(zip(prefixes, modes))

    def irc_ERR_NICKNAMEINUSE(self, msg):
        """Attempted nick is in use, try the configured nick with a number appended."""
        self._nick_mod += 1
        new_nick = f"{self.__config['nick']}{self._nick_mod}"
        self.send('NICK', new_nick)
        self.nick = new_nick

    def irc_PING(self, msg):
        """IRC PING/PONG keepalive."""
        self.send('PONG', msg.pad_args(1, '')[0])

    def irc_PONG(self, msg):
        self.stop_ping_timeout()

    def irc_NOTICE(self, msg):
        target, text = msg.pad_args(2)[:2]
        text = text or ''
        if self._is_ctcp(text):
            self._handle_ctcp(msg.nick, target, text, 'notice')
            return
        self.emit('notice', nick=msg.nick, target=target, text=text, message=msg,
                  reply_to=self._reply_to(msg.nick, target))

    def irc_PRIVMSG(self, msg):
        nick = msg.nick
        if nick is None and msg.server is not None:
            nick = msg.server.split('!')[0]
        target, text = msg.pad_args(2)[:2]
        text = text or ''
        if self._is_ctcp(text):
            self._handle_ctcp(nick, target, text, 'privmsg')
            return

        data = dict(nick=nick, target=target, text=text, message=msg, reply_to=self._reply_to(nick, target))
        event = self.emit('message', **data)
        if util.is_channel(target):
            self.events.emit(Event.extend(event, 'message#'))
            self._emit_scoped(event, target)
        if target == self.nick:
            self.emit('pm', **data)

    def irc_MODE(self, msg):
        """Mode changes, one ``+mode``/``-mode`` event per mode letter."""
        self.log.debug('MODE: %s', ' '.join(msg.args))
        channel, modes = msg.pad_args(2)[:2]
        mode_args = msg.args[2:]
        adding = True
        for mode in modes or '':
            if mode == '+':
                adding = True
                continue
            if mode == '-':
                adding = False
                continue

            argument = None
            if mode in self.prefix_for_mode:
                # User mode in a channel, e.g. +o nick
                argument = mode_args.pop(0) if mode_args else None
            elif mode in 'bkl':
                argument = (mode_args.pop(0) if mode_args else None) or None
            self.emit('+mode' if adding else '-mode',
                      channel=channel, nick=msg.nick, mode=mode, argument=argument, message=msg)

    def irc_NICK(self, msg):
        """Somebody's nick changed."""
        # Some bouncers send NICK without a prefix after reconnecting to the
        # server, in which case it's our nick that changed
        old_nick = msg.nick if msg.nick is not None else self.nick
        new_nick = msg.pad_args(1)[0]
        self.log.debug('NICK: %s changes nick to %s', old_nick, new_nick)
        if old_nick == self.nick:
            self.nick = new_nick
            self.emit('selfNick', old_nick=old_nick, new_nick=new_nick, message=msg)
        else:
            self.emit('nick', old_nick=old_nick, new_nick=new_nick, message=msg)

    @staticmethod
    def _motd_line(msg):
        return (msg.pad_args(2)[1] or '') + '\n'

    def irc_RPL_MOTDSTART(self, msg):
        self.motd = self._motd_line(msg)

    def irc_RPL_MOTD(self, msg):
        self.motd += self._motd_line(msg)

    def irc_RPL_ENDOFMOTD(self, msg):
        self.motd += self._motd_line(msg)
        self.emit('motd', motd=self.motd)

    irc_ERR_NOMOTD = irc_RPL_ENDOFMOTD

    def irc_RPL_NAMREPLY(self, msg):
        """Channel members, with their mode prefixes turned into mode letters."""
        _, _, channel, users = msg.pad_args(4)[:4]
        names = {}
        for user in (users or '').split():
            if user[0] in self.mode_for_prefix:
                names[user[1:]] = self.mode_for_prefix[user[0]]
            else:
                names[user] = ''
        self.emit('names', channel=channel, names=names, message=msg)

    def irc_RPL_ENDOFNAMES(self, msg):
        channel = msg.pad_args(2)[1]
        self.emit('end_of_names', channel=channel, message=msg)
        self.send('MODE', channel)

    def irc_RPL_TOPIC(self, msg):
        """Topic notification, usually after joining a channel."""
        _, channel, topic = msg.pad_args(3)[:3]
        self.emit('topic', channel=channel, topic=topic, nick=None, message=msg)

    def irc_RPL_NOTOPIC(self, msg):
        channel = msg.pad_args(2)[1]
        self.emit('topic', channel=channel, topic=None, nick=None, message=msg)

    def irc_TOPIC(self, msg):
        """A channel's topic changed."""
        channel, topic = msg.pad_args(2)[:2]
        self.emit('topic', channel=channel, topic=topic, nick=msg.nick, message=msg)

    def irc_RPL_TOPICWHOTIME(self, msg):
        """Who set the topic, and when: not reported."""
        # TODO: emit as part of the topic event once RPL_TOPIC and RPL_TOPICWHOTIME are paired up
        pass

    def irc_RPL_CHANNELMODEIS(self, msg):
        _, channel, mode = msg.pad_args(3)[:3]
        self.emit('mode', channel=channel, mode=mode, message=msg)

    def irc_RPL_CREATIONTIME(self, msg):
        _, channel, time = msg.pad_args(3)[:3]
        self.emit('created', channel=channel, time=time, message=msg)

    def _add_whois_data(self, nick, key, value, only_if_exists=False):
        if only_if_exists and nick not in self.whois_data:
            return
        record = self.whois_data.setdefault(nick, WhoisRecord(nick))
        setattr(record, key, value)

    def irc_RPL_AWAY(self, msg):
        _, nick, away = msg.pad_args(3)[:3]
        self._add_whois_data(nick, 'away', away, only_if_exists=True)

    def irc_RPL_WHOISUSER(self, msg):
        _, nick, user, host, _, realname = msg.pad_args(6)[:6]
        self._add_whois_data(nick, 'user', user)
        self._add_whois_data(nick, 'host', host)
        self._add_whois_data(nick, 'realname', realname)

    def irc_RPL_WHOISIDLE(self, msg):
        _, nick, idle = msg.pad_args(3)[:3]
        self._add_whois_data(nick, 'idle', idle)

    def irc_RPL_WHOISCHANNELS(self, msg):
        _, nick, channels = msg.pad_args(3)[:3]
        self._add_whois_data(nick, 'channels', (channels or '').split())

    def irc_RPL_WHOISSERVER(self, msg):
        _, nick, server, serverinfo = msg.pad_args(4)[:4]
        self._add_whois_data(nick, 'server', server)
        self._add_whois_data(nick, 'serverinfo', serverinfo)

    def irc_RPL_WHOISOPERATOR(self, msg):
        _, nick, operator = msg.pad_args(3)[:3]
        self._add_whois_data(nick, 'operator', operator)

    def irc_RPL_WHOISACCOUNT(self, msg):
        _, nick, account, accountinfo = msg.pad_args(4)[:4]
        self._add_whois_data(nick, 'account', account)
        self._add_whois_data(nick, 'accountinfo', accountinfo)

    def irc_RPL_ENDOFWHOIS(self, msg):
        nick = msg.pad_args(2)[1]
        record = self.whois_data.pop(nick, None) or WhoisRecord(nick)
        self.emit('whois', whois=record)

    def irc_RPL_LISTSTART(self, msg):
        self.channellist = []
        self.emit('channellist_start')

    def irc_RPL_LIST(self, msg):
        _, name, users, topic = msg.pad_args(4)[:4]
        try:
            user_count = int(users)
        except (TypeError, ValueError):
            user_count = users
        channel = ChannelInfo(name=name, user_count=user_count, topic=topic)
        self.emit('channellist_item', channel=channel)
        self.channellist.append(channel)

    def irc_RPL_LISTEND(self, msg):
        self.emit('channellist', channels=self.channellist)

    def irc_JOIN(self, msg):
        """Somebody joined a channel."""
        channel = msg.pad_args(1)[0]
        event = self.emit('join', channel=channel, nick=msg.nick, message=msg)
        if channel:
            self._emit_scoped(event, channel)

    def irc_PART(self, msg):
        """Somebody left a channel."""
        channel, reason = msg.pad_args(2)[:2]
        event = self.emit('part', channel=channel, nick=msg.nick, reason=reason, message=msg)
        if channel:
            self._emit_scoped(event, channel)

    def irc_KICK(self, msg):
        """Somebody was kicked from a channel."""
        channel, nick, reason = msg.pad_args(3)[:3]
        event = self.emit('kick', channel=channel, nick=nick, by=msg.nick, reason=reason, message=msg)
        if channel:
            self._emit_scoped(event, channel)
        if nick == self.nick and self.__config['auto_rejoin']:
            self.join(channel)

    def irc_KILL(self, msg):
        nick, reason = msg.pad_args(2)[:2]
        self.emit('kill', nick=nick, reason=reason, message=msg)

    def irc_INVITE(self, msg):
        _, channel = msg.pad_args(2)[:2]
        self.emit('invite', channel=channel, nick=msg.nick, message=msg)

    def irc_QUIT(self, msg):
        """Somebody quit the server."""
        reason = msg.pad_args(1)[0]
        if msg.nick == self.nick:
            self.emit('selfQuit', reason=reason)
        else:
            self.emit('quit', nick=msg.nick, reason=reason, message=msg)

    def irc_ERROR(self, msg):
        self.emit('error', error=msg)

    def irc_ERR_UMODEUNKNOWNFLAG(self, msg):
        if self.__config['show_errors']:
            self.log.error('ERROR: %r', msg)

    # CTCP

    @staticmethod
    def _is_ctcp(text):
        return text.startswith('\x01') and text.rfind('\x01') > 0

    @staticmethod
    def _reply_to(nick, target):
        return target if util.is_channel(target) else nick

    def _handle_ctcp(self, nick, target, text, type_):
        """Handle a CTCP query (*type_* is ``privmsg``) or reply (``notice``)."""
        text = text[1:]
        text = text[:text.index('\x01')]
        verb, sep, data = text.partition(' ')
        self.emit('ctcp', nick=nick, target=target, text=text, type=type_)
        self.emit(f'ctcp-{type_}', nick=nick, target=target, text=text)
        if type_ == 'privmsg' and text == 'VERSION':
            self.emit('ctcp-version', nick=nick, target=target)
        if verb == 'ACTION' and sep:
            self.emit('action', nick=nick, target=target, text=data, reply_to=self._reply_to(nick, target))
        if verb == 'PING' and type_ == 'privmsg' and sep:
            self.ctcp(nick, 'notice', text)
