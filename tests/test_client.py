from unittest import mock

import pytest

from ircwire.client import ChannelInfo, Client, ConnectionState, WhoisRecord
from ircwire.irc import IRCMessage


ME = 'ircwire'
USER = 'nick!person@their.server'


# Construction

def test_unknown_option():
    with pytest.raises(TypeError):
        Client(server='irc.example.com', nick='ircwire', colour=True)


def test_server_and_nick_required():
    with pytest.raises(ValueError):
        Client(nick='ircwire')
    with pytest.raises(ValueError):
        Client(server='irc.example.com')


def test_initial_state(make_client):
    client = make_client()
    assert client.state is ConnectionState.DISCONNECTED
    assert client.nick == 'ircwire'
    assert client.writer is None
    assert client.disconnected.is_set()
    assert client.channellist == []
    assert client.prefix_for_mode == {}


def test_from_config():
    client = Client.from_config({
        'server': 'irc.example.com',
        'nick': 'ircwire',
        'port': '6697',
        'secure': True,
        'channels': '#one #two',
    })
    config = client._Client__config
    assert config['port'] == 6697
    assert config['secure'] is True
    assert config['channels'] == ['#one', '#two']
    assert config['retry_count'] is None


# Registration

async def test_registration(make_client):
    from . import mock_open_connection
    client = make_client(password='secret', user_name='bot', real_name='A Bot')
    events = []
    client.on('connect', events.append)
    with mock_open_connection() as m:
        await client.connect()
    m.assert_called_once_with('irc.example.com', 6667)
    sent = b''.join(args[0] for args, _ in client.writer.write.call_args_list)
    assert sent == (b'PASS :secret\r\n'
                    b'NICK :ircwire\r\n'
                    b'USER bot 8 * :A Bot\r\n')
    assert client.state is ConnectionState.REGISTERING
    assert len(events) == 1
    client.disconnect()
    await client.finished.wait()


async def test_registration_webirc(make_client):
    from . import mock_open_connection
    client = make_client(cloak_user='gw', cloak_passwd='gwpass', ircv_host='user.example.org')
    with mock_open_connection():
        await client.connect()
    sent = b''.join(args[0] for args, _ in client.writer.write.call_args_list)
    assert sent.startswith(b'WEBIRC gw gwpass user.example.org :127.0.0.1\r\nNICK :ircwire\r\n')
    client.disconnect()
    await client.finished.wait()


async def test_RPL_WELCOME(irc_client_helper):
    client = irc_client_helper.client
    events = irc_client_helper.record('registered')
    irc_client_helper.receive(':irc.example.com 001 ircwi :Welcome to the network')
    assert client.nick == 'ircwi'
    assert client.hostname == 'irc.example.com'
    assert client.state is ConnectionState.CONNECTED
    assert len(events) == 1
    assert events[0]['message'].command == 'RPL_WELCOME'


async def test_RPL_WELCOME_joins_channels(make_client):
    from . import mock_open_connection
    client = make_client(channels=['#one', '#two key'])
    with mock_open_connection():
        await client.connect()
    client.writer.write.reset_mock()
    client.line_received(':irc.example.com 001 ircwire :Welcome')
    sent = b''.join(args[0] for args, _ in client.writer.write.call_args_list)
    assert sent == b'JOIN :#one\r\nJOIN #two :key\r\n'
    client.disconnect()
    await client.finished.wait()


async def test_ERR_NICKNAMEINUSE(irc_client_helper):
    """If nick is in use, try the configured nick with an increasing number."""
    client = irc_client_helper.client
    irc_client_helper.receive(':irc.example.com 433 * ircwire :Nickname is already in use.')
    irc_client_helper.assert_sent('NICK :ircwire1')
    assert client.nick == 'ircwire1'
    irc_client_helper.receive(':irc.example.com 433 * ircwire1 :Nickname is already in use.')
    irc_client_helper.assert_sent('NICK :ircwire2')
    assert client.nick == 'ircwire2'


async def test_PING_PONG(irc_client_helper):
    irc_client_helper.receive('PING :i.am.a.server')
    irc_client_helper.assert_sent('PONG :i.am.a.server')


async def test_lines_emitted(irc_client_helper):
    events = irc_client_helper.record('recvLine', 'sendLine')
    irc_client_helper.receive('PING :i.am.a.server')
    assert [(e.event_type, e['line']) for e in events] == [
        ('recvLine', 'PING :i.am.a.server'),
        ('sendLine', 'PONG :i.am.a.server'),
    ]


# Messages

async def test_PRIVMSG_channel(irc_client_helper):
    events = irc_client_helper.record('message', 'message#', 'message:#Channel', 'message:#channel', 'pm')
    irc_client_helper.receive(f':{USER} PRIVMSG #Channel :hello')
    assert [e.event_type for e in events] == ['message', 'message#', 'message:#Channel', 'message:#channel']
    for e in events:
        assert e['nick'] == 'nick'
        assert e['target'] == '#Channel'
        assert e['text'] == 'hello'
        assert e['reply_to'] == '#Channel'
        assert isinstance(e['message'], IRCMessage)


async def test_PRIVMSG_pm(irc_client_helper):
    events = irc_client_helper.record('message', 'message#', 'pm')
    irc_client_helper.receive(f':{USER} PRIVMSG {ME} :psst')
    assert [e.event_type for e in events] == ['message', 'pm']
    assert events[1]['reply_to'] == 'nick'
    assert events[1]['text'] == 'psst'


async def test_PRIVMSG_server_prefix(irc_client_helper):
    events = irc_client_helper.record('message')
    irc_client_helper.receive(f':irc.example.com PRIVMSG {ME} :server says')
    assert events[0]['nick'] == 'irc.example.com'


async def test_PRIVMSG_missing_text(irc_client_helper):
    events = irc_client_helper.record('message')
    irc_client_helper.receive(f':{USER} PRIVMSG #channel')
    assert events[0]['text'] == ''


async def test_event_reply(irc_client_helper):
    @irc_client_helper.client.on('message')
    def echo(event):
        event.reply(f"you said {event['text']}")

    irc_client_helper.receive(f':{USER} PRIVMSG #channel :hello')
    irc_client_helper.assert_sent('PRIVMSG #channel :you said hello')


async def test_NOTICE(irc_client_helper):
    events = irc_client_helper.record('notice')
    irc_client_helper.receive(f':{USER} NOTICE #channel :a notice')
    assert events[0]['nick'] == 'nick'
    assert events[0]['target'] == '#channel'
    assert events[0]['text'] == 'a notice'


async def test_NOTICE_from_server(irc_client_helper):
    events = irc_client_helper.record('notice')
    irc_client_helper.receive('NOTICE AUTH :*** Looking up your hostname')
    assert events[0]['nick'] is None
    assert events[0]['target'] == 'AUTH'


# CTCP

async def test_ctcp_action(irc_client_helper):
    events = irc_client_helper.record('message', 'ctcp', 'ctcp-privmsg', 'action')
    irc_client_helper.receive(f':{USER} PRIVMSG #channel :\x01ACTION waves\x01')
    assert [e.event_type for e in events] == ['ctcp', 'ctcp-privmsg', 'action']
    assert events[0]['text'] == 'ACTION waves'
    assert events[0]['type'] == 'privmsg'
    assert events[2]['text'] == 'waves'
    assert events[2]['reply_to'] == '#channel'


async def test_ctcp_version(irc_client_helper):
    events = irc_client_helper.record('ctcp-version')
    irc_client_helper.receive(f':{USER} PRIVMSG {ME} :\x01VERSION\x01')
    assert len(events) == 1
    assert events[0]['nick'] == 'nick'


async def test_ctcp_ping(irc_client_helper):
    irc_client_helper.receive(f':{USER} PRIVMSG {ME} :\x01PING 12345\x01')
    irc_client_helper.assert_sent('NOTICE nick :\x01PING 12345\x01')


async def test_ctcp_reply(irc_client_helper):
    events = irc_client_helper.record('ctcp', 'ctcp-notice', 'notice')
    irc_client_helper.receive(f':{USER} NOTICE {ME} :\x01VERSION someclient 1.0\x01')
    assert [e.event_type for e in events] == ['ctcp', 'ctcp-notice']
    assert events[0]['type'] == 'notice'
    assert events[1]['text'] == 'VERSION someclient 1.0'


async def test_not_ctcp(irc_client_helper):
    """A single \\x01 doesn't make a CTCP message."""
    events = irc_client_helper.record('message', 'ctcp')
    irc_client_helper.receive(f':{USER} PRIVMSG #channel :\x01oops')
    assert [e.event_type for e in events] == ['message']


# Channels

async def test_JOIN(irc_client_helper):
    events = irc_client_helper.record('join', 'join:#channel')
    irc_client_helper.receive(f':{USER} JOIN #channel')
    assert [e.event_type for e in events] == ['join', 'join:#channel']
    assert events[1]['nick'] == 'nick'
    assert events[1]['channel'] == '#channel'


async def test_PART(irc_client_helper):
    events = irc_client_helper.record('part', 'part:#channel')
    irc_client_helper.receive(f':{USER} PART #channel :"goodbye"')
    irc_client_helper.receive(f':{USER} PART #channel')
    assert [e.event_type for e in events] == ['part', 'part:#channel', 'part', 'part:#channel']
    assert events[0]['reason'] == '"goodbye"'
    assert events[2]['reason'] is None


async def test_KICK(irc_client_helper):
    events = irc_client_helper.record('kick', 'kick:#channel')
    irc_client_helper.receive(f':{USER} KICK #channel somebody :reason')
    assert [e.event_type for e in events] == ['kick', 'kick:#channel']
    assert events[0]['nick'] == 'somebody'
    assert events[0]['by'] == 'nick'
    assert events[0]['reason'] == 'reason'
    irc_client_helper.client.send_line.assert_not_called()


async def test_KICK_self_rejoins(irc_client_helper):
    irc_client_helper.receive(f':{USER} KICK #channel {ME} :bye')
    irc_client_helper.assert_sent('JOIN :#channel')


class TestNoAutoRejoin:
    @pytest.fixture
    def irc_client_config(self):
        return {'auto_rejoin': False}

    async def test_KICK_self(self, irc_client_helper):
        irc_client_helper.receive(f':{USER} KICK #channel {ME} :bye')
        irc_client_helper.client.send_line.assert_not_called()


async def test_INVITE(irc_client_helper):
    events = irc_client_helper.record('invite')
    irc_client_helper.receive(f':{USER} INVITE {ME} :#secret')
    assert events[0]['channel'] == '#secret'
    assert events[0]['nick'] == 'nick'


async def test_QUIT(irc_client_helper):
    events = irc_client_helper.record('quit', 'selfQuit')
    irc_client_helper.receive(f':{USER} QUIT :goodbye')
    irc_client_helper.receive(f':{ME}!bot@robot.land QUIT :me too')
    assert [e.event_type for e in events] == ['quit', 'selfQuit']
    assert events[0]['nick'] == 'nick'
    assert events[0]['reason'] == 'goodbye'
    assert events[1]['reason'] == 'me too'


async def test_KILL(irc_client_helper):
    events = irc_client_helper.record('kill')
    irc_client_helper.receive(f':irc.example.com KILL somebody :flooding')
    assert events[0]['nick'] == 'somebody'
    assert events[0]['reason'] == 'flooding'


async def test_NICK(irc_client_helper):
    client = irc_client_helper.client
    events = irc_client_helper.record('nick', 'selfNick')
    irc_client_helper.receive(f':{USER} NICK :nick2')
    irc_client_helper.receive(f':{ME}!bot@robot.land NICK :ircwire2')
    assert [e.event_type for e in events] == ['nick', 'selfNick']
    assert (events[0]['old_nick'], events[0]['new_nick']) == ('nick', 'nick2')
    assert client.nick == 'ircwire2'
    # A NICK without a prefix is our own nick changing
    irc_client_helper.receive('NICK :ircwire3')
    assert events[2].event_type == 'selfNick'
    assert events[2]['old_nick'] == 'ircwire2'
    assert client.nick == 'ircwire3'


async def test_topic(irc_client_helper):
    events = irc_client_helper.record('topic')
    irc_client_helper.receive(f':irc.example.com 332 {ME} #channel :channel topic')
    irc_client_helper.receive(f':irc.example.com 331 {ME} #other :No topic is set')
    irc_client_helper.receive(f':{USER} TOPIC #channel :new topic')
    irc_client_helper.receive(f':{USER} TOPIC #channel')
    assert [(e['channel'], e['topic'], e['nick']) for e in events] == [
        ('#channel', 'channel topic', None),
        ('#other', None, None),
        ('#channel', 'new topic', 'nick'),
        ('#channel', None, 'nick'),
    ]


async def test_topic_who_time_ignored(irc_client_helper):
    events = irc_client_helper.record('topic')
    with irc_client_helper.patch('log') as log:
        irc_client_helper.receive(f':irc.example.com 333 {ME} #channel nick!user@host 1577836800')
        assert not log.warning.called
    assert events == []


async def test_names(irc_client_helper):
    events = irc_client_helper.record('names', 'end_of_names')
    irc_client_helper.receive(f':irc.example.com 005 {ME} CHANTYPES=# PREFIX=(ov)@+ :are supported by this server')
    irc_client_helper.receive(f':irc.example.com 353 {ME} = #channel :@alice +bob carol')
    irc_client_helper.receive(f':irc.example.com 366 {ME} #channel :End of /NAMES list.')
    assert events[0]['channel'] == '#channel'
    assert events[0]['names'] == {'alice': 'o', 'bob': 'v', 'carol': ''}
    assert events[1].event_type == 'end_of_names'
    irc_client_helper.assert_sent('MODE :#channel')


async def test_ISUPPORT_replaces_prefixes(irc_client_helper):
    client = irc_client_helper.client
    irc_client_helper.receive(f':irc.example.com 005 {ME} PREFIX=(qaohv)~&@%+ :are supported')
    assert client.mode_for_prefix['~'] == 'q'
    irc_client_helper.receive(f':irc.example.com 005 {ME} PREFIX=(ov)@+ :are supported')
    assert client.prefix_for_mode == {'o': '@', 'v': '+'}
    assert client.mode_for_prefix == {'@': 'o', '+': 'v'}


async def test_MODE(irc_client_helper):
    events = irc_client_helper.record('+mode', '-mode')
    irc_client_helper.receive(f':irc.example.com 005 {ME} PREFIX=(ov)@+ :are supported')
    irc_client_helper.receive(f':{USER} MODE #channel +o-v+b alice bob *!*@spam')
    assert [(e.event_type, e['mode'], e['argument']) for e in events] == [
        ('+mode', 'o', 'alice'),
        ('-mode', 'v', 'bob'),
        ('+mode', 'b', '*!*@spam'),
    ]
    assert all(e['channel'] == '#channel' and e['nick'] == 'nick' for e in events)


async def test_MODE_without_arguments(irc_client_helper):
    events = irc_client_helper.record('+mode', '-mode')
    irc_client_helper.receive(f':{USER} MODE #channel -nt+k')
    assert [(e.event_type, e['mode'], e['argument']) for e in events] == [
        ('-mode', 'n', None),
        ('-mode', 't', None),
        ('+mode', 'k', None),
    ]


async def test_channel_mode_and_creation(irc_client_helper):
    events = irc_client_helper.record('mode', 'created')
    irc_client_helper.receive(f':irc.example.com 324 {ME} #channel +nt')
    irc_client_helper.receive(f':irc.example.com 329 {ME} #channel 1577836800')
    assert (events[0]['channel'], events[0]['mode']) == ('#channel', '+nt')
    assert (events[1]['channel'], events[1]['time']) == ('#channel', '1577836800')


async def test_motd(irc_client_helper):
    events = irc_client_helper.record('motd')
    irc_client_helper.receive([
        f':irc.example.com 375 {ME} :- irc.example.com Message of the Day -',
        f':irc.example.com 372 {ME} :- Be nice',
        f':irc.example.com 376 {ME} :End of /MOTD command.',
    ])
    assert events[0]['motd'] == ('- irc.example.com Message of the Day -\n'
                                 '- Be nice\n'
                                 'End of /MOTD command.\n')


async def test_no_motd(irc_client_helper):
    events = irc_client_helper.record('motd', 'error')
    irc_client_helper.receive(f':irc.example.com 422 {ME} :MOTD File is missing')
    assert [e.event_type for e in events] == ['motd']
    assert events[0]['motd'] == 'MOTD File is missing\n'


# WHOIS

async def test_whois(irc_client_helper):
    client = irc_client_helper.client
    events = irc_client_helper.record('whois')
    callback = mock.Mock()
    client.whois('alice', callback)
    irc_client_helper.assert_sent('WHOIS :alice')
    irc_client_helper.receive([
        f':irc.example.com 311 {ME} alice ali alice.host * :Alice Liddell',
        f':irc.example.com 319 {ME} alice :@#one #two',
        f':irc.example.com 312 {ME} alice irc.example.com :The Server',
        f':irc.example.com 301 {ME} alice :gone fishing',
        f':irc.example.com 313 {ME} alice :is an IRC operator',
        f':irc.example.com 330 {ME} alice alice_acct :is logged in as',
        f':irc.example.com 317 {ME} alice 42 1577836800 :seconds idle, signon time',
        f':irc.example.com 318 {ME} alice :End of /WHOIS list.',
    ])
    assert events[0]['whois'] == WhoisRecord(
        nick='alice', user='ali', host='alice.host', realname='Alice Liddell',
        idle='42', channels=['@#one', '#two'], server='irc.example.com', serverinfo='The Server',
        operator='is an IRC operator', account='alice_acct', accountinfo='is logged in as',
        away='gone fishing',
    )
    callback.assert_called_once_with(events[0])
    assert client.whois_data == {}


async def test_whois_callback_filters_nick(irc_client_helper):
    callback = mock.Mock()
    irc_client_helper.client.whois('alice', callback)
    irc_client_helper.receive(f':irc.example.com 318 {ME} bob :End of /WHOIS list.')
    assert not callback.called
    irc_client_helper.receive(f':irc.example.com 318 {ME} alice :End of /WHOIS list.')
    irc_client_helper.receive(f':irc.example.com 318 {ME} alice :End of /WHOIS list.')
    callback.assert_called_once()


async def test_whois_empty(irc_client_helper):
    events = irc_client_helper.record('whois')
    irc_client_helper.receive(f':irc.example.com 318 {ME} ghost :End of /WHOIS list.')
    assert events[0]['whois'] == WhoisRecord('ghost')


async def test_away_without_whois(irc_client_helper):
    """RPL_AWAY outside a WHOIS (e.g. replying to PRIVMSG) doesn't start a record."""
    irc_client_helper.receive(f':irc.example.com 301 {ME} alice :gone fishing')
    assert irc_client_helper.client.whois_data == {}


# LIST

async def test_list(irc_client_helper):
    client = irc_client_helper.client
    events = irc_client_helper.record('channellist_start', 'channellist_item', 'channellist')
    client.list()
    irc_client_helper.assert_sent('LIST')
    irc_client_helper.receive([
        f':irc.example.com 321 {ME} Channel :Users  Name',
        f':irc.example.com 322 {ME} #one 12 :the first',
        f':irc.example.com 322 {ME} #two 3 :',
        f':irc.example.com 323 {ME} :End of /LIST',
    ])
    assert [e.event_type for e in events] == [
        'channellist_start', 'channellist_item', 'channellist_item', 'channellist',
    ]
    assert events[-1]['channels'] == [
        ChannelInfo(name='#one', user_count=12, topic='the first'),
        ChannelInfo(name='#two', user_count=3, topic=None),
    ]
    # Next listing starts afresh
    irc_client_helper.receive(f':irc.example.com 321 {ME} Channel :Users  Name')
    assert client.channellist == []


# Errors and unknown messages

async def test_ERROR(irc_client_helper):
    events = irc_client_helper.record('error')
    irc_client_helper.receive('ERROR :Closing Link: ircwire (Ping timeout)')
    assert events[0]['error'].args == ['Closing Link: ircwire (Ping timeout)']


async def test_error_reply(irc_client_helper):
    events = irc_client_helper.record('error')
    irc_client_helper.receive(f':irc.example.com 403 {ME} #nope :No such channel')
    assert events[0]['error'].command == 'ERR_NOSUCHCHANNEL'


async def test_umode_unknown_flag_not_emitted(irc_client_helper):
    events = irc_client_helper.record('error')
    irc_client_helper.receive(f':irc.example.com 501 {ME} :Unknown MODE flag')
    assert events == []


async def test_unhandled(irc_client_helper):
    with irc_client_helper.patch('log') as log:
        irc_client_helper.receive(':irc.example.com 999 arg1 :trailing')
        log.warning.assert_called_once()
        log.reset_mock()
        irc_client_helper.receive(f':irc.example.com 251 {ME} :There are 3 users')
        assert not log.warning.called


async def test_handler_exception_emits_error(irc_client_helper):
    events = irc_client_helper.record('error')
    after = mock.Mock()

    @irc_client_helper.client.on('join')
    def broken(event):
        raise ValueError('oops')

    irc_client_helper.client.on('join', after)
    irc_client_helper.receive(f':{USER} JOIN #channel')
    assert isinstance(events[0]['error'], ValueError)
    # Other handlers still run
    after.assert_called_once()


async def test_dispatch_exception_emits_error(irc_client_helper):
    events = irc_client_helper.record('error')
    with mock.patch.object(irc_client_helper.client, 'irc_JOIN', side_effect=KeyError('x')):
        irc_client_helper.receive(f':{USER} JOIN #channel')
    assert isinstance(events[0]['error'], KeyError)


# Commands

async def test_join(irc_client_helper):
    client = irc_client_helper.client
    callback = mock.Mock()
    client.join('#foo', callback)
    irc_client_helper.assert_sent('JOIN :#foo')
    irc_client_helper.receive(f':{ME}!bot@robot.land JOIN #foo')
    irc_client_helper.receive(f':{ME}!bot@robot.land JOIN #foo')
    callback.assert_called_once()
    assert callback.call_args[0][0]['channel'] == '#foo'


async def test_join_with_key(irc_client_helper):
    irc_client_helper.client.join('#foo sekrit')
    irc_client_helper.assert_sent('JOIN #foo :sekrit')


async def test_part(irc_client_helper):
    callback = mock.Mock()
    irc_client_helper.client.part('#foo', callback)
    irc_client_helper.assert_sent('PART :#foo')
    irc_client_helper.receive(f':{ME}!bot@robot.land PART #foo')
    callback.assert_called_once()


async def test_say(irc_client_helper):
    events = irc_client_helper.record('selfMessage')
    irc_client_helper.client.say('#channel', 'line one\r\nline two\n\n')
    irc_client_helper.assert_sent(['PRIVMSG #channel :line one', 'PRIVMSG #channel :line two'])
    assert [e['text'] for e in events] == ['line one', 'line two']
    assert all(e['target'] == '#channel' for e in events)


async def test_action(irc_client_helper):
    events = irc_client_helper.record('selfAction')
    irc_client_helper.client.action('#channel', 'bounces')
    irc_client_helper.assert_sent('PRIVMSG #channel :\x01ACTION bounces\x01')
    assert events[0]['text'] == 'bounces'


async def test_notice(irc_client_helper):
    irc_client_helper.client.notice('#channel', 'a notice')
    irc_client_helper.assert_sent('NOTICE #channel :a notice')


async def test_ctcp(irc_client_helper):
    irc_client_helper.client.ctcp('nick', 'privmsg', 'VERSION')
    irc_client_helper.assert_sent('PRIVMSG nick :\x01VERSION\x01')
    irc_client_helper.client.ctcp('nick', 'notice', 'VERSION ircwire')
    irc_client_helper.assert_sent('NOTICE nick :\x01VERSION ircwire\x01')


async def test_send(irc_client_helper):
    irc_client_helper.client.send('MODE', '#channel', '+o', 'nick')
    irc_client_helper.assert_sent('MODE #channel +o :nick')
    irc_client_helper.client.send('LIST')
    irc_client_helper.assert_sent('LIST')
