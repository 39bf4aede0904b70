import codecs
import enum
import re
from typing import List, Optional

import attr

from ._rfc import NUMERIC_REPLIES
from . import colors, util


class CommandType(enum.Enum):
    """Classification of a message's command."""
    NORMAL = 'normal'
    REPLY = 'reply'
    ERROR = 'error'


@attr.s(frozen=True, slots=True)
class IRCMessage:
    """Represents an IRC message.

    The IRC message format, paraphrased and simplified from RFC2812, is::

        message = [":" prefix " "] command {" " parameter} [" :" trailing]

    Has the following attributes:

    :param raw: The raw IRC message
    :param prefix: Prefix part of the message, usually the origin
    :param nick: Nick from a ``nick!user@host`` prefix
    :param user: User from a ``nick!user@host`` prefix
    :param host: Host from a ``nick!user@host`` prefix
    :param server: The prefix, if it wasn't a ``nick!user@host`` prefix
    :param raw_command: IRC command as received
    :param command: Name of IRC command (see below)
    :param command_type: :class:`CommandType` of the command
    :param args: List of command parameters (including trailing)

    The *command* attribute is intended to be the "readable" form of the
    *raw_command*.  Usually it will be the same as *raw_command*, but numeric
    replies with a known name will have their corresponding name instead.
    """
    raw: str = attr.ib(validator=util.type_validator)
    prefix: Optional[str] = attr.ib(validator=util.type_validator)
    nick: Optional[str] = attr.ib(validator=util.type_validator)
    user: Optional[str] = attr.ib(validator=util.type_validator)
    host: Optional[str] = attr.ib(validator=util.type_validator)
    server: Optional[str] = attr.ib(validator=util.type_validator)
    raw_command: str = attr.ib(validator=util.type_validator)
    command: str = attr.ib(validator=util.type_validator)
    command_type: CommandType = attr.ib(validator=util.type_validator)
    args: List[str] = attr.ib(validator=attr.validators.deep_iterable(attr.validators.instance_of(str), None))

    #: Prefix, up to the first space(s).
    PREFIX_REGEX = re.compile(r':(?P<prefix>[^ ]+) +')
    #: User prefix, ``nick[!user@host]``.
    USER_REGEX = re.compile(r'(?P<nick>[_a-zA-Z0-9\[\]\\`^{}|-]*)(!(?P<user>[^@]+)@(?P<host>.*))?')
    #: Command, and any spaces after it.
    COMMAND_REGEX = re.compile(r'(?P<command>[^ ]+) *')

    @classmethod
    def parse(cls, line, strip_formatting=False):
        """Create an :class:`IRCMessage` object by parsing a raw message.

        Never fails: anything missing from *line* is left as None or empty.
        If *strip_formatting* is True, colour and formatting codes are removed
        first.
        """
        raw = line
        if strip_formatting:
            line = colors.strip_formatting(line)

        fields = dict(prefix=None, nick=None, user=None, host=None, server=None)
        match = cls.PREFIX_REGEX.match(line)
        if match is not None:
            prefix = fields['prefix'] = match.group('prefix')
            line = line[match.end():]
            user_match = cls.USER_REGEX.fullmatch(prefix)
            if user_match is None:
                fields['server'] = prefix
            else:
                fields.update(zip(('nick', 'user', 'host'), user_match.group('nick', 'user', 'host')))

        match = cls.COMMAND_REGEX.match(line)
        if match is None:
            raw_command = ''
        else:
            raw_command = match.group('command')
            line = line[match.end():]

        command_name = NUMERIC_REPLIES.get(raw_command)
        if command_name is None:
            command, command_type = raw_command, CommandType.NORMAL
        elif command_name.startswith('ERR_'):
            command, command_type = command_name, CommandType.ERROR
        else:
            command, command_type = command_name, CommandType.REPLY

        return cls(raw=raw,
                   raw_command=raw_command,
                   command=command,
                   command_type=command_type,
                   args=cls._split_args(line),
                   **fields)

    @staticmethod
    def _split_args(params):
        # Trailing parameter starts with the first ":" that begins a token
        if params.startswith(':'):
            middle, trailing = '', params[1:]
        else:
            middle, sep, trailing = params.partition(' :')
            if not sep:
                trailing = None
        args = middle.split()
        if trailing:
            args.append(trailing)
        return args

    @property
    def pretty(self):
        """Get a more readable version of the raw IRC message.

        Pretty much identical to the raw IRC message, but numeric commands
        that have names end up being ``NUMERIC/NAME``.
        """
        return ''.join([
            (':' + self.prefix + ' ') if self.prefix else '',
            self.raw_command,
            ('/' + self.command) if self.command != self.raw_command else '',
            ''.join(' ' + a for a in self.args),
        ])

    def pad_args(self, length, default=None):
        """Pad parameters to *length* with *default*.

        Useful when a command has optional parameters:

        >>> msg = IRCMessage.parse(':nick!user@host KICK #channel other')
        >>> channel, nick, reason = msg.args
        Traceback (most recent call last):
          ...
        ValueError: not enough values to unpack (expected 3, got 2)
        >>> channel, nick, reason = msg.pad_args(3)
        """
        return self.args + [default] * (length - len(self.args))


class IRCCodec(codecs.Codec):
    """The encoding scheme to use for IRC messages.

    IRC messages are "just bytes" with no encoding made explicit in the
    protocol definition or the messages.  Ideally we'd like to handle IRC
    messages as proper strings.
    """
    def encode(self, input, errors='strict'):
        """Encode a message as UTF-8."""
        return codecs.encode(input, 'utf-8', errors)

    def decode(self, input, errors='strict'):
        """Decode a message.

        IRC messages could pretty much be in any encoding.  Here we just try
        the two most likely candidates: UTF-8, falling back to CP1252.
        Unfortunately, any encoding where every byte is valid (e.g. CP1252)
        makes it impossible to detect encoding errors - if *input* isn't UTF-8
        or CP1252-compatible, the result might be a bit odd.
        """
        try:
            return codecs.decode(input, 'utf-8', errors)
        except UnicodeDecodeError:
            return codecs.decode(input, 'cp1252', 'replace')
