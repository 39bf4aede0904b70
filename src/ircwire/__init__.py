from importlib import metadata


__version__ = None
try:
    __version__ = metadata.version('ircwire')
except metadata.PackageNotFoundError:
    pass


from .client import (  # noqa: E402
    ChannelInfo,
    Client,
    ConnectionState,
    IRCCertificateError,
    IRCClientError,
    WhoisRecord,
)
from .events import Event  # noqa: E402
from .irc import IRCMessage  # noqa: E402
