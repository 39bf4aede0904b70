import asyncio
import configparser
import json
import logging
import logging.config
import os
import signal
import sys

import click
import rollbar
import toml

from . import __version__, config
from .client import Client


LOG = logging.getLogger(__name__)

#: Events that are logged while running a client from the command line.
LOGGED_EVENTS = [
    'registered', 'motd', 'join', 'part', 'kick', 'quit', 'nick', 'topic',
    'message', 'notice', 'action', 'invite', 'netError', 'abort',
]


@click.command(context_settings={
    'help_option_names': ['-h', '--help'],
    'auto_envvar_prefix': 'IRCWIRE',
})
@click.version_option(version=__version__)
@click.option('--debug', '-d', is_flag=True, default=False,
              help='Turn on debug logging.')
@click.option('--debug-irc', is_flag=True, default=False,
              help='Turn on debug logging for the IRC connection.')
@click.option('--debug-events', is_flag=True, default=False,
              help='Turn on debug logging for the event bus.')
@click.option('--debug-asyncio', is_flag=True, default=False,
              help='Turn on debug logging for asyncio library.')
@click.option('--debug-all', is_flag=True, default=False,
              help='Turn on all debug logging.')
@click.option('--colour/--no-colour', 'colour_logging', default=None,
              help='Use colour in logging. [default: automatic]')
@click.option('--rollbar-token', default=None,
              help='Rollbar access token, enables Rollbar error reporting.')
@click.option('--env-name', default='development',
              help='Deployment environment name. [default: development]')
@click.option('--config-format', type=click.Choice(("ini", "json", "toml")),
              help='Configuration file format. [default: based on file extension]')
@click.argument('config_file', metavar='CONFIG', type=click.File('r'))
def main(config_file,
         debug,
         debug_irc,
         debug_events,
         debug_asyncio,
         debug_all,
         colour_logging,
         rollbar_token,
         env_name,
         config_format):
    """Connect to an IRC server from a configuration file, logging what happens.
    """
    # Apply "debug all" option
    if debug_all:
        debug = debug_irc = debug_events = debug_asyncio = True

    # Configure logging
    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'default': {
                'format': '[{asctime}] ({levelname[0]}:{name}) {message}',
                'datefmt': '%Y/%m/%d %H:%M:%S',
                'style': '{',
            },
        },
        'handlers': {
            'pretty': {
                'class': 'ircwire.util.PrettyStreamHandler',
                'level': 'DEBUG',
                'formatter': 'default',
                'colour': colour_logging,
            },
        },
        'root': {
            'level': 'DEBUG' if debug else 'INFO',
            'handlers': ['pretty'],
        },
        'loggers': {
            'ircwire.client': {
                'level': 'DEBUG' if debug_irc else 'INFO',
            },
            'ircwire.events': {
                'level': 'DEBUG' if debug_events else 'INFO',
            },
            'asyncio': {
                # Default is WARNING because 'poll took x seconds' messages are annoying
                'level': 'DEBUG' if debug_asyncio else 'WARNING',
            },
        }
    })

    _, ext = os.path.splitext(config_file.name)
    if config_format == "ini" or ext.lower() in {".ini", ".cfg"}:
        LOG.debug("Reading configuration with ConfigParser")
        config_data = load_ini(config_file)
    elif config_format == "json" or ext.lower() in {".json"}:
        LOG.debug("Reading configuration as JSON")
        config_data = load_json(config_file)
    elif config_format == "toml" or ext.lower() in {".toml"}:
        LOG.debug("Reading configuration as TOML")
        config_data = load_toml(config_file)
    else:
        raise click.BadArgumentUsage('config file extension not in {".ini", ".cfg", ".json", ".toml"} '
                                     'and no --config-format specified, unsure how to load config')

    try:
        client = Client.from_config(config_data.get('ircwire', {}))
    except config.ConfigError as e:
        raise click.BadParameter(str(e), param_hint='CONFIG')

    if rollbar_token:
        rollbar.init(rollbar_token, env_name)

    asyncio.run(run_client(client, report_to_rollbar=bool(rollbar_token)))
    LOG.info("Exited")


async def run_client(client, *, report_to_rollbar=False):
    """Run *client* until it gives up reconnecting or SIGINT is received."""
    loop = asyncio.get_running_loop()

    # Configure Rollbar for exception reporting
    if report_to_rollbar:
        def handler(loop, context):
            exception = context.get('exception')
            if exception is not None:
                exc_info = (type(exception), exception, exception.__traceback__)
            else:
                exc_info = None
            extra_data = {
                'ircwire_event': context.get('ircwire_event'),
            }
            rollbar.report_exc_info(exc_info, extra_data=extra_data)
            loop.default_exception_handler(context)
        loop.set_exception_handler(handler)

    for event_type in LOGGED_EVENTS:
        client.on(event_type, log_event)

    @client.on('error')
    def log_error(event):
        LOG.error('IRC error: %r', event['error'])

    async def graceful_shutdown(future):
        LOG.info("Calling disconnect() and waiting for connection to close...")
        client.disconnect()
        try:
            await asyncio.wait_for(client.finished.wait(), 2)
            return
        except asyncio.TimeoutError:
            pass

        LOG.warning("Still connected after 2 seconds, forcing exit...")
        future.cancel()

    def stop(future):
        # Next ctrl+c should ignore our handler
        loop.remove_signal_handler(signal.SIGINT)
        LOG.info("Interrupt received, attempting graceful shutdown... (press ^c again to force exit)")
        asyncio.ensure_future(graceful_shutdown(future))

    # Run the client until it exits or gets SIGINT
    client_future = asyncio.ensure_future(client.run())
    loop.add_signal_handler(signal.SIGINT, stop, client_future)
    try:
        await client_future
    except asyncio.CancelledError:
        LOG.error("client.run() task cancelled")


def log_event(event):
    details = ' '.join(f'{k}={v!r}' for k, v in event.items() if k != 'message')
    LOG.info('%s %s', event.event_type, details)


def load_ini(f):
    parser = configparser.ConfigParser(interpolation=None, allow_no_value=True)
    parser.optionxform = str    # Preserve case
    parser.read_file(f)
    config = {}
    for name, parser_section in parser.items():
        config[name] = section = {}
        for key, value in parser_section.items():
            section[key] = value
    return config


def load_json(f):
    return json.load(f)


def load_toml(f):
    return toml.load(f)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
def util():
    pass


@util.command(help="Generate example configuration file")
@click.option("--commented/--uncommented", "commented", default=False,
              help="Comment out all generated configuration")
def example_config(commented):
    sys.stdout.write(config.generate_toml_example(Client.Config, section='ircwire', commented=commented))
