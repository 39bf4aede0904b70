"""mIRC colour and formatting control codes.

>>> wrap('light_red', 'alert') == '\\x0304alert\\x0f'
True
>>> strip_formatting('\\x02bold\\x02 and \\x0304,01red\\x03')
'bold and red'
"""
import re


#: Control sequences by name.
CODES = {
    'white': '\x0300',
    'black': '\x0301',
    'dark_blue': '\x0302',
    'dark_green': '\x0303',
    'light_red': '\x0304',
    'dark_red': '\x0305',
    'magenta': '\x0306',
    'orange': '\x0307',
    'yellow': '\x0308',
    'light_green': '\x0309',
    'cyan': '\x0310',
    'light_cyan': '\x0311',
    'light_blue': '\x0312',
    'light_magenta': '\x0313',
    'gray': '\x0314',
    'light_gray': '\x0315',
    'bold': '\x02',
    'italic': '\x1d',
    'underline': '\x1f',
    'reverse': '\x16',
    'reset': '\x0f',
}

#: Formatting bytes, and colour codes with optional foreground/background digits.
FORMATTING_REGEX = re.compile(r'[\x02\x1d\x1f\x16\x0f]|\x03\d{0,2}(?:,\d{0,2})?')


def wrap(colour, text, reset_colour='reset'):
    """Wrap *text* in the control sequence for *colour*.

    Unknown colour names leave *text* unchanged.  *reset_colour* is appended
    afterwards, unless it is also unknown.
    """
    if colour not in CODES:
        return text
    return CODES[colour] + text + CODES.get(reset_colour, '')


def strip_formatting(text):
    """Remove bold/italic/underline/reverse/reset bytes and colour codes."""
    return FORMATTING_REGEX.sub('', text)
