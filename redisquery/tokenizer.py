"""Command line tokenizer.

Turns a single human-readable command line such as::

    SET greeting "hello world"

into the list of arguments sent to the server. Arguments are separated
by spaces; double- or single-quoted spans keep their spaces and lose
their outer quotes. Only one quote style is honoured per command line:
whichever of ``"`` and ``'`` opens a span first.
"""
import re

from .errors import EmptyCommandError, ParsingLimitExceededError

__all__ = [
    'tokenize',
    'MAX_QUOTED_SPANS',
    ]

MAX_QUOTED_SPANS = 1024

# Input bytes reused as placeholders are scrubbed first,
# so the placeholders never collide with user text.
_SPACE = '\x00'
_ESCAPE = '\x01'

_RE_SCRUB = re.compile(r'[\x00\x01]')
_RE_EDGES = re.compile(r'^[\r\n\t]+|[\r\n\t]+$')
_RE_CRLF = re.compile(r'(?:\r\n)+')
_RE_LETTER = re.compile(r'[a-z]', re.I)
_RE_SPACES = re.compile(r'  +')
_RE_RESTORE = re.compile(_ESCAPE + r'([0-9]+);')

_QUOTES = ('"', "'")


def tokenize(command):
    """Split a command line into a list of argument strings.

    Raises EmptyCommandError if the command has no letter in it and
    ParsingLimitExceededError if its quoted spans can not be resolved.
    """
    if not command:
        raise EmptyCommandError("Empty query")
    if not isinstance(command, str):
        raise TypeError("Command expected to be str, got {!r}"
                        .format(type(command).__name__))
    line = _normalize(command)
    if not _RE_LETTER.search(line):
        raise EmptyCommandError("Invalid query format")

    quote = _active_quote(line)
    if quote is not None:
        line = _protect_quoted(line, quote)
    line = _RE_SPACES.sub(' ', line)

    return [_unquote(arg.replace(_SPACE, ' ')) for arg in line.split(' ')]


def _normalize(command):
    line = _RE_SCRUB.sub(' ', command)
    line = _RE_EDGES.sub('', line)
    line = _RE_CRLF.sub(r'\\r\\n', line)
    return line.strip(' ')


def _active_quote(line):
    found = [(line.find(' ' + q), q) for q in _QUOTES]
    found = [(pos, q) for pos, q in found if pos != -1]
    if not found:
        return None
    return min(found)[1]


def _protect_quoted(line, quote):
    line = re.sub(r'(\\+)' + re.escape(quote),
                  lambda m: '{}{};'.format(_ESCAPE, len(m.group(1))),
                  line)

    pos = 0
    for _ in range(MAX_QUOTED_SPANS):
        span = _next_span(line, quote, pos)
        if span is None:
            break
        start, end = span
        line = (line[:start]
                + line[start:end].replace(' ', _SPACE)
                + line[end:])
        pos = end
    else:
        raise ParsingLimitExceededError("Query parsing limit exceeded")

    return _RE_RESTORE.sub(lambda m: '\\' * int(m.group(1)) + quote, line)


def _next_span(line, quote, pos):
    """Return (start, end) of the next quoted span at or after pos.

    A span opens with a quote at the start of an argument and closes at
    the next quote followed by a space or the end of the line.
    """
    while True:
        start = line.find(quote, pos)
        if start == -1:
            return None
        if start == 0 or line[start - 1] == ' ':
            break
        pos = start + 1

    end = start + 1
    while True:
        end = line.find(quote, end)
        if end == -1:
            raise ParsingLimitExceededError(
                "Query parsing limit exceeded: unterminated {} quote"
                .format(quote))
        if end + 1 == len(line) or line[end + 1] == ' ':
            return start, end + 1
        end += 1


def _unquote(arg):
    if len(arg) >= 2 and arg[0] in _QUOTES and arg[-1] == arg[0]:
        return arg[1:-1]
    return arg
