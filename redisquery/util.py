from urllib.parse import urlparse, parse_qsl

from .log import logger

_NOTSET = object()


# NOTE: never put here anything else;
#       just this basic types
_converters = {
    bytes: lambda val: val,
    bytearray: lambda val: val,
    str: lambda val: val.encode('utf-8'),
    int: lambda val: b'%d' % val,
    float: lambda val: b'%r' % val,
}


def encode_command(*args, buf=None):
    """Encodes arguments into redis bulk-strings array.

    Raises TypeError if any of args not of bytearray, bytes, float, int, or str
    type.
    """
    if buf is None:
        buf = bytearray()
    buf.extend(b'*%d\r\n' % len(args))

    try:
        for arg in args:
            barg = _converters[type(arg)](arg)
            buf.extend(b'$%d\r\n%s\r\n' % (len(barg), barg))
    except KeyError:
        raise TypeError("Argument {!r} expected to be of bytearray, bytes,"
                        " float, int, or str type".format(arg))
    return buf


def encode(tokens):
    """Encode a token sequence as returned by ``tokenize``."""
    return bytes(encode_command(*tokens))


def _set_exception(fut, exception):
    if fut.done():
        logger.debug("Waiter future is already done %r", fut)
        assert fut.cancelled(), (
            "waiting future is in wrong state", fut, exception)
    else:
        fut.set_exception(exception)


def parse_url(url):
    """Parse Redis connection URI.

    Parse according to IANA specs:
    * https://www.iana.org/assignments/uri-schemes/prov/redis

    Also more rules applied:

    * empty scheme is treated as unix socket path no further parsing is done.

    * 'unix://' scheme is treated as unix stream socket path and parsed.

    * 'unixgram://' scheme is treated as unix datagram socket path and parsed.

    * Multiple query parameter values and blank values are considered error.

    * DB number specified as path and as query parameter is considered error.

    * Password specified in userinfo and as query parameter is
      considered error.

    Raises ValueError for URLs breaking any of the rules above.
    """
    r = urlparse(url)

    if r.scheme not in ('', 'redis', 'unix', 'unixgram'):
        raise ValueError("Unsupported URI scheme {!r}".format(r.scheme))
    if r.scheme == '':
        return url, {}
    query = {}
    for p, v in parse_qsl(r.query, keep_blank_values=True):
        if p in query:
            raise ValueError("Multiple parameters are not allowed: {}"
                             .format(p))
        if not v:
            raise ValueError("Empty parameters are not allowed: {}"
                             .format(p))
        query[p] = v

    if r.scheme in ('unix', 'unixgram'):
        if not r.path:
            raise ValueError("Empty path is not allowed: {}".format(url))
        if r.netloc:
            raise ValueError("Netlocation is not allowed for {} scheme: {}"
                             .format(r.scheme, r.netloc))
        options = _parse_uri_options(query, '', r.password)
        if r.scheme == 'unixgram':
            options['datagram'] = True
        return r.path, options

    address = (r.hostname or 'localhost', int(r.port or 6379))
    path = r.path
    if path.startswith('/'):
        path = r.path[1:]
    return address, _parse_uri_options(query, path, r.password)


def _parse_uri_options(params, path, password):

    def parse_db_num(val):
        if not val:
            return
        if not val.isdecimal():
            raise ValueError("Invalid decimal integer: {}".format(val))
        if val != '0' and val.startswith('0'):
            raise ValueError("Expected integer without leading zeroes: {}"
                             .format(val))
        return int(val)

    options = {}

    db1 = parse_db_num(path)
    db2 = parse_db_num(params.get('db'))
    if db1 is not None and db2 is not None:
        raise ValueError("Single DB value expected, got path and query")
    if db1 is not None:
        options['db'] = db1
    elif db2 is not None:
        options['db'] = db2

    password2 = params.get('password')
    if password and password2:
        raise ValueError(
            "Single password value is expected, got in net location and query")
    if password:
        options['password'] = password
    elif password2:
        options['password'] = password2

    if 'timeout' in params:
        options['timeout'] = float(params['timeout'])
    if 'bufsz' in params:
        options['bufsz'] = int(params['bufsz'])
    return options
