"""Request-key (URL) building and query-string helpers.

Request keys double as cache keys, so building one must be deterministic:
parameters are emitted in the order given and every name and value is
percent-encoded the way JavaScript's ``encodeURIComponent`` does it.

Example:
    builder = RequestKeyBuilder("https://example.com/app.php")
    builder.build("getUser", "userId", 42, {"fields": "name,email"})
    # -> https://example.com/app.php?command=getUser&userId=42&fields=name%2Cemail
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import quote, unquote

# Characters encodeURIComponent leaves untouched besides alphanumerics.
_UNRESERVED = "-_.!~*'()"

Params = Union[Mapping[str, Any], Iterable[Tuple[str, Any]], None]
KeyHook = Callable[[str], str]


def _param_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def encode_component(value: Any) -> str:
    """Percent-encode a single query-string name or value."""
    return quote(_param_text(value), safe=_UNRESERVED)


def _param_pairs(params: Params) -> Iterable[Tuple[str, Any]]:
    if not params:
        return ()
    if isinstance(params, Mapping):
        return params.items()
    return params


def build_query_string(params: Params) -> str:
    """Build a query string, including the leading '?', from name/value pairs.

    Returns an empty string when there are no parameters.

    >>> build_query_string({"q": "abc#def", "n": "123+456"})
    '?q=abc%23def&n=123%2B456'
    """
    pieces = [f"{encode_component(k)}={encode_component(v)}" for k, v in _param_pairs(params)]
    if not pieces:
        return ""
    return "?" + "&".join(pieces)


def parse_query_string(
    query_or_url: str,
    is_url: bool = False,
    keep_last_on_dupe: bool = False,
) -> Dict[str, str]:
    """Parse a query string (or the query part of a URL) into a dict.

    Args:
        query_or_url: The query string, with or without the leading '?', or a
            complete URL when is_url is True.
        is_url: Treat the first argument as a URL and parse only what follows
            its first '?'.
        keep_last_on_dupe: When a name repeats, keep its last value instead of
            its first.

    >>> parse_query_string("?abc=123&def=ab%20cd&abc=ghi")
    {'abc': '123', 'def': 'ab cd'}
    """
    if is_url:
        idx = query_or_url.find("?")
        query = query_or_url[idx + 1:] if idx >= 0 else ""
    else:
        query = query_or_url[1:] if query_or_url.startswith("?") else query_or_url

    hash_idx = query.find("#")
    if hash_idx >= 0:
        query = query[:hash_idx]

    parsed: Dict[str, str] = {}
    for piece in query.split("&"):
        if not piece:
            continue
        name, sep, value = piece.partition("=")
        name = unquote(name)
        value = unquote(value) if sep else ""
        if name not in parsed or keep_last_on_dupe:
            parsed[name] = value
    return parsed


def base_url(url: str) -> str:
    """Return url without its query string and fragment."""
    cut = len(url)
    for marker in ("?", "#"):
        idx = url.find(marker)
        if 0 <= idx < cut:
            cut = idx
    return url[:cut]


def identity_hook(url: str) -> str:
    return url


class RequestKeyBuilder:
    """Builds request keys of the form ``base?command=..&<idParam>=<id>[&k=v...]``.

    A post-processing hook may be supplied to append extra parameters to every
    key built (auth tokens, session ids and the like). It receives the fully
    assembled key and must return a valid key; it is called exactly once per
    build.
    """

    def __init__(self, base: str, hook: Optional[KeyHook] = None):
        self.base = base_url(base)
        self.hook = hook or identity_hook

    def build(
        self,
        command: str,
        id_param_name: str,
        id: Any,
        optional_parameters: Params = None,
    ) -> str:
        pairs = [("command", command), (id_param_name, id)]
        pairs.extend(_param_pairs(optional_parameters))
        return self.hook(self.base + build_query_string(pairs))
