"""Filter expressions for selecting which mailbox messages to consume.

An expression is a comma separated list of ``KEY=value`` clauses::

    FROM=.*@example\\.com,SUBJECT=^Invoice,X-Priority=1

``FROM``, ``SUBJECT`` and ``RECIPIENT`` are well known; any other key names
a custom mail header.  ``*`` or a blank expression matches everything.
Each value is a pattern in the configured dialect (``Regex`` by default).
"""

from __future__ import annotations

import email.message
import email.utils
import fnmatch
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

import structlog

from .errors import ConfigurationError, FilterCompileError

logger = structlog.get_logger()

FROM = "FROM"
SUBJECT = "SUBJECT"
RECIPIENT = "RECIPIENT"

DEFAULT_DIALECT = "Regex"

_DELIMITERS = "\"'|/"

Matcher = Callable[[str], bool]
DialectCompiler = Callable[[str], Matcher]


# ------------------------------------------------------------------
# Dialect registry
# ------------------------------------------------------------------


def _compile_regex(pattern: str) -> Matcher:
    compiled = re.compile(pattern)
    return lambda value: compiled.search(value) is not None


def _compile_glob(pattern: str) -> Matcher:
    compiled = re.compile(fnmatch.translate(pattern))
    return lambda value: compiled.match(value) is not None


_DIALECTS: dict[str, DialectCompiler] = {
    "regex": _compile_regex,
    "perl5": _compile_regex,
    "glob": _compile_glob,
}


def register_dialect(name: str, compiler: DialectCompiler) -> None:
    """Make *compiler* available under *name* (case-insensitive)."""
    _DIALECTS[name.lower()] = compiler


def get_dialect(name: str | None) -> DialectCompiler:
    key = (name or DEFAULT_DIALECT).strip().lower()
    try:
        return _DIALECTS[key]
    except KeyError:
        raise ConfigurationError(f"Unknown regular expression style [{name}]") from None


# ------------------------------------------------------------------
# FilterSet
# ------------------------------------------------------------------


@dataclass
class FilterSet:
    """Compiled filter clauses, evaluated with AND semantics."""

    patterns: dict[str, str] = field(default_factory=dict)
    _matchers: dict[str, Matcher] = field(default_factory=dict, repr=False)

    def __bool__(self) -> bool:
        return bool(self._matchers)

    def get(self, key: str) -> str | None:
        return self.patterns.get(key)

    def matches(self, headers: email.message.Message) -> bool:
        """Return *True* if *headers* satisfy every configured clause.

        Within one clause a match against any single value (e.g. any one of
        several recipients) is enough.
        """
        for key, matcher in self._matchers.items():
            if not any(matcher(value) for value in _values_for(key, headers)):
                return False
        return True


def compile_filters(expression: str | None, dialect: str | None = DEFAULT_DIALECT) -> FilterSet:
    """Parse *expression* and compile each clause with *dialect*."""
    compiler = get_dialect(dialect)
    patterns = parse_expression(expression)
    matchers: dict[str, Matcher] = {}
    for key, value in patterns.items():
        try:
            matchers[key] = compiler(value)
        except re.error as exc:
            raise FilterCompileError(f"Invalid {key} filter [{value}]: {exc}") from exc
    logger.debug("filters_compiled", filters=patterns, dialect=dialect or DEFAULT_DIALECT)
    return FilterSet(patterns=patterns, _matchers=matchers)


def parse_expression(expression: str | None) -> dict[str, str]:
    """Split an expression into ``{key: pattern}``; malformed clauses are dropped."""
    if expression is None:
        return {}
    text = expression.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in _DELIMITERS:
        text = text[1:-1].strip()
    if not text or text == "*":
        return {}

    result: dict[str, str] = {}
    for clause in text.split(","):
        if not clause:
            continue
        key, sep, value = clause.partition("=")
        if not sep:
            continue
        result[key.strip()] = value
    return result


# ------------------------------------------------------------------
# Header extraction
# ------------------------------------------------------------------


def _values_for(key: str, headers: email.message.Message) -> Iterable[str]:
    if key == FROM:
        return _addresses(headers, "From")
    if key == RECIPIENT:
        return _addresses(headers, "To", "Cc", "Bcc")
    if key == SUBJECT:
        subject = headers.get("Subject")
        # a blank subject never satisfies a SUBJECT clause
        if subject is None or not str(subject).strip():
            return []
        return [str(subject)]
    return [str(v) for v in headers.get_all(key) or []]


def _addresses(headers: email.message.Message, *names: str) -> list[str]:
    raw: list[str] = []
    for name in names:
        raw.extend(str(v) for v in headers.get_all(name) or [])
    return [addr for _, addr in email.utils.getaddresses(raw) if addr]
