from dataclasses import dataclass, field
from enum import Enum
from math import isfinite
from re import IGNORECASE, Pattern, compile as compile_pattern, sub

import configs

IDENTIFIER_RE = compile_pattern(r"^[A-Za-z_][A-Za-z0-9_]*$")

RESERVED_WORDS = frozenset(
    {
        "SELECT",
        "INSERT",
        "UPDATE",
        "DELETE",
        "DROP",
        "CREATE",
        "ALTER",
        "TABLE",
        "DATABASE",
        "INDEX",
        "WHERE",
        "FROM",
        "JOIN",
        "UNION",
    }
)

# Substring match on purpose: "selection" is flagged too.
INJECTION_RE = compile_pattern(
    r"('|;|--|/\*|\*/|xp_|sp_|exec|execute|select|insert|update|delete|drop"
    r"|create|alter|grant|revoke|backup|restore|shutdown)",
    IGNORECASE,
)

# Whole words only, so legitimate content containing a keyword survives.
REWRITE_KEYWORDS_RE = compile_pattern(
    r"\b(ALTER|CREATE|DELETE|DROP|EXEC(UTE)?|INSERT|SELECT|UNION( ALL)?"
    r"|UPDATE|TRUNCATE|USE)\b",
    IGNORECASE,
)

MAX_SAFE_INTEGER = 2**53 - 1


@dataclass(frozen=True)
class Policy:
    """Immutable rule set shared by the validators and the sanitizer."""

    reserved_words: frozenset = RESERVED_WORDS
    injection_pattern: Pattern = INJECTION_RE
    rewrite_keywords: Pattern = REWRITE_KEYWORDS_RE
    identifier_pattern: Pattern = IDENTIFIER_RE
    max_depth: int = field(default_factory=lambda: configs.max_nesting_depth)


DEFAULT_POLICY = Policy()


class ValueKind(Enum):
    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    SEQUENCE = "sequence"
    MAPPING = "mapping"
    OTHER = "other"


def kind_of(value) -> ValueKind:
    """
    Classifies a structured value (query filters, write payloads).

    `bool` is checked before numbers since it is an `int` subclass.
    """
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (list, tuple)):
        return ValueKind.SEQUENCE
    if isinstance(value, dict):
        return ValueKind.MAPPING
    return ValueKind.OTHER


def is_valid_identifier(name, policy: Policy = DEFAULT_POLICY) -> bool:
    """
    Checks whether a table or column name is safe to place in a query.

    The name must match the identifier grammar and must not be, in any
    casing, one of the reserved words. Only exact matches are reserved:
    `selected_items` is a valid identifier.

    Args:
        name: The proposed identifier.
        policy: The rule set to apply.

    Returns:
        True if the name can be used as an identifier, False otherwise.
    """
    if not isinstance(name, str):
        return False
    return (
        policy.identifier_pattern.fullmatch(name) is not None
        and name.upper() not in policy.reserved_words
    )


def _is_safe_positive_integer(number: float | int) -> bool:
    if isinstance(number, float):
        if not isfinite(number) or not number.is_integer():
            return False
    return 0 < number <= MAX_SAFE_INTEGER


def is_valid_id(record_id) -> bool:
    """
    Checks whether a record id is a positive safe integer.

    Args:
        record_id: A native number or a numeric string such as "42".

    Returns:
        True if the id is an integer in the range 1..2**53-1, False otherwise.
    """
    kind = kind_of(record_id)
    if kind is ValueKind.NUMBER:
        return _is_safe_positive_integer(record_id)
    if kind is ValueKind.STRING:
        if "_" in record_id:
            return False
        try:
            number = float(record_id)
        except ValueError:
            return False
        return _is_safe_positive_integer(number)
    return False


def looks_like_injection(value: str, policy: Policy = DEFAULT_POLICY) -> bool:
    """Returns True if the string contains a quote, comment marker or command keyword."""
    return policy.injection_pattern.search(value) is not None


def _is_valid_structure(data, allowed_fields, policy: Policy, depth: int) -> bool:
    if depth >= policy.max_depth:
        return False
    if kind_of(data) is not ValueKind.MAPPING:
        return False

    for key, value in data.items():
        if allowed_fields is not None and key not in allowed_fields:
            return False
        if not isinstance(key, str) or not policy.identifier_pattern.fullmatch(key):
            return False

        kind = kind_of(value)
        if kind is ValueKind.STRING:
            if looks_like_injection(value, policy):
                return False
        elif kind is ValueKind.MAPPING:
            if not _is_valid_structure(value, allowed_fields, policy, depth + 1):
                return False
        elif kind in (
            ValueKind.NULL,
            ValueKind.BOOLEAN,
            ValueKind.NUMBER,
            ValueKind.SEQUENCE,
            ValueKind.OTHER,
        ):
            continue
    return True


def is_valid_query_params(params, policy: Policy = DEFAULT_POLICY) -> bool:
    """
    Validates filter criteria before they are turned into a query.

    Every key, at every nesting level, must have identifier shape and every
    string value must be free of injection patterns. Nested mappings are
    checked recursively; sequences and other scalars are accepted as they are.
    Nesting deeper than `policy.max_depth` is rejected.

    Args:
        params: A mapping of filter names to values.
        policy: The rule set to apply.

    Returns:
        True if the whole structure is acceptable, False otherwise. The
        result never tells which rule failed.
    """
    return _is_valid_structure(params, None, policy, 0)


def is_valid_for_storage(
    data, allowed_fields=None, policy: Policy = DEFAULT_POLICY
) -> bool:
    """
    Validates a write payload, optionally against a field whitelist.

    Applies the same rules as `is_valid_query_params`. When `allowed_fields`
    is given, every key (nested mappings included) must be a member of it.

    Args:
        data: The payload mapping.
        allowed_fields: Optional collection of permitted field names.
        policy: The rule set to apply.

    Returns:
        True if the payload may be written, False otherwise.
    """
    if allowed_fields is not None:
        allowed_fields = frozenset(allowed_fields)
    return _is_valid_structure(data, allowed_fields, policy, 0)


def sanitize_key(key: str) -> str:
    """Strips every character outside [A-Za-z0-9_] and keeps the key from starting with a digit."""
    sanitized = sub(r"[^A-Za-z0-9_]", "", key)
    if sanitized and sanitized[0].isdigit():
        sanitized = "_" + sanitized
    return sanitized


def _rewrite_once(text: str, policy: Policy) -> str:
    # Departs from doubling every quote: paired quotes stay paired,
    # so a second pass leaves them alone.
    text = sub(r"''?", "''", text)
    text = text.replace(";", "")
    text = text.replace("--", "")
    text = text.replace("/*", "").replace("*/", "")
    text = policy.rewrite_keywords.sub("", text)
    return text.strip()


def sanitize_text(text: str, policy: Policy = DEFAULT_POLICY) -> str:
    """
    Neutralizes a single string.

    Single quotes are doubled; semicolons, `--`, `/*` and `*/` are removed;
    whole-word command keywords are removed case-insensitively; surrounding
    whitespace is trimmed. The rewrite is repeated until nothing changes,
    since a removal can join the halves of a new marker (`-/**/-`).
    """
    rewritten = _rewrite_once(text, policy)
    while rewritten != text:
        text, rewritten = rewritten, _rewrite_once(rewritten, policy)
    return rewritten


def _sanitize(data, policy: Policy, depth: int):
    if depth >= policy.max_depth:
        return None

    kind = kind_of(data)
    if kind is ValueKind.STRING:
        return sanitize_text(data, policy)
    if kind is ValueKind.SEQUENCE:
        return [_sanitize(item, policy, depth + 1) for item in data]
    if kind is ValueKind.MAPPING:
        sanitized = {}
        for key, value in data.items():
            sanitized[sanitize_key(str(key))] = _sanitize(value, policy, depth + 1)
        return sanitized
    # NULL, BOOLEAN, NUMBER and OTHER pass through untouched.
    return data


def sanitize_for_storage(data, policy: Policy = DEFAULT_POLICY):
    """
    Rewrites a value so that every string in it is neutralized.

    The result has the same shape as the input: sequences keep their length
    and order, mappings get sanitized keys and sanitized values. Keys that
    collapse to the same sanitized key keep the last value (see
    `find_key_collisions`). Subtrees nested deeper than `policy.max_depth`
    are replaced with None. The input is never mutated and the function
    never raises.

    Args:
        data: Any structured value.
        policy: The rule set to apply.

    Returns:
        The sanitized copy.
    """
    return _sanitize(data, policy, 0)


def find_key_collisions(data, policy: Policy = DEFAULT_POLICY) -> set[str]:
    """
    Finds sanitized keys that more than one distinct source key maps to.

    Args:
        data: Any structured value; nested mappings and sequences are searched.
        policy: Supplies the nesting limit.

    Returns:
        The set of colliding sanitized keys, empty if there are none.
    """
    collisions = set()
    pending = [(data, 0)]
    while pending:
        value, depth = pending.pop()
        if depth >= policy.max_depth:
            continue
        kind = kind_of(value)
        if kind is ValueKind.MAPPING:
            seen = set()
            for key, item in value.items():
                sanitized = sanitize_key(str(key))
                if sanitized in seen:
                    collisions.add(sanitized)
                seen.add(sanitized)
                pending.append((item, depth + 1))
        elif kind is ValueKind.SEQUENCE:
            pending.extend((item, depth + 1) for item in value)
    return collisions
