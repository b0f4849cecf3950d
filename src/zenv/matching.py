"""Hostname matching against environment target patterns."""

from __future__ import annotations

from collections.abc import Iterable

UNIVERSAL_PATTERNS = frozenset({"*", "any", "localhost"})
_LOCAL_SUFFIX = ".local"
_WILDCARDS = ("*", "?")


def normalize_hostname(hostname: str) -> str:
    if hostname.endswith(_LOCAL_SUFFIX):
        return hostname[: -len(_LOCAL_SUFFIX)]
    return hostname


def has_wildcards(pattern: str) -> bool:
    return any(char in pattern for char in _WILDCARDS)


def glob_match(pattern: str, text: str) -> bool:
    """Anchored glob match where ``*`` is any run of characters and ``?`` one character."""
    body = pattern[:-1]
    if pattern.endswith("*") and body and not has_wildcards(body):
        return text.startswith(body)
    tail = pattern[1:]
    if pattern.startswith("*") and tail and not has_wildcards(tail):
        return text.endswith(tail)
    return _backtrack(pattern, 0, text, 0)


def _backtrack(pattern: str, p: int, text: str, t: int) -> bool:
    while p < len(pattern):
        char = pattern[p]
        if char == "*":
            while p + 1 < len(pattern) and pattern[p + 1] == "*":
                p += 1
            if p + 1 == len(pattern):
                return True
            return any(_backtrack(pattern, p + 1, text, start) for start in range(t, len(text) + 1))
        if t >= len(text):
            return False
        if char != "?" and char != text[t]:
            return False
        p += 1
        t += 1
    return t == len(text)


def _matches_literal(hostname: str, pattern: str) -> bool:
    if hostname == pattern:
        return True
    if pattern in hostname.split("."):
        return True
    if pattern.startswith(".") and len(hostname) > len(pattern) and hostname.endswith(pattern):
        return True
    return len(hostname) > len(pattern) + 1 and hostname.endswith(f".{pattern}")


def matches(hostname: str, pattern: str) -> bool:
    if pattern in UNIVERSAL_PATTERNS:
        return True
    normalized = normalize_hostname(hostname)
    if has_wildcards(pattern):
        return glob_match(pattern, normalized)
    return _matches_literal(normalized, pattern)


def matches_any(hostname: str, patterns: Iterable[str]) -> bool:
    candidates = list(patterns)
    if not candidates:
        return True
    return any(matches(hostname, pattern) for pattern in candidates)


def split_target_string(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def join_target_patterns(patterns: Iterable[str]) -> str:
    joined = ",".join(item.strip() for item in patterns if item.strip())
    return joined or "any"
