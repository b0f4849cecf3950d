from __future__ import annotations

from hypothesis import assume, given
from hypothesis import strategies as st

from zenv.matching import _backtrack, glob_match, matches, normalize_hostname

_HOST_CHARS = st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789-.")
_HOSTNAMES = st.text(alphabet=_HOST_CHARS, min_size=0, max_size=30)
_LITERALS = st.text(alphabet=_HOST_CHARS, min_size=1, max_size=8)


@given(_HOSTNAMES, st.sampled_from(["*", "any", "localhost"]))
def test_universal_patterns_always_match(hostname: str, pattern: str) -> None:
    assert matches(hostname, pattern)


@given(_HOSTNAMES, _LITERALS)
def test_prefix_pattern_is_startswith_on_normalized_host(hostname: str, prefix: str) -> None:
    assert matches(hostname, f"{prefix}*") == normalize_hostname(hostname).startswith(prefix)


@given(_HOSTNAMES, _LITERALS)
def test_suffix_pattern_is_endswith_on_normalized_host(hostname: str, suffix: str) -> None:
    assert matches(hostname, f"*{suffix}") == normalize_hostname(hostname).endswith(suffix)


@given(_HOSTNAMES, _LITERALS)
def test_fast_paths_agree_with_backtracking(text: str, literal: str) -> None:
    for pattern in (f"{literal}*", f"*{literal}"):
        assert glob_match(pattern, text) == _backtrack(pattern, 0, text, 0)


@given(_HOSTNAMES)
def test_matching_uses_normalized_form_only(hostname: str) -> None:
    assume(not hostname.endswith(".local"))
    local = f"{hostname}.local"
    for pattern in ("jureca", "node*", "*.de", "n?de"):
        assert matches(local, pattern) == matches(hostname, pattern)
