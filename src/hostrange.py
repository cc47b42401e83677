"""Bracket host-range expansion.

    node[01-03]          -> node01, node02, node03
    gpu[1,3-4]-ib        -> gpu1-ib, gpu3-ib, gpu4-ib
    node01,node[02-03]   -> node01, node02, node03

Zero padding of the range start is preserved. Duplicates are dropped,
keeping first occurrence.
"""

import re

_BRACKET = re.compile(r'\[([^\[\]]+)\]')


class HostRangeError(ValueError):
    """Malformed host-range expression."""


def _split_top_level(expression: str) -> list[str]:
    """Split on commas that are not inside brackets."""
    parts, depth, current = [], 0, []
    for char in expression:
        if char == '[':
            depth += 1
        elif char == ']':
            depth -= 1
            if depth < 0:
                raise HostRangeError(f"Unbalanced brackets in '{expression}'")
        if char == ',' and depth == 0:
            parts.append(''.join(current))
            current = []
            continue
        current.append(char)
    if depth != 0:
        raise HostRangeError(f"Unbalanced brackets in '{expression}'")
    parts.append(''.join(current))
    return [p.strip() for p in parts if p.strip()]


def _expand_range(group: str) -> list[str]:
    values = []
    for item in group.split(','):
        item = item.strip()
        if '-' in item:
            start, end = item.split('-', 1)
            if not (start.isdigit() and end.isdigit()):
                raise HostRangeError(f"Invalid range '{item}'")
            width = len(start)
            lo, hi = int(start), int(end)
            if lo > hi:
                raise HostRangeError(f"Range '{item}' is descending")
            values.extend(str(i).zfill(width) for i in range(lo, hi + 1))
        elif item:
            values.append(item)
    return values


def expand_brackets(pattern: str) -> list[str]:
    """Expand every bracket group in a single host pattern."""
    match = _BRACKET.search(pattern)
    if not match:
        return [pattern]
    prefix, suffix = pattern[:match.start()], pattern[match.end():]
    names = []
    for value in _expand_range(match.group(1)):
        names.extend(expand_brackets(f'{prefix}{value}{suffix}'))
    return names


def expand(expression: str) -> list[str]:
    """Expand a comma-separated list of host patterns into unique names."""
    names: list[str] = []
    for part in _split_top_level(expression):
        names.extend(expand_brackets(part))
    return list(dict.fromkeys(names))
