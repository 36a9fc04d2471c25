"""
Model Reply Cleanup
===================

Text-level helpers the decision parser runs before and after a strict
JSON parse:
- Think-block extraction (<think>...</think>, <thinking>...</thinking>)
- Code fence stripping, keeping any prose before the fence
- Balanced-object scanner (string and escape aware)
- Repair pass for near-JSON: smart/single quotes, trailing commas,
  unquoted keys, comments, ellipses, Python literals

The repair pass only rewrites text outside double-quoted strings, so a
reply that is already valid JSON parses to the same structure after repair.
"""
import re
from typing import Iterator, List, Optional, Tuple


# ============================================================
# THINK BLOCKS
# ============================================================

THINK_BLOCK_RE = re.compile(r"<(?:think|thinking)>([\s\S]*?)</(?:think|thinking)>", re.IGNORECASE)
THINK_OPEN_RE = re.compile(r"<(?:think|thinking)>", re.IGNORECASE)
THINK_CLOSE_RE = re.compile(r"</(?:think|thinking)>", re.IGNORECASE)


def extract_think_blocks(text: str) -> Tuple[Optional[str], str]:
    """
    Pull reasoning blocks out of a reply.

    Returns (reasoning or None, text with the blocks removed). An opening
    tag that is never closed contributes the rest of the reply as reasoning
    but leaves it in place for structural parsing. A closing tag with no
    opener marks everything before it as reasoning.
    """
    parts = [m.strip() for m in THINK_BLOCK_RE.findall(text)]
    remaining = THINK_BLOCK_RE.sub("", text)

    opener = THINK_OPEN_RE.search(remaining)
    if opener:
        rest = remaining[opener.end():]
        parts.append(rest.strip())
        remaining = remaining[:opener.start()] + rest
    else:
        closer = THINK_CLOSE_RE.search(remaining)
        if closer:
            parts.append(remaining[:closer.start()].strip())
            remaining = remaining[closer.end():]

    reasoning = "\n\n".join(p for p in parts if p)
    return (reasoning or None), remaining


# ============================================================
# CODE FENCES
# ============================================================

FENCE_RE = re.compile(r"```[ \t]*[A-Za-z0-9_-]*[ \t]*\r?\n?([\s\S]*?)```")
FENCE_LANG_RE = re.compile(r"^[ \t]*[A-Za-z0-9_-]*[ \t]*\r?\n")


def strip_code_fences(text: str) -> Tuple[str, Optional[str]]:
    """
    Return (fence contents, prose before the fence).

    The first fence containing a brace wins; an unterminated fence (truncated
    reply) just loses its opening line.
    """
    matches = list(FENCE_RE.finditer(text))
    if not matches:
        idx = text.find("```")
        if idx == -1:
            return text, None
        prose = text[:idx].strip() or None
        return FENCE_LANG_RE.sub("", text[idx + 3:], count=1), prose

    chosen = next((m for m in matches if "{" in m.group(1)), matches[0])
    prose = text[:chosen.start()].strip() or None
    return chosen.group(1), prose


# ============================================================
# OBJECT SCANNER
# ============================================================

def _match_brace(text: str, start: int) -> Tuple[Optional[int], List[Tuple[int, int]]]:
    """
    Scan from the brace at `start`.

    Returns (index of its closing brace or None if unbalanced, balanced
    inner pairs seen on the way). One pass, string and escape aware.
    """
    stack: List[int] = []
    pairs: List[Tuple[int, int]] = []
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            stack.append(i)
        elif ch == "}":
            opened = stack.pop()
            if not stack:
                return i, pairs
            pairs.append((opened, i))
    return None, pairs


def iter_json_objects(text: str) -> Iterator[str]:
    """Yield successive top-level balanced {...} spans"""
    start = text.find("{")
    while start != -1:
        end, inner = _match_brace(text, start)
        if end is None:
            # Stray unclosed brace: the balanced objects after it are still candidates
            last_end = start
            for opened, closed in sorted(inner):
                if opened > last_end:
                    yield text[opened:closed + 1]
                    last_end = closed
            return
        yield text[start:end + 1]
        start = text.find("{", end + 1)


# ============================================================
# REPAIR
# ============================================================

# Quote characters that may open a string, mapped to what may close it
_STRING_CLOSERS = {
    '"': ('"',),
    "“": ("”", '"'),
    "'": ("'",),
    "‘": ("’", "'"),
}
_SINGLE_QUOTES = ("'", "‘")

# Once a string opened by the key quote fails to close, strings opened later by
# any of these quotes cannot close either
_UNCLOSABLE_AFTER = {
    opener: tuple(
        other for other, other_closers in _STRING_CLOSERS.items()
        if (other in _SINGLE_QUOTES) == (opener in _SINGLE_QUOTES) and set(other_closers) <= set(closers)
    )
    for opener, closers in _STRING_CLOSERS.items()
}

# A single quote only opens a string where a JSON value or key may start,
# and only closes one where a value or key may end
_VALUE_START = ("", "{", "[", ",", ":")
_VALUE_END = ("", ",", ":", "}", "]")

_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}

_BLOCK_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")
_LINE_COMMENT_RE = re.compile(r"//[^\n]*")
_ELLIPSIS_RE = re.compile(r"\.\.\.|…")
_PY_LITERAL_RES = (
    (re.compile(r"\bTrue\b"), "true"),
    (re.compile(r"\bFalse\b"), "false"),
    (re.compile(r"\bNone\b"), "null"),
)
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_\-]*)(\s*:)")
_BARE_VALUE_RE = re.compile(r"(:\s*)([A-Za-z_][A-Za-z0-9_\-]*)(?=\s*(?:[,}\]]|$))")
_JSON_KEYWORDS = ("true", "false", "null")
_REPEATED_COMMA_RE = re.compile(r",(?:\s*,)+")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def _next_significant(text: str, index: int) -> str:
    while index < len(text) and text[index].isspace():
        index += 1
    return text[index] if index < len(text) else ""


def _last_significant(code: List[str], segments: List[Tuple[bool, str]]) -> str:
    for ch in reversed(code):
        if not ch.isspace():
            return ch
    for is_string, chunk in reversed(segments):
        if is_string:
            return '"'
        stripped = chunk.rstrip()
        if stripped:
            return stripped[-1]
    return ""


def _read_string(text: str, start: int) -> Optional[Tuple[int, str]]:
    """Read a quoted string at `start`; return (closing index, JSON literal)"""
    opener = text[start]
    closers = _STRING_CLOSERS[opener]
    single = opener in _SINGLE_QUOTES
    chars: List[str] = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            chars.append("'" if nxt == "'" else ch + nxt)
            i += 2
            continue
        if ch in closers:
            if not single or _next_significant(text, i + 1) in _VALUE_END:
                return i, '"' + "".join(chars) + '"'
            # apostrophe inside a word
            chars.append(ch)
        elif ch == '"':
            chars.append('\\"')
        else:
            chars.append(_CONTROL_ESCAPES.get(ch, ch))
        i += 1
    return None


def _split_segments(text: str) -> List[Tuple[bool, str]]:
    """Split text into (is_string, chunk); string chunks are normalised JSON literals"""
    segments: List[Tuple[bool, str]] = []
    code: List[str] = []
    unclosable: set = set()
    i = 0
    while i < len(text):
        ch = text[i]
        if ch in _STRING_CLOSERS and ch not in unclosable and (
            ch not in _SINGLE_QUOTES or _last_significant(code, segments) in _VALUE_START
        ):
            parsed = _read_string(text, i)
            if parsed is None:
                unclosable.update(_UNCLOSABLE_AFTER[ch])
            else:
                end, literal = parsed
                if code:
                    segments.append((False, "".join(code)))
                    code = []
                segments.append((True, literal))
                i = end + 1
                continue
        code.append(ch)
        i += 1
    if code:
        segments.append((False, "".join(code)))
    return segments


def _quote_bare_value(match: "re.Match") -> str:
    word = match.group(2)
    if word in _JSON_KEYWORDS:
        return match.group(0)
    return f'{match.group(1)}"{word}"'


def _repair_code(chunk: str) -> str:
    chunk = _BLOCK_COMMENT_RE.sub("", chunk)
    chunk = _LINE_COMMENT_RE.sub("", chunk)
    chunk = _ELLIPSIS_RE.sub("", chunk)
    for pattern, replacement in _PY_LITERAL_RES:
        chunk = pattern.sub(replacement, chunk)
    chunk = _UNQUOTED_KEY_RE.sub(r'\1"\2"\3', chunk)
    chunk = _BARE_VALUE_RE.sub(_quote_bare_value, chunk)
    chunk = _REPEATED_COMMA_RE.sub(",", chunk)
    chunk = _TRAILING_COMMA_RE.sub(r"\1", chunk)
    return chunk


def repair_json(text: str) -> str:
    """Best-effort rewrite of near-JSON into JSON; valid JSON passes through unchanged"""
    segments = _split_segments(text)
    return "".join(chunk if is_string else _repair_code(chunk) for is_string, chunk in segments)
