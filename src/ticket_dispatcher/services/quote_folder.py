import re

QUOTED_SUMMARY = "Show quoted email"
MIN_QUOTE_RUN = 3

# Checked in order against each stripped line.
_QUOTE_MARKERS = (
    re.compile(r"^On .+ wrote:", re.IGNORECASE),
    re.compile(r"^\**From:\s*.+@.+", re.IGNORECASE),
    re.compile(r"^Sent:\s*", re.IGNORECASE),
    re.compile(r"^\**To:\s*", re.IGNORECASE),
    re.compile(r"^\**Subject:\s*", re.IGNORECASE),
    re.compile(r"^-+ ?Original Message ?-+", re.IGNORECASE),
    re.compile(r"^Begin forwarded message:", re.IGNORECASE),
    re.compile(r"^--$"),
)


def starts_quote_run(lines: list[str], start: int) -> bool:
    count = 0
    for line in lines[start:]:
        stripped = line.strip()
        if stripped.startswith(">"):
            count += 1
            if count >= MIN_QUOTE_RUN:
                return True
        elif stripped:
            return False
    return False


def is_quote_marker(line: str) -> bool:
    stripped = line.strip()
    return any(pattern.match(stripped) for pattern in _QUOTE_MARKERS)


def find_quote_start(lines: list[str]) -> int | None:
    for index, line in enumerate(lines):
        if not line.strip():
            continue
        if starts_quote_run(lines, index) or is_quote_marker(line):
            return index
    return None


def wrap_quoted(quoted: str) -> str:
    body = quoted.rstrip("\n")
    return f"<details>\n<summary>{QUOTED_SUMMARY}</summary>\n\n{body}\n\n</details>"


def fold_quotes(markdown: str, discard_quotes: bool) -> str:
    """Move a trailing quoted reply out of the way.

    The quoted region either goes into a collapsed <details> block or, with
    discard_quotes, is dropped. A message that is nothing but quotes is always
    folded so the comment is not empty.
    """
    if not markdown.strip():
        return markdown

    lines = markdown.split("\n")
    split = find_quote_start(lines)
    if split is None:
        return markdown

    visible_lines = lines[:split]
    while visible_lines and not visible_lines[-1].strip():
        visible_lines.pop()
    visible = "\n".join(visible_lines)
    quoted = "\n".join(lines[split:]).lstrip("\n")

    details = wrap_quoted(quoted)
    if not visible.strip():
        return details
    if discard_quotes:
        return visible + "\n"
    return visible + "\n\n" + details
