"""Repair and classify diff text returned by the model."""

from __future__ import annotations

import re
from dataclasses import dataclass

NULL_DEVICE = "/dev/null"
NEW_FILE_MODE = "new file mode 100644"
DELETED_FILE_MODE = "deleted file mode 100644"

FENCE_LINE_PATTERN = re.compile(r"^\s*```[\w+-]*\s*$")
FENCED_BLOCK_PATTERN = re.compile(r"```[\w+-]*[ \t]*\n(.*?)\n[ \t]*```", re.DOTALL)
NEW_FILE_HUNK_PATTERN = re.compile(r"^@@\s+-0,0\s+\+\d", re.MULTILINE)
PLUS_PATH_PATTERN = re.compile(r"^\+\+\+\s+(?:b/)?(.+?)\s*$", re.MULTILINE)
DIFF_HEADER_PATTERN = re.compile(r"^diff --git a/(.+?)\s+b/(.+?)\s*$", re.MULTILINE)
PROMPT_PATH_PATTERN = re.compile(
    r"([a-zA-Z0-9_./-]+\.(?:js|ts|tsx|jsx|py|java|go|rb|rs|cpp|c|h|md|json|yaml|yml|toml|txt"
    r"|html|css|sh))\b"
)


@dataclass(frozen=True, slots=True)
class NormalizedPatch:
    text: str
    primary_path: str | None
    is_new_file: bool

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()

    @property
    def is_diff(self) -> bool:
        return is_unified_diff(self.text)


def _split_lines(text: str) -> list[str]:
    return text.replace("\r\n", "\n").split("\n")


def strip_code_fences(text: str) -> str:
    """Remove markdown fences that wrap the diff, leaving what they enclose intact."""

    lines = _split_lines(text)
    while lines and not lines[0].strip():
        lines.pop(0)
    # A trailing " " is the context line of an empty line; only drop truly empty ones.
    while lines and not lines[-1]:
        lines.pop()
    if len(lines) >= 2 and FENCE_LINE_PATTERN.match(lines[0]) and FENCE_LINE_PATTERN.match(
        lines[-1]
    ):
        return "\n".join(lines[1:-1])

    # Prose around a fenced diff: keep the first fenced block holding a diff.
    for match in FENCED_BLOCK_PATTERN.finditer(text.replace("\r\n", "\n")):
        body = match.group(1)
        if is_unified_diff(body):
            return body
    return "\n".join(lines)


def is_unified_diff(text: str) -> bool:
    if not text:
        return False
    if "diff --git " in text:
        return True
    return any(line.startswith("--- ") for line in _split_lines(text))


def extract_unified_diff(raw: str) -> str:
    """Reduce a model response to the diff it contains, starting at the first header."""

    cleaned = strip_code_fences(raw)
    diff_index = cleaned.find("diff --git ")
    if diff_index >= 0:
        return cleaned[diff_index:].rstrip("\n")
    lines = _split_lines(cleaned)
    for index, line in enumerate(lines):
        if line.startswith("--- "):
            return "\n".join(lines[index:]).rstrip("\n")
    return cleaned.strip()


def _header_path(raw: str) -> str:
    # Drop a trailing timestamp as written by ``diff -u``.
    return raw.strip().split("\t", 1)[0].strip()


def _matching_new_marker(lines: list[str], start: int) -> str | None:
    # Stray lines may sit between the markers; a hunk or the next file ends the search.
    for line in lines[start + 1 :]:
        if line.startswith("+++ "):
            return line
        if line.startswith(("--- ", "@@")):
            return None
    return None


def ensure_diff_git_header(patch: str) -> str:
    """Synthesize ``diff --git`` headers for bare ``---``/``+++`` file pairs."""

    if "diff --git " in patch:
        return patch
    lines = _split_lines(patch)
    output: list[str] = []
    changed = False
    for index, line in enumerate(lines):
        following = _matching_new_marker(lines, index) if line.startswith("--- ") else None
        if following is not None:
            old_path = _header_path(line[4:])
            new_path = _header_path(following[4:])
            clean_old = old_path[2:] if old_path.startswith("a/") else old_path
            clean_new = new_path[2:] if new_path.startswith("b/") else new_path
            a_path = clean_new if old_path == NULL_DEVICE else clean_old
            b_path = clean_old if new_path == NULL_DEVICE else clean_new
            output.append(f"diff --git a/{a_path} b/{b_path}")
            if old_path == NULL_DEVICE:
                output.append(NEW_FILE_MODE)
            elif new_path == NULL_DEVICE:
                output.append(DELETED_FILE_MODE)
            changed = True
        output.append(line)
    return "\n".join(output) if changed else patch


def ensure_trailing_newline(patch: str) -> str:
    if not patch:
        return patch
    return patch.replace("\r\n", "\n").rstrip("\n") + "\n"


def is_new_file_patch(patch: str) -> bool:
    return f"--- {NULL_DEVICE}" in patch or NEW_FILE_HUNK_PATTERN.search(patch) is not None


def extract_new_file_content(patch: str) -> str | None:
    """Body of the first file in a new-file patch, rebuilt from its added lines."""

    if not is_new_file_patch(patch):
        return None
    content: list[str] = []
    in_hunk = False
    for line in _split_lines(patch):
        if line.startswith("@@"):
            in_hunk = True
            continue
        if not in_hunk:
            continue
        if line.startswith("diff --git "):
            break
        if line.startswith("+++"):
            continue
        if line.startswith("+"):
            content.append(line[1:])
    return "\n".join(content) if content else None


def extract_primary_file_path(patch: str) -> str | None:
    for match in PLUS_PATH_PATTERN.finditer(patch):
        candidate = _header_path(match.group(1))
        if candidate and candidate != NULL_DEVICE:
            return candidate
    header = DIFF_HEADER_PATTERN.search(patch)
    if header:
        return header.group(2).strip() or None
    return None


def extract_patch_paths(patch: str) -> list[str]:
    """Every repository path named on a ``---``, ``+++`` or ``diff --git`` line."""

    paths: list[str] = []
    for line in _split_lines(patch):
        candidates: list[str] = []
        header = DIFF_HEADER_PATTERN.match(line)
        if header:
            candidates = [header.group(1), header.group(2)]
        elif line.startswith(("--- ", "+++ ")):
            candidates = [_header_path(line[4:])]
        for candidate in candidates:
            candidate = candidate.strip()
            if candidate.startswith(("a/", "b/")):
                candidate = candidate[2:]
            if candidate and candidate != NULL_DEVICE and candidate not in paths:
                paths.append(candidate)
    return paths


def extract_file_path_from_prompt(prompt: str) -> str | None:
    match = PROMPT_PATH_PATTERN.search(prompt)
    return match.group(1) if match else None


def mark_as_new_file(patch: str) -> str:
    """Rewrite a modification patch into new-file form; its target does not exist yet."""

    if NULL_DEVICE in patch:
        return patch
    output: list[str] = []
    for index, line in enumerate(_split_lines(patch)):
        if line.startswith("--- a/"):
            line = f"--- {NULL_DEVICE}"
        output.append(line)
        if index == 0 and line.startswith("diff --git "):
            output.append(NEW_FILE_MODE)
    return ensure_trailing_newline("\n".join(output))


def mark_as_existing_file(patch: str, file_path: str) -> str:
    """Rewrite a new-file patch into a modification of ``file_path``, which exists."""

    if "new file mode" not in patch:
        return patch
    output: list[str] = []
    for line in _split_lines(patch):
        if line.startswith("new file mode"):
            continue
        if line.startswith(f"--- {NULL_DEVICE}"):
            line = f"--- a/{file_path}"
        output.append(line)
    return ensure_trailing_newline("\n".join(output))


def normalize_patch(raw: str) -> NormalizedPatch:
    text = extract_unified_diff(raw or "")
    if text.strip():
        text = ensure_trailing_newline(ensure_diff_git_header(text))
    else:
        text = ""
    return NormalizedPatch(
        text=text,
        primary_path=extract_primary_file_path(text),
        is_new_file=is_new_file_patch(text),
    )
