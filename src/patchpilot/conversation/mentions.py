"""
Expands `@/path` mentions into inline file and folder content.

`@/src/app.py` becomes `'src/app.py' (see below for file content)` and the file is
appended as a `<file_content>` block; `@/src/` (trailing slash) appends a
`<folder_content>` listing. Other mention kinds (URLs, `@problems`) are left as written.
"""

import logging

import regex as re

from patchpilot.exceptions import FileAccessError
from patchpilot.integrations.interfaces import FileSystem

logger = logging.getLogger(__name__)

# A mention ends at whitespace or end of text, optionally followed by one punctuation mark.
MENTION_REGEX = re.compile(r"@(?P<path>/[^\s]+?)(?=[.,;:!?]?(?:\s|$))")

# Regions in which mentions are expanded. Mentions elsewhere are plain prose.
TAGGED_REGION_REGEX = re.compile(r"<(?P<tag>task|feedback)>(?P<body>.*?)</(?P=tag)>", re.DOTALL)


def _folder_content(file_system: FileSystem, folder_path: str) -> str:
    entries = file_system.list_directory(folder_path)
    lines: list[str] = []
    file_blocks: list[str] = []
    for index, entry in enumerate(entries):
        prefix = "└── " if index == len(entries) - 1 else "├── "
        lines.append(prefix + entry)
        if entry.endswith("/"):
            continue
        file_path = f"{folder_path.rstrip('/')}/{entry}" if folder_path.strip("/") else entry
        try:
            content = file_system.read_file(file_path)
        except FileAccessError:
            # Binary or unreadable files are listed but not inlined
            continue
        file_blocks.append(f'<file_content path="{file_path}">\n{content}\n</file_content>')

    listing = "\n".join(lines)
    return "\n\n".join([listing, *file_blocks]) if file_blocks else listing


def parse_mentions(text: str, file_system: FileSystem) -> str:
    mentions: list[str] = []

    def _rewrite(match: re.Match[str]) -> str:
        mention_path = match.group("path")[1:]
        if mention_path not in mentions:
            mentions.append(mention_path)
        kind = "folder" if mention_path.endswith("/") else "file"
        return f"'{mention_path}' (see below for {kind} content)"

    parsed = MENTION_REGEX.sub(_rewrite, text)

    for mention_path in mentions:
        is_folder = mention_path.endswith("/")
        tag = "folder_content" if is_folder else "file_content"
        try:
            if is_folder:
                content = _folder_content(file_system, mention_path)
            else:
                content = file_system.read_file(mention_path)
        except FileAccessError as e:
            logger.debug("Could not expand mention '%s': %s", mention_path, e.message)
            content = f"Error fetching content: {e.message}"
        parsed += f'\n\n<{tag} path="{mention_path}">\n{content}\n</{tag}>'

    return parsed


def expand_tagged_mentions(text: str, file_system: FileSystem) -> str:
    """Expands mentions inside `<task>`/`<feedback>` regions only."""

    def _expand_region(match: re.Match[str]) -> str:
        tag = match.group("tag")
        return f"<{tag}>{parse_mentions(match.group('body'), file_system)}</{tag}>"

    return TAGGED_REGION_REGEX.sub(_expand_region, text)
