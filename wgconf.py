"""
Structured view of WireGuard INI-style config files.

A file is parsed into a list of sections that keep their own lines verbatim, so
a section can be dropped by identity and everything else written back
exactly as it was.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple
import re

HEADER_RE = re.compile(r'^\s*\[(?P<name>[A-Za-z]+)\]\s*(#.*)?$')


def _is_blank(line: str) -> bool:
    return not line.strip()


def _is_comment(line: str) -> bool:
    return line.strip().startswith('#')


@dataclass
class Section:
    """
    One [Name] block and the lines that follow it.

    name is None for lines before the first header.
    """
    name: Optional[str]
    lines: List[str] = field(default_factory=list)

    @classmethod
    def build(cls, name: str, values: Iterable[Tuple[str, object]], comments: Iterable[str] = ()) -> "Section":
        lines = [f"[{name}]"]
        lines.extend(f"# {comment}" for comment in comments)
        lines.extend(f"{key} = {value}" for key, value in values if value is not None)
        return cls(name=name, lines=lines)

    def get(self, key: str) -> Optional[str]:
        """First value for key (keys are case-insensitive), or None"""
        wanted = key.lower()
        for line in self.lines:
            content = line.split('#', 1)[0]
            if '=' not in content or HEADER_RE.match(line):
                continue
            k, v = content.split('=', 1)
            if k.strip().lower() == wanted:
                return v.strip()
        return None

    @property
    def comments(self) -> List[str]:
        return [line.strip().lstrip('#').strip() for line in self.lines if _is_comment(line)]

    @property
    def public_key(self) -> Optional[str]:
        return self.get('PublicKey')

    @property
    def is_peer(self) -> bool:
        return self.name is not None and self.name.lower() == 'peer'

    def matches(self, public_key: Optional[str] = None, username: Optional[str] = None) -> bool:
        """True for a [Peer] section identified by public key or username marker"""
        if not self.is_peer:
            return False
        if public_key and self.public_key == public_key:
            return True
        return bool(username) and username in self.comments


def parse_config(text: str) -> List[Section]:
    """
    Split config text into sections.

    Comment lines directly above a header (no blank line in between) belong
    to the section that header opens.
    """
    sections: List[Section] = []
    current = Section(name=None)

    for line in text.splitlines():
        match = HEADER_RE.match(line)
        if not match:
            current.lines.append(line)
            continue

        leading: List[str] = []
        while current.lines and _is_comment(current.lines[-1]):
            leading.insert(0, current.lines.pop())

        if current.lines or current.name is not None:
            sections.append(current)
        current = Section(name=match.group('name'), lines=leading + [line])

    if current.lines or current.name is not None:
        sections.append(current)
    return sections


def serialize_config(sections: Iterable[Section]) -> str:
    lines: List[str] = []
    for section in sections:
        lines.extend(section.lines)
    while lines and _is_blank(lines[-1]):
        lines.pop()
    return "\n".join(lines) + "\n" if lines else ""


def append_section(sections: List[Section], section: Section) -> List[Section]:
    """Return sections with section added after a separating blank line"""
    result = list(sections)
    if result:
        last = result[-1]
        trimmed = list(last.lines)
        while trimmed and _is_blank(trimmed[-1]):
            trimmed.pop()
        result[-1] = Section(name=last.name, lines=trimmed + [""])
    result.append(section)
    return result


def remove_peer_sections(
    sections: Iterable[Section],
    public_key: Optional[str] = None,
    username: Optional[str] = None
) -> Tuple[List[Section], int]:
    """
    Drop every [Peer] section matching the identity.

    Returns:
        (remaining sections, number removed)
    """
    kept: List[Section] = []
    removed = 0
    for section in sections:
        if section.matches(public_key=public_key, username=username):
            removed += 1
        else:
            kept.append(section)
    return kept, removed


def peer_sections(sections: Iterable[Section]) -> List[Section]:
    return [s for s in sections if s.is_peer]
