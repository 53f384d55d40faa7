"""Anki card-template rendering.

Templates are parsed into a small tree of nodes and evaluated against a
note's field map:

- Literal: plain text
- FieldRef: ``{{Field}}``, optionally with filters (``{{text:Field}}``,
  ``{{cloze:Text}}``); ``{{FrontSide}}`` renders the question side
- Section: ``{{#Field}}...{{/Field}}`` renders its body when the field is
  non-empty, ``{{^Field}}...{{/Field}}`` when it is empty

Unknown fields render as empty text. A closing tag with no matching opener
is ignored; an unclosed section runs to the end of the template.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Mapping, Tuple, Union

_TOKEN_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)

FRONT_SIDE = "FrontSide"
# Filters that render nothing in a static preview.
_EMPTY_FILTERS = frozenset({"type"})


@dataclass
class Literal:
    text: str


@dataclass
class FieldRef:
    name: str
    filters: Tuple[str, ...] = ()


@dataclass
class Section:
    name: str
    inverted: bool = False
    children: List["Node"] = field(default_factory=list)


Node = Union[Literal, FieldRef, Section]


def _parse_field_ref(body: str) -> FieldRef:
    parts = [p.strip() for p in body.split(":")]
    return FieldRef(name=parts[-1], filters=tuple(p for p in parts[:-1] if p))


def parse_template(template: str) -> List[Node]:
    """Parse template text into a list of top-level nodes."""
    root: List[Node] = []
    # Each entry: (section or None for root, its children list)
    stack: List[Tuple[Section | None, List[Node]]] = [(None, root)]
    pos = 0
    for m in _TOKEN_RE.finditer(template or ""):
        if m.start() > pos:
            stack[-1][1].append(Literal(template[pos:m.start()]))
        pos = m.end()
        body = m.group(1).strip()
        if not body or body.startswith("!"):
            continue
        sigil = body[0]
        if sigil in "#^":
            section = Section(name=body[1:].strip(), inverted=(sigil == "^"))
            stack[-1][1].append(section)
            stack.append((section, section.children))
        elif sigil == "/":
            name = body[1:].strip()
            open_names = [s.name for s, _ in stack[1:]]
            if name in open_names:
                # Close everything down to and including the matching section.
                while stack[-1][0] is not None and stack[-1][0].name != name:
                    stack.pop()
                stack.pop()
        else:
            stack[-1][1].append(_parse_field_ref(body))
    if pos < len(template or ""):
        stack[-1][1].append(Literal(template[pos:]))
    return root


def _field_is_set(fields: Mapping[str, str], name: str) -> bool:
    return bool((fields.get(name) or "").strip())


def render_nodes(nodes: List[Node], fields: Mapping[str, str], front_side: str = "") -> str:
    out: List[str] = []
    for node in nodes:
        if isinstance(node, Literal):
            out.append(node.text)
        elif isinstance(node, FieldRef):
            if node.name == FRONT_SIDE:
                out.append(front_side)
            elif not _EMPTY_FILTERS.intersection(node.filters):
                out.append(fields.get(node.name) or "")
        elif _field_is_set(fields, node.name) != node.inverted:
            out.append(render_nodes(node.children, fields, front_side))
    return "".join(out)


def render_template(template: str, fields: Mapping[str, str], front_side: str = "") -> str:
    """Render an Anki template string against a field map."""
    return render_nodes(parse_template(template), fields, front_side).strip()
