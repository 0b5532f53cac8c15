"""Arena representation of a decoded MIME tree with iterative traversals.

What:
  Flatten an :class:`email.message.Message` into a list of :class:`MimeNode`
  records linked by parent/child indices, and offer the three walks the
  adapter needs: body extraction, attachment flattening, and collection of
  non-text parts for re-attachment.

Why:
  Attachment references carry only a numeric index, so the order in which
  parts are enumerated is part of the external contract. Keeping every walk in
  one module, implemented iteratively, makes that order explicit and avoids
  recursion limits on adversarially nested messages.

How:
  :meth:`MimeTree.from_message` visits parts with an explicit stack and stores
  them in an arena. Only ``multipart/*`` nodes get children; embedded
  ``message/rfc822`` documents are leaves.

Interfaces:
  :class:`MimeNode`, :class:`MimeTree`, :data:`EXPANDED_SUBTYPES`.

Invariants & Safety:
  - :meth:`MimeTree.flatten` returns the same list for the same bytes on every
    call; indices handed out at read time resolve to the same parts later.
  - Only ``mixed``, ``alternative`` and ``related`` containers are expanded by
    :meth:`MimeTree.flatten`; other multipart subtypes stay opaque.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from email.message import Message
from typing import Iterator, List, Optional

from ..utils.mime import part_bytes, part_text


EXPANDED_SUBTYPES = frozenset({"mixed", "alternative", "related"})
_EXTRA_DISPOSITIONS = frozenset({"attachment", "inline"})


@dataclass
class MimeNode:
    """One part of the tree plus its arena links."""

    index: int
    part: Message
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)

    @property
    def maintype(self) -> str:
        return self.part.get_content_maintype()

    @property
    def subtype(self) -> str:
        return self.part.get_content_subtype()

    @property
    def content_type(self) -> str:
        return self.part.get_content_type()

    @property
    def disposition(self) -> Optional[str]:
        value = self.part.get_content_disposition()
        return value.lower() if value else None

    @property
    def is_multipart(self) -> bool:
        return self.maintype == "multipart"

    @property
    def is_expanded_container(self) -> bool:
        return self.is_multipart and self.subtype in EXPANDED_SUBTYPES

    @property
    def is_attachment(self) -> bool:
        """Whether a flattened part is exposed to clients as an attachment."""

        return self.disposition in _EXTRA_DISPOSITIONS or self.maintype != "text"


class MimeTree:
    """Owned arena of MIME parts rooted at index 0."""

    def __init__(self, nodes: List[MimeNode]):
        self.nodes = nodes

    @classmethod
    def from_message(cls, message: Message) -> "MimeTree":
        """Build the arena for ``message`` without recursion.

        Nodes are appended in pre-order so index 0 is always the root and
        each node's ``children`` list keeps the document order.
        """

        nodes: List[MimeNode] = []
        stack = [(message, None)]
        while stack:
            part, parent = stack.pop()
            node = MimeNode(index=len(nodes), part=part, parent=parent)
            nodes.append(node)
            if parent is not None:
                nodes[parent].children.append(node.index)
            if node.is_multipart:
                payload = part.get_payload()
                if isinstance(payload, list):
                    for child in reversed(payload):
                        stack.append((child, node.index))
        return cls(nodes)

    @property
    def root(self) -> MimeNode:
        return self.nodes[0]

    def children_of(self, node: MimeNode) -> List[MimeNode]:
        return [self.nodes[index] for index in node.children]

    def extract_body(self, subtype: str) -> bytes:
        """Concatenate the raw bodies of every ``text/<subtype>`` leaf.

        What:
          Walks the tree depth-first in document order and appends the
          transfer-decoded body of each matching leaf.

        Why:
          Children marked with an ``attachment`` disposition are skipped so an
          attached ``.txt`` or ``.html`` file never leaks into the body.

        Args:
          subtype: ``"plain"`` or ``"html"``.

        Returns:
          The concatenated body bytes, still in the parts' own charsets.
        """

        return b"".join(part_bytes(node.part) for node in self._body_leaves(subtype))

    def extract_text(self, subtype: str) -> str:
        """Like :meth:`extract_body` but decodes each leaf with its charset."""

        return "".join(part_text(node.part) for node in self._body_leaves(subtype))

    def _body_leaves(self, subtype: str) -> Iterator[MimeNode]:
        stack = [self.root]
        while stack:
            node = stack.pop()
            if node.maintype == "text" and node.subtype == subtype:
                yield node
            if node.is_multipart:
                for child in reversed(self.children_of(node)):
                    if child.disposition != "attachment":
                        stack.append(child)

    def flatten(self) -> List[MimeNode]:
        """Return the indexable part list used for attachment references.

        What:
          Starts from the root's direct children and appends the children of
          every ``mixed``/``alternative``/``related`` container to the end of
          the list as it is scanned.

        Why:
          Containers keep their slot in the list, so the index of a part is
          its position in this growing list. Readers and resolvers must both
          use this method to agree on numbering.

        Returns:
          Every reachable part, containers included, in scan order. A
          single-part message yields an empty list.
        """

        if not self.root.is_multipart:
            return []
        flat = self.children_of(self.root)
        position = 0
        while position < len(flat):
            node = flat[position]
            if node.is_expanded_container:
                flat.extend(self.children_of(node))
            position += 1
        return flat

    def extra_parts(self) -> List[Message]:
        """Return copies of the parts to re-attach when composing.

        What:
          Collects parts below the root whose disposition is ``attachment`` or
          ``inline``, or that are neither text nor multipart, in document
          order.

        How:
          Depth-first over multipart children; each selected part is deep
          copied so the composed document never shares objects with the
          source tree.
        """

        extras: List[Message] = []
        stack = list(reversed(self.children_of(self.root))) if self.root.is_multipart else []
        while stack:
            node = stack.pop()
            if node.disposition in _EXTRA_DISPOSITIONS or not (node.maintype == "text" or node.is_multipart):
                extras.append(copy.deepcopy(node.part))
            if node.is_multipart:
                stack.extend(reversed(self.children_of(node)))
        return extras
