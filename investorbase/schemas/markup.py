from typing import List, Literal, Optional

from pydantic import BaseModel, Field

NodeType = Literal[
    "fragment",
    "container",
    "header",
    "heading",
    "paragraph",
    "list",
    "list_item",
    "text",
    "strong",
    "emphasis",
    "link",
    "notice",
]


class MarkupNode(BaseModel):
    """Safe markup tree rendered by the client's own templating, never injected as HTML."""

    type: NodeType
    text: Optional[str] = None
    level: Optional[int] = None
    size: Optional[str] = None
    weight: Optional[str] = None
    tone: Optional[str] = None
    theme: Optional[str] = None
    icon: Optional[str] = None
    label: Optional[str] = None
    href: Optional[str] = None
    target: Optional[str] = None
    rel: Optional[str] = None
    children: List["MarkupNode"] = Field(default_factory=list)

    def iter_nodes(self):
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def plain_text(self) -> str:
        return "".join(node.text or "" for node in self.iter_nodes())


MarkupNode.model_rebuild()


class RenderRequest(BaseModel):
    """Request body for rendering arbitrary research text."""

    text: Optional[str] = Field(None, max_length=200_000)
    theme: str = Field("", max_length=100)
