from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


class Position(BaseModel):
    """Top-left corner of a node in map coordinates"""

    x: float
    y: float


class LearningMap(BaseModel):
    """
    Per-subject container of articles and questions.

    Owns its entities by id only; the entities themselves live in the graph arena.
    """

    id: str
    subject_id: str
    article_ids: list[str] = Field(default_factory=list)
    question_ids: list[str] = Field(default_factory=list)


class Article(BaseModel):
    """A generated lesson node of the learning map"""

    id: str
    learning_map_id: str
    content: str = ''
    summary: str = ''
    takeaways: list[str] = Field(default_factory=list)
    is_root: bool = False
    position: Position | None = None
    tooltips: dict[str, str] = Field(default_factory=dict)
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Question(BaseModel):
    """A branch point leading from an article to an optional follow-up article"""

    id: str
    text: str
    article_id: str
    destination_article_id: str | None = None
    position: Position | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class LearningMapSnapshot(BaseModel):
    """Full state of a learning map, as loaded from the store"""

    learning_map: LearningMap
    articles: list[Article] = Field(default_factory=list)
    questions: list[Question] = Field(default_factory=list)


class MutationKind(StrEnum):
    INITIALIZED = 'initialized'
    ARTICLE_ADDED = 'article_added'
    ARTICLE_UPDATED = 'article_updated'
    QUESTION_ADDED = 'question_added'
    DESTINATION_LINKED = 'destination_linked'
    POSITIONS = 'positions'


class GraphMutation(BaseModel):
    """Notification emitted by the graph after an accepted change"""

    kind: MutationKind
    entity_id: str | None = None


type NodeKind = Literal['article', 'question']


class VisualNode(BaseModel):
    """Renderable node handed to the graph renderer"""

    id: str
    type: NodeKind
    position: Position | None = None
    label: str
    is_root: bool = False
    is_active: bool = False
    is_loading: bool = False
    has_error: bool = False
    takeaways: list[str] = Field(default_factory=list)


class VisualEdge(BaseModel):
    id: str
    source: str
    target: str


class Visualization(BaseModel):
    nodes: list[VisualNode] = Field(default_factory=list)
    edges: list[VisualEdge] = Field(default_factory=list)


class NodeMeasurement(BaseModel):
    """Rendered size of a node; unknown until it was painted off-screen"""

    id: str
    width: float | None = None
    height: float | None = None


class LayoutNode(BaseModel):
    id: str
    width: float | None = None
    height: float | None = None


class LayoutEdge(BaseModel):
    id: str
    source: str
    target: str


class RendererEvent(BaseModel):
    """Selection event emitted by the graph renderer"""

    type: Literal['selectArticle', 'selectQuestion']
    id: str
