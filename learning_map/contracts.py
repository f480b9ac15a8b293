"""Contracts of the collaborators the core talks to: store, content generator, renderer"""

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from learning_map.models import Article, LearningMapSnapshot, Question, Visualization


class FollowUpRequest(BaseModel):
    """Input for generating an article that answers a question"""

    subject: str
    parent_article_content: str
    triggering_question_text: str


class InitialRequest(BaseModel):
    """Input for generating the root article of a learning map"""

    subject: str
    module_title: str | None = None
    module_description: str | None = None


class GeneratedArticle(BaseModel):
    content: str
    summary: str = ''
    takeaways: list[str] = Field(default_factory=list)


class Store(Protocol):
    """Persistence of learning maps. Owns its own consistency and retries."""

    async def load(self, subject_id: str) -> LearningMapSnapshot:
        """Load the map of a subject, creating an empty one if absent"""
        ...

    async def save(self, entity: Article | Question) -> None:
        """Persist a single entity"""
        ...


class ContentGenerator(Protocol):
    """Produces lesson text. Raises GenerationError on failure."""

    async def generate(self, request: FollowUpRequest) -> GeneratedArticle: ...

    async def generate_initial(self, request: InitialRequest) -> GeneratedArticle: ...


@runtime_checkable
class QuestionSuggester(Protocol):
    """Optional capability of a content generator"""

    async def suggest_questions(self, subject: str, article_content: str) -> list[str]: ...


@runtime_checkable
class TooltipGenerator(Protocol):
    """Optional capability of a content generator, keys of the result are lower-cased concepts"""

    async def generate_tooltips(
        self, subject: str, article_content: str, concepts: list[str]
    ) -> dict[str, str]: ...


type RendererCallback = Callable[[Visualization], None]
