import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel

from learning_map.contracts import (
    ContentGenerator,
    FollowUpRequest,
    GeneratedArticle,
    InitialRequest,
    QuestionSuggester,
    Store,
    TooltipGenerator,
)
from learning_map.errors import GenerationError, InvalidStateError, NotFoundError
from learning_map.graph import GraphModel
from learning_map.llm_pipelines.utils import extract_concepts
from learning_map.models import Article, Question, RendererEvent

logger = logging.getLogger(__name__)


class Idle(BaseModel, frozen=True):
    """Question is answered or was never selected"""

    kind: Literal['idle'] = 'idle'


class GeneratingFollowUp(BaseModel, frozen=True):
    """Follow-up article of the question is being generated"""

    kind: Literal['generating_follow_up'] = 'generating_follow_up'
    article_id: str


type QuestionState = Idle | GeneratingFollowUp

IDLE = Idle()


def new_id() -> str:
    return str(uuid4())


class NavigationController:
    """
    Turns learner intent into graph mutations and content generation.

    Tracks the active article and, per question, whether its follow-up article is
    being generated. Generations run as asyncio tasks; they are never cancelled by
    navigation, and their results are applied even after the learner moved on.
    """

    def __init__(
        self,
        graph: GraphModel,
        generator: ContentGenerator,
        subject: str,
        store: Store | None = None,
        id_factory: Callable[[], str] = new_id,
    ):
        self._graph: GraphModel = graph
        self._generator: ContentGenerator = generator
        self._subject: str = subject
        self._store: Store | None = store
        self._id_factory: Callable[[], str] = id_factory

        self._question_states: dict[str, GeneratingFollowUp] = {}
        # running generations keyed by the article they fill
        self._tasks: dict[str, asyncio.Task] = {}
        self._module_title: str | None = None
        self._module_description: str | None = None

        root = graph.get_root_article()
        self._active_article_id: str | None = root.id if root else None

    @property
    def active_article_id(self) -> str | None:
        return self._active_article_id

    def question_state(self, question_id: str) -> QuestionState:
        return self._question_states.get(question_id, IDLE)

    def is_generating(self, article_id: str) -> bool:
        return article_id in self._tasks

    def loading_ids(self) -> set[str]:
        """Ids of pending questions and of the articles being generated"""
        return (
            set(self._tasks)
            | set(self._question_states)
            | {state.article_id for state in self._question_states.values()}
        )

    def select_article(self, article_id: str) -> None:
        # the renderer may report ids the graph does not know yet
        if self._graph.get_article(article_id) is None:
            logger.debug('Ignoring selection of unknown article %s', article_id)
            return
        self._active_article_id = article_id

    def select_question(self, question_id: str) -> asyncio.Task | None:
        """
        Navigate through a question.

        Answered questions activate their destination. An unanswered question gets a
        placeholder article right away, which becomes active and is filled in the background.
        Returns the generation task when one was started.
        """
        question = self._graph.get_question(question_id)
        if question is None:
            logger.debug('Ignoring selection of unknown question %s', question_id)
            return None
        if question_id in self._question_states:
            return None
        if question.destination_article_id is not None:
            self.select_article(question.destination_article_id)
            return None

        source = self._graph.get_article(question.article_id)
        learning_map = self._graph.learning_map
        assert source is not None and learning_map is not None
        # fail before mutating when there is no loop to run the generation on
        asyncio.get_running_loop()

        placeholder = Article(id=self._id_factory(), learning_map_id=learning_map.id)
        self._question_states[question_id] = GeneratingFollowUp(article_id=placeholder.id)
        try:
            self._graph.add_article(placeholder)
            self._active_article_id = placeholder.id
            self._graph.link_question_destination(question_id, placeholder.id)
        except Exception:
            self._question_states.pop(question_id, None)
            raise

        logger.info('Generating follow-up %s for question %s', placeholder.id, question_id)
        request = FollowUpRequest(
            subject=self._subject,
            parent_article_content=source.content,
            triggering_question_text=question.text,
        )
        return self._spawn(
            placeholder.id,
            self._run_generation(
                placeholder.id,
                lambda: self._generator.generate(request),
                persist_first=[question_id],
            ),
        )

    def ask_question(self, article_id: str, text: str) -> Question:
        """Add a question typed by the learner and navigate through it"""
        question = self._graph.add_question(
            Question(id=self._id_factory(), text=text.strip(), article_id=article_id)
        )
        self.select_question(question.id)
        return question

    def generate_root(
        self, module_title: str | None = None, module_description: str | None = None
    ) -> asyncio.Task | None:
        """Fill the root article of the map with an introductory lesson"""
        root = self._graph.get_root_article()
        if root is None:
            raise InvalidStateError('Learning map has no root article')
        self._module_title = module_title
        self._module_description = module_description
        if root.id in self._tasks:
            return None

        request = InitialRequest(
            subject=self._subject,
            module_title=module_title,
            module_description=module_description,
        )
        logger.info('Generating root article %s', root.id)
        return self._spawn(
            root.id,
            self._run_generation(root.id, lambda: self._generator.generate_initial(request)),
        )

    def retry_generation(self, article_id: str) -> asyncio.Task | None:
        """Generate again an article whose previous generation failed"""
        article = self._graph.get_article(article_id)
        if article is None:
            raise NotFoundError(f'Article {article_id!r} not found')
        if article.error is None or article_id in self._tasks:
            return None
        if article.is_root:
            task = self.generate_root(self._module_title, self._module_description)
            self._graph.update_article(article_id, error=None)
            return task

        question = self._graph.get_parent_question(article_id)
        source = self._graph.get_article(question.article_id) if question else None
        if question is None or source is None:
            raise InvalidStateError(f'Article {article_id!r} has no source question')

        request = FollowUpRequest(
            subject=self._subject,
            parent_article_content=source.content,
            triggering_question_text=question.text,
        )
        logger.info('Retrying generation of article %s', article_id)
        self._question_states[question.id] = GeneratingFollowUp(article_id=article_id)
        task = self._spawn(
            article_id,
            self._run_generation(article_id, lambda: self._generator.generate(request)),
        )
        self._graph.update_article(article_id, error=None)
        return task

    async def surface_questions(self, article_id: str) -> list[Question]:
        """Ask the generator for follow-up questions and attach the new ones to the article"""
        article = self._graph.get_article(article_id)
        if article is None:
            raise NotFoundError(f'Article {article_id!r} not found')
        if not article.content or not isinstance(self._generator, QuestionSuggester):
            return []

        try:
            texts = await self._generator.suggest_questions(self._subject, article.content)
        except GenerationError as e:
            logger.warning('Could not suggest questions for article %s: %s', article_id, e)
            return []

        known = {q.text.casefold() for q in self._graph.get_questions_for_article(article_id)}
        added = []
        for text in texts:
            text = text.strip()
            if not text or text.casefold() in known:
                continue
            known.add(text.casefold())
            question = self._graph.add_question(
                Question(id=self._id_factory(), text=text, article_id=article_id)
            )
            await self._persist(question)
            added.append(question)
        return added

    async def explain_concepts(self, article_id: str) -> dict[str, str]:
        """Generate tooltips for the bold concepts of an article that have none yet"""
        article = self._graph.get_article(article_id)
        if article is None:
            raise NotFoundError(f'Article {article_id!r} not found')
        if not article.content or not isinstance(self._generator, TooltipGenerator):
            return {}

        concepts = [
            c for c in extract_concepts(article.content) if c.lower() not in article.tooltips
        ]
        if not concepts:
            return dict(article.tooltips)

        tooltips = await self._generator.generate_tooltips(
            self._subject, article.content, concepts
        )
        current = self._graph.get_article(article_id)
        merged = {**current.tooltips, **tooltips}
        article = self._graph.update_article(article_id, tooltips=merged)
        await self._persist(article)
        return merged

    def handle_event(self, event: RendererEvent) -> asyncio.Task | None:
        match event.type:
            case 'selectArticle':
                self.select_article(event.id)
                return None
            case 'selectQuestion':
                return self.select_question(event.id)

    async def wait_idle(self) -> None:
        """Wait until every running generation settled"""
        while self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    def _spawn(self, article_id: str, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=f'generate-{article_id}')
        self._tasks[article_id] = task
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error('Generation task %s crashed', task.get_name(), exc_info=exc)

    def _settle(self, article_id: str) -> None:
        self._tasks.pop(article_id, None)
        for question_id, state in list(self._question_states.items()):
            if state.article_id == article_id:
                del self._question_states[question_id]

    async def _persist(self, *entities: Article | Question | None) -> None:
        if self._store is None:
            return
        for entity in entities:
            if entity is not None:
                await self._store.save(entity)

    async def _run_generation(
        self,
        article_id: str,
        generate: Callable[[], Awaitable[GeneratedArticle]],
        persist_first: list[str] | None = None,
    ) -> None:
        try:
            try:
                await self._persist(
                    self._graph.get_article(article_id),
                    *(self._graph.get_question(q) for q in persist_first or []),
                )
                generated = await generate()
            except GenerationError as e:
                logger.warning('Generation of article %s failed: %s', article_id, e)
                self._settle(article_id)
                article = self._graph.update_article(article_id, error=str(e) or 'failed')
            except Exception as e:
                # any other failure must still leave the article retryable
                logger.exception('Generation of article %s crashed', article_id)
                self._settle(article_id)
                article = self._graph.update_article(
                    article_id, error=str(e) or type(e).__name__
                )
            else:
                self._settle(article_id)
                article = self._graph.update_article(
                    article_id,
                    content=generated.content,
                    summary=generated.summary,
                    takeaways=generated.takeaways,
                    error=None,
                )
                logger.info('Article %s generated', article_id)
            await self._persist(article)
        finally:
            self._settle(article_id)
