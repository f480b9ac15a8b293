import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import networkx as nx
from pydantic import ValidationError as SchemaValidationError

from learning_map.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from learning_map.models import (
    Article,
    GraphMutation,
    LearningMap,
    LearningMapSnapshot,
    MutationKind,
    Position,
    Question,
    utcnow,
)

logger = logging.getLogger(__name__)

type MutationCallback = Callable[[GraphMutation], None]

FROZEN_ARTICLE_FIELDS = frozenset({'id', 'learning_map_id', 'is_root', 'created_at'})


class GraphModel:
    """
    Canonical in-memory graph of a learning map.

    Articles and questions are kept in id-keyed maps and reference each other by id only.
    All node ids share one insertion order, which the projection relies on.
    Entities handed out by the getters are the stored instances and must be treated as
    read-only; every change goes through the mutating methods so invariants hold.
    """

    def __init__(self):
        self._map: LearningMap | None = None
        self._articles: dict[str, Article] = {}
        self._questions: dict[str, Question] = {}
        self._order: list[str] = []
        # article -> article edges, one per linked question
        self._links: nx.DiGraph = nx.DiGraph()
        self._subscribers: list[MutationCallback] = []
        self._dirty: bool = False

    @property
    def learning_map(self) -> LearningMap | None:
        return self._map

    @property
    def is_dirty(self) -> bool:
        """Whether the topology changed since the last layout"""
        return self._dirty

    def mark_clean(self) -> None:
        self._dirty = False

    def subscribe(self, callback: MutationCallback) -> Callable[[], None]:
        """Register a mutation listener, returns a function removing it"""
        self._subscribers.append(callback)

        def _unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _emit(self, kind: MutationKind, entity_id: str | None = None, dirty: bool = True):
        if dirty:
            self._dirty = True
        mutation = GraphMutation(kind=kind, entity_id=entity_id)
        for callback in list(self._subscribers):
            callback(mutation)

    def _require_map(self) -> LearningMap:
        if self._map is None:
            raise InvalidStateError('Graph is not initialized')
        return self._map

    def initialize(self, snapshot: LearningMapSnapshot) -> None:
        """
        Replace the whole state with a snapshot.

        Raises
        ------
        ValidationError
            If the snapshot does not have exactly one root article, contains duplicate ids,
            dangling references, foreign articles or a cycle.
        """
        map_id = snapshot.learning_map.id
        articles: dict[str, Article] = {}
        questions: dict[str, Question] = {}
        order: list[str] = []

        for article in snapshot.articles:
            if article.id in articles:
                raise ValidationError(f'Duplicate article id {article.id!r}')
            if article.learning_map_id != map_id:
                raise ValidationError(
                    f'Article {article.id!r} belongs to learning map {article.learning_map_id!r}'
                )
            articles[article.id] = article.model_copy(deep=True)
            order.append(article.id)

        roots = [article.id for article in articles.values() if article.is_root]
        if len(roots) != 1:
            raise ValidationError(f'Expected exactly one root article, found {len(roots)}')

        links = nx.DiGraph()
        links.add_nodes_from(articles)
        for question in snapshot.questions:
            if question.id in questions or question.id in articles:
                raise ValidationError(f'Duplicate question id {question.id!r}')
            if question.article_id not in articles:
                raise ValidationError(
                    f'Question {question.id!r} references missing article {question.article_id!r}'
                )
            destination = question.destination_article_id
            if destination is not None:
                if destination not in articles:
                    raise ValidationError(
                        f'Question {question.id!r} leads to missing article {destination!r}'
                    )
                links.add_edge(question.article_id, destination)
            questions[question.id] = question.model_copy(deep=True)
            order.append(question.id)

        if not nx.is_directed_acyclic_graph(links):
            raise ValidationError('Article -> question -> article relation contains a cycle')

        self._map = snapshot.learning_map.model_copy(
            update={'article_ids': list(articles), 'question_ids': list(questions)}
        )
        self._articles = articles
        self._questions = questions
        self._order = order
        self._links = links
        logger.debug(
            'Initialized learning map %s with %d articles and %d questions',
            map_id,
            len(articles),
            len(questions),
        )
        self._emit(MutationKind.INITIALIZED, map_id)

    def _check_new_id(self, entity_id: str):
        if entity_id in self._articles or entity_id in self._questions:
            raise ConflictError(f'Entity {entity_id!r} already exists')

    def add_article(self, article: Article) -> Article:
        learning_map = self._require_map()
        self._check_new_id(article.id)
        if article.learning_map_id != learning_map.id:
            raise ValidationError(
                f'Article {article.id!r} belongs to learning map {article.learning_map_id!r}'
            )
        if article.is_root:
            raise ValidationError('Learning map already has a root article')

        stored = article.model_copy(deep=True)
        self._articles[stored.id] = stored
        self._order.append(stored.id)
        self._links.add_node(stored.id)
        learning_map.article_ids.append(stored.id)
        logger.debug('Added article %s', stored.id)
        self._emit(MutationKind.ARTICLE_ADDED, stored.id)
        return stored

    def update_article(
        self, article_id: str, changes: Mapping[str, Any] | None = None, **fields: Any
    ) -> Article:
        """Merge fields into an article; identity fields cannot change"""
        article = self._articles.get(article_id)
        if article is None:
            raise NotFoundError(f'Article {article_id!r} not found')

        changes = {**(changes or {}), **fields}
        unknown = set(changes) - set(Article.model_fields)
        if unknown:
            raise ValidationError(f'Unknown article fields: {", ".join(sorted(unknown))}')
        for name in FROZEN_ARTICLE_FIELDS & set(changes):
            if changes[name] != getattr(article, name):
                raise ValidationError(f'Article field {name!r} cannot be changed')

        try:
            updated = Article.model_validate(
                {**article.model_dump(), **changes, 'updated_at': utcnow()}
            )
        except SchemaValidationError as e:
            raise ValidationError(f'Invalid update for article {article_id!r}: {e}') from e

        self._articles[article_id] = updated
        logger.debug('Updated article %s: %s', article_id, ', '.join(sorted(changes)))
        self._emit(MutationKind.ARTICLE_UPDATED, article_id)
        return updated

    def add_question(self, question: Question) -> Question:
        learning_map = self._require_map()
        self._check_new_id(question.id)
        if question.article_id not in self._articles:
            raise NotFoundError(f'Source article {question.article_id!r} not found')

        destination = question.destination_article_id
        if destination is not None:
            if destination not in self._articles:
                raise NotFoundError(f'Destination article {destination!r} not found')
            self._check_acyclic(question.article_id, destination)
            self._links.add_edge(question.article_id, destination)

        stored = question.model_copy(deep=True)
        self._questions[stored.id] = stored
        self._order.append(stored.id)
        learning_map.question_ids.append(stored.id)
        logger.debug('Added question %s to article %s', stored.id, stored.article_id)
        self._emit(MutationKind.QUESTION_ADDED, stored.id)
        return stored

    def _check_acyclic(self, source_article_id: str, destination_article_id: str):
        if destination_article_id == source_article_id or nx.has_path(
            self._links, destination_article_id, source_article_id
        ):
            raise InvalidStateError(
                f'Linking {source_article_id!r} to {destination_article_id!r} creates a cycle'
            )

    def link_question_destination(self, question_id: str, article_id: str) -> Question:
        """Set the article a question leads to. The link is set once and never changes."""
        question = self._questions.get(question_id)
        if question is None:
            raise NotFoundError(f'Question {question_id!r} not found')
        if article_id not in self._articles:
            raise NotFoundError(f'Article {article_id!r} not found')
        if question.destination_article_id is not None:
            raise InvalidStateError(
                f'Question {question_id!r} already leads to {question.destination_article_id!r}'
            )
        self._check_acyclic(question.article_id, article_id)

        question.destination_article_id = article_id
        question.updated_at = utcnow()
        self._links.add_edge(question.article_id, article_id)
        logger.debug('Linked question %s to article %s', question_id, article_id)
        self._emit(MutationKind.DESTINATION_LINKED, question_id)
        return question

    def apply_positions(self, positions: Mapping[str, Position]) -> None:
        """Write layout results onto nodes; unknown ids are ignored"""
        applied = 0
        for node_id, position in positions.items():
            entity = self._articles.get(node_id) or self._questions.get(node_id)
            if entity is not None:
                entity.position = position
                applied += 1
        logger.debug('Applied %d positions', applied)
        self._emit(MutationKind.POSITIONS, dirty=False)

    def get_article(self, article_id: str) -> Article | None:
        return self._articles.get(article_id)

    def get_question(self, question_id: str) -> Question | None:
        return self._questions.get(question_id)

    def get_root_article(self) -> Article | None:
        return next((a for a in self._articles.values() if a.is_root), None)

    def get_questions_for_article(self, article_id: str) -> list[Question]:
        return [q for q in self.questions() if q.article_id == article_id]

    def get_parent_question(self, article_id: str) -> Question | None:
        """Question whose destination is the given article"""
        return next(
            (q for q in self._questions.values() if q.destination_article_id == article_id),
            None,
        )

    def ancestors(self, article_id: str) -> set[str]:
        """Ids of all articles the given one was reached from"""
        if article_id not in self._links:
            return set()
        return nx.ancestors(self._links, article_id)

    def node_ids(self) -> list[str]:
        """All article and question ids in insertion order"""
        return list(self._order)

    def articles(self) -> list[Article]:
        return [self._articles[i] for i in self._order if i in self._articles]

    def questions(self) -> list[Question]:
        return [self._questions[i] for i in self._order if i in self._questions]

    def has_node(self, node_id: str) -> bool:
        return node_id in self._articles or node_id in self._questions

    def snapshot(self) -> LearningMapSnapshot:
        learning_map = self._require_map()
        return LearningMapSnapshot(
            learning_map=learning_map.model_copy(deep=True),
            articles=[a.model_copy(deep=True) for a in self.articles()],
            questions=[q.model_copy(deep=True) for q in self.questions()],
        )


def iter_question_edges(questions: Iterable[Question]):
    """Yield (edge id, source, target) for the two-step article -> question -> article path"""
    for question in questions:
        yield f'{question.article_id}-{question.id}', question.article_id, question.id
        if question.destination_article_id is not None:
            yield (
                f'{question.id}-{question.destination_article_id}',
                question.id,
                question.destination_article_id,
            )
