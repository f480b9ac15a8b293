import logging
from uuid import uuid4

from learning_map.models import Article, LearningMap, LearningMapSnapshot, Question

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Process-local store, one learning map per subject"""

    def __init__(self):
        self._maps: dict[str, LearningMap] = {}
        self._articles: dict[str, Article] = {}
        self._questions: dict[str, Question] = {}

    async def load(self, subject_id: str) -> LearningMapSnapshot:
        learning_map = self._maps.get(subject_id)
        if learning_map is None:
            learning_map = LearningMap(id=str(uuid4()), subject_id=subject_id)
            self._maps[subject_id] = learning_map
            logger.info('Created learning map %s for subject %s', learning_map.id, subject_id)

        return LearningMapSnapshot(
            learning_map=learning_map.model_copy(deep=True),
            articles=[
                a.model_copy(deep=True)
                for a in self._articles.values()
                if a.learning_map_id == learning_map.id
            ],
            questions=[
                q.model_copy(deep=True)
                for q in self._questions.values()
                if q.id in learning_map.question_ids
            ],
        )

    async def save(self, entity: Article | Question) -> None:
        match entity:
            case Article():
                self._articles[entity.id] = entity.model_copy(deep=True)
                owner = self._map_by_id(entity.learning_map_id)
                if owner is not None and entity.id not in owner.article_ids:
                    owner.article_ids.append(entity.id)
            case Question():
                self._questions[entity.id] = entity.model_copy(deep=True)
                source = self._articles.get(entity.article_id)
                owner = self._map_by_id(source.learning_map_id) if source else None
                if owner is not None and entity.id not in owner.question_ids:
                    owner.question_ids.append(entity.id)

    def _map_by_id(self, learning_map_id: str) -> LearningMap | None:
        return next((m for m in self._maps.values() if m.id == learning_map_id), None)
