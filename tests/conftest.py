import asyncio
import os

import pytest

os.environ.setdefault('OPENAI_API_KEY', 'test-key')
os.environ.setdefault('MODEL_NAME', 'test-model')
os.environ.setdefault('MODEL_NAME_LITE', 'test-model-lite')

from learning_map.contracts import FollowUpRequest, GeneratedArticle, InitialRequest  # noqa: E402
from learning_map.errors import GenerationError  # noqa: E402
from learning_map.graph import GraphModel  # noqa: E402
from learning_map.models import (  # noqa: E402
    Article,
    LearningMap,
    LearningMapSnapshot,
    Question,
)

MAP_ID = 'map-1'


class FakeGenerator:
    """Content generator whose calls are resolved by the test, in any order"""

    def __init__(self):
        self.requests: list[FollowUpRequest | InitialRequest] = []
        self.futures: list[asyncio.Future] = []
        self.suggestions: list[str] = []
        self.tooltip_calls: list[list[str]] = []

    async def _wait(self, request):
        future = asyncio.get_running_loop().create_future()
        self.requests.append(request)
        self.futures.append(future)
        return await future

    async def generate(self, request: FollowUpRequest) -> GeneratedArticle:
        return await self._wait(request)

    async def generate_initial(self, request: InitialRequest) -> GeneratedArticle:
        return await self._wait(request)

    async def suggest_questions(self, subject: str, article_content: str) -> list[str]:
        return list(self.suggestions)

    async def generate_tooltips(
        self, subject: str, article_content: str, concepts: list[str]
    ) -> dict[str, str]:
        self.tooltip_calls.append(concepts)
        return {concept.lower(): f'### {concept}' for concept in concepts}

    def resolve(self, index: int, content: str = 'X', summary: str = '', takeaways=None):
        self.futures[index].set_result(
            GeneratedArticle(content=content, summary=summary, takeaways=takeaways or [])
        )

    def fail(self, index: int, message: str = 'model unavailable'):
        self.futures[index].set_exception(GenerationError(message))


class RecordingStore:
    """Store keeping the last saved copy of every entity"""

    def __init__(self, snapshot: LearningMapSnapshot | None = None):
        self.snapshot = snapshot
        self.saved: dict[str, Article | Question] = {}

    async def load(self, subject_id: str) -> LearningMapSnapshot:
        return self.snapshot or LearningMapSnapshot(
            learning_map=LearningMap(id=MAP_ID, subject_id=subject_id)
        )

    async def save(self, entity: Article | Question) -> None:
        self.saved[entity.id] = entity.model_copy(deep=True)


async def settle(rounds: int = 5):
    """Let scheduled tasks run until they block"""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_snapshot(questions: int = 2, root_content: str = 'Root lesson') -> LearningMapSnapshot:
    root = Article(id='A1', learning_map_id=MAP_ID, content=root_content, is_root=True)
    return LearningMapSnapshot(
        learning_map=LearningMap(id=MAP_ID, subject_id='chemistry'),
        articles=[root],
        questions=[
            Question(id=f'Q{i}', text=f'Question {i}?', article_id='A1')
            for i in range(1, questions + 1)
        ],
    )


@pytest.fixture
def snapshot() -> LearningMapSnapshot:
    return make_snapshot()


@pytest.fixture
def graph(snapshot) -> GraphModel:
    graph = GraphModel()
    graph.initialize(snapshot)
    return graph


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()
