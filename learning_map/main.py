import asyncio
import logging
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from learning_map.contracts import ContentGenerator, Store
from learning_map.errors import InvalidStateError, LayoutError, NotFoundError
from learning_map.layout import Direction, LayoutOutcome
from learning_map.llm_pipelines import LessonPipeline
from learning_map.models import NodeMeasurement, RendererEvent, Visualization
from learning_map.session import LearningMapSession
from learning_map.settings import settings
from learning_map.store import InMemoryStore

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logging.getLogger('httpx').setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


class SessionRegistry:
    """Open learning map sessions, one per subject"""

    def __init__(self, store: Store, generator: ContentGenerator, direction: Direction = 'DOWN'):
        self.store: Store = store
        self.generator: ContentGenerator = generator
        self.direction: Direction = direction
        self._sessions: dict[str, LearningMapSession] = {}
        self._lock = asyncio.Lock()

    async def get(
        self,
        subject_id: str,
        module_title: str | None = None,
        module_description: str | None = None,
    ) -> LearningMapSession:
        async with self._lock:
            session = self._sessions.get(subject_id)
            if session is None:
                session = await LearningMapSession.open(
                    self.store,
                    self.generator,
                    subject_id,
                    module_title=module_title,
                    module_description=module_description,
                    layout_direction=self.direction,
                )
                self._sessions[subject_id] = session
            return session


client = AsyncOpenAI(
    api_key=settings.openai_api_key,
    base_url=str(settings.openai_base_url),
    timeout=3600,
)

lesson_pipeline = LessonPipeline(
    client=client,
    model=settings.model_name,
    model_lite=settings.model_name_lite,
    language=settings.language,
)

registry = SessionRegistry(
    store=InMemoryStore(), generator=lesson_pipeline, direction=settings.layout_direction
)


def get_registry() -> SessionRegistry:
    return registry


Registry = Annotated[SessionRegistry, Depends(get_registry)]


class AskQuestionRequest(BaseModel):
    article_id: str
    text: str = Field(min_length=1)


class LayoutRequest(BaseModel):
    measurements: list[NodeMeasurement]
    direction: Direction | None = None


class LayoutResponse(BaseModel):
    outcome: LayoutOutcome
    visualization: Visualization


app = FastAPI(
    title='Learning Map API',
    description=(
        'Explore a subject through a growing map of lessons and follow-up questions.\n'
        '1) GET /learning-maps/{subject_id} — current map as nodes and edges.\n'
        '2) POST /learning-maps/{subject_id}/events — forward renderer selection events.\n'
        '3) POST /learning-maps/{subject_id}/layout — lay out nodes from their rendered sizes.'
    ),
    version='1.0.0',
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_credentials=False,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.get('/learning-maps/{subject_id}', response_model=Visualization)
async def get_learning_map(
    subject_id: str,
    registry: Registry,
    module_title: str | None = None,
    module_description: str | None = None,
):
    """Open the learning map of a subject, generating its first lesson on first visit"""
    session = await registry.get(subject_id, module_title, module_description)
    return session.visualization()


@app.post('/learning-maps/{subject_id}/events', response_model=Visualization)
async def handle_renderer_event(subject_id: str, event: RendererEvent, registry: Registry):
    """Select an article or a question"""
    session = await registry.get(subject_id)
    return session.handle_event(event)


@app.post('/learning-maps/{subject_id}/questions', response_model=Visualization)
async def ask_question(subject_id: str, request: AskQuestionRequest, registry: Registry):
    """Ask a custom question about an article and navigate to its answer"""
    session = await registry.get(subject_id)
    try:
        return session.ask_question(request.article_id, request.text)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@app.post(
    '/learning-maps/{subject_id}/articles/{article_id}/suggested-questions',
    response_model=Visualization,
)
async def suggest_questions(subject_id: str, article_id: str, registry: Registry):
    """Attach generated follow-up questions to an article"""
    session = await registry.get(subject_id)
    try:
        await session.navigation.surface_questions(article_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return session.visualization()


@app.post('/learning-maps/{subject_id}/articles/{article_id}/tooltips')
async def explain_concepts(subject_id: str, article_id: str, registry: Registry) -> dict[str, str]:
    """Generate explanations for the concepts highlighted in an article"""
    session = await registry.get(subject_id)
    try:
        return await session.navigation.explain_concepts(article_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@app.post('/learning-maps/{subject_id}/articles/{article_id}/retry', response_model=Visualization)
async def retry_generation(subject_id: str, article_id: str, registry: Registry):
    """Generate again an article whose generation failed"""
    session = await registry.get(subject_id)
    try:
        session.navigation.retry_generation(article_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return session.visualization()


@app.post('/learning-maps/{subject_id}/layout', response_model=LayoutResponse)
async def layout_learning_map(subject_id: str, request: LayoutRequest, registry: Registry):
    """Compute node positions from the sizes the renderer measured"""
    session = await registry.get(subject_id)
    try:
        outcome = await session.relayout(request.measurements, request.direction)
    except LayoutError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f'Layout failed: {e}'
        ) from e
    return LayoutResponse(outcome=outcome, visualization=session.visualization())


@app.get('/', include_in_schema=False)
async def root():
    """Redirect to docs on root"""
    return {'ok': True, 'see': '/docs'}
