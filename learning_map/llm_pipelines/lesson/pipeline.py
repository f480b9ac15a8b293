import asyncio
import logging

from openai import AsyncOpenAI, OpenAIError
from openai.types.chat import ChatCompletionMessageParam
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from learning_map.contracts import FollowUpRequest, GeneratedArticle, InitialRequest
from learning_map.errors import GenerationError
from learning_map.llm_pipelines.lesson.prompts import (
    follow_up_article_prompt,
    initial_article_prompt,
    suggested_questions_prompt,
    tooltip_prompt,
)
from learning_map.llm_pipelines.models import ArticleDraft, SuggestedQuestions, Tooltip
from learning_map.llm_pipelines.utils import extract_summary, extract_takeaways

logger = logging.getLogger(__name__)

MAX_QUESTIONS = 5


def finalize_draft(draft: ArticleDraft) -> GeneratedArticle:
    """Fill summary and takeaways from the lesson text when the model left them out"""
    content = draft.content.strip()
    takeaways = [t.strip() for t in draft.takeaways if t.strip()] or extract_takeaways(content)
    summary = draft.summary.strip() or extract_summary(content)
    return GeneratedArticle(content=content, summary=summary, takeaways=takeaways)


class LessonPipeline:
    """
    LLM pipeline producing the lessons of a learning map.

    Implements the content generator contract:
    - Introductory lesson for the root article
    - Follow-up lessons answering a question raised by a parent lesson
    - Suggested follow-up questions
    - Tooltips explaining the concepts of a lesson
    """

    def __init__(
        self, client: AsyncOpenAI, model: str, model_lite: str, language: str = 'en'
    ):
        self._client: AsyncOpenAI = client
        self._model: str = model
        self._model_lite: str = model_lite
        self._language: str = language

    async def _parse[T: BaseModel](
        self,
        messages: list[ChatCompletionMessageParam],
        response_model: type[T],
        model: str,
        max_tokens: int = 4096,
    ) -> T:
        try:
            response = await self._client.chat.completions.parse(
                model=model,
                messages=messages,
                response_format=response_model,
                temperature=0.0,
                seed=42,
                max_tokens=max_tokens,
            )
        except (OpenAIError, SchemaValidationError) as e:
            raise GenerationError(f'{response_model.__name__} generation failed: {e}') from e

        message = response.choices[0].message
        if message.refusal:
            raise GenerationError(f'Model refused to answer: {message.refusal}')
        if message.parsed is None:
            raise GenerationError(f'Model returned no {response_model.__name__}')
        return message.parsed

    async def generate_initial(self, request: InitialRequest) -> GeneratedArticle:
        """Generate the introductory lesson of a subject"""
        messages = initial_article_prompt(
            subject=request.subject,
            module_title=request.module_title,
            module_description=request.module_description,
            language=self._language,
            response_model=ArticleDraft,
        )
        draft = await self._parse(messages, ArticleDraft, self._model)
        logger.info('Generated introductory lesson for %s', request.subject)
        return finalize_draft(draft)

    async def generate(self, request: FollowUpRequest) -> GeneratedArticle:
        """
        Generate a lesson answering a follow-up question.

        Parameters
        ----------
        request : FollowUpRequest
            Subject, content of the lesson the question was raised in and the question itself

        Returns
        -------
        GeneratedArticle
            Lesson content with its summary and key takeaways

        Raises
        ------
        GenerationError
            If the request fails or the model does not return a lesson
        """
        messages = follow_up_article_prompt(
            subject=request.subject,
            parent_content=request.parent_article_content,
            question=request.triggering_question_text,
            language=self._language,
            response_model=ArticleDraft,
        )
        draft = await self._parse(messages, ArticleDraft, self._model)
        logger.info('Generated follow-up lesson for %r', request.triggering_question_text)
        return finalize_draft(draft)

    async def suggest_questions(self, subject: str, article_content: str) -> list[str]:
        messages = suggested_questions_prompt(
            subject=subject,
            content=article_content,
            language=self._language,
            response_model=SuggestedQuestions,
        )
        suggestions = await self._parse(
            messages, SuggestedQuestions, self._model_lite, max_tokens=1024
        )
        return [q.strip() for q in suggestions.questions if q.strip()][:MAX_QUESTIONS]

    async def generate_tooltips(
        self, subject: str, article_content: str, concepts: list[str]
    ) -> dict[str, str]:
        """Explain every concept in parallel; concepts that fail are left out"""

        async def _explain(concept: str) -> str:
            messages = tooltip_prompt(
                subject=subject,
                content=article_content,
                concept=concept,
                language=self._language,
                response_model=Tooltip,
            )
            result = await self._parse(messages, Tooltip, self._model_lite, max_tokens=1024)
            return result.tooltip

        results = await asyncio.gather(
            *(_explain(concept) for concept in concepts), return_exceptions=True
        )

        tooltips: dict[str, str] = {}
        for concept, result in zip(concepts, results):
            if isinstance(result, GenerationError):
                logger.warning('Failed to generate tooltip for %r: %s', concept, result)
                continue
            if isinstance(result, BaseException):
                raise result
            tooltips[concept.lower()] = result

        logger.info('Generated %d of %d tooltips', len(tooltips), len(concepts))
        return tooltips
