"""Prompts for lesson generation pipeline"""

import pathlib

from iso639 import Language
from jinja2 import Environment, FileSystemLoader, StrictUndefined
from openai.types.chat import ChatCompletionMessageParam
from pydantic import BaseModel

here = pathlib.Path(__file__).parent.resolve()
jinja_env = Environment(loader=FileSystemLoader(str(here)), undefined=StrictUndefined)


def _system_message(language: str) -> ChatCompletionMessageParam:
    system_template = jinja_env.get_template('system.md.jinja')
    language_name = Language.match(language).name
    return {'role': 'system', 'content': system_template.render(language=language_name)}


def initial_article_prompt(
    *,
    subject: str,
    module_title: str | None,
    module_description: str | None,
    language: str,
    response_model: type[BaseModel],
) -> list[ChatCompletionMessageParam]:
    """Creates prompt for the introductory lesson of a learning map."""
    user_template = jinja_env.get_template('initial-article.md.jinja')

    return [
        _system_message(language),
        {
            'role': 'user',
            'content': user_template.render(
                subject=subject,
                module_title=module_title,
                module_description=module_description,
                json_schema=response_model.model_json_schema(),
            ),
        },
    ]


def follow_up_article_prompt(
    *,
    subject: str,
    parent_content: str,
    question: str,
    language: str,
    response_model: type[BaseModel],
) -> list[ChatCompletionMessageParam]:
    """Creates prompt for a lesson answering a question raised by the parent lesson."""
    user_template = jinja_env.get_template('follow-up-article.md.jinja')

    return [
        _system_message(language),
        {
            'role': 'user',
            'content': user_template.render(
                subject=subject,
                parent_content=parent_content,
                question=question,
                json_schema=response_model.model_json_schema(),
            ),
        },
    ]


def suggested_questions_prompt(
    *, subject: str, content: str, language: str, response_model: type[BaseModel]
) -> list[ChatCompletionMessageParam]:
    """Creates prompt for follow-up questions to a lesson"""
    user_template = jinja_env.get_template('suggested-questions.md.jinja')

    return [
        _system_message(language),
        {
            'role': 'user',
            'content': user_template.render(
                subject=subject, content=content, json_schema=response_model.model_json_schema()
            ),
        },
    ]


def tooltip_prompt(
    *, subject: str, content: str, concept: str, language: str, response_model: type[BaseModel]
) -> list[ChatCompletionMessageParam]:
    """Creates prompt for a standalone explanation of a concept"""
    user_template = jinja_env.get_template('tooltip.md.jinja')

    return [
        _system_message(language),
        {
            'role': 'user',
            'content': user_template.render(
                subject=subject,
                content=content,
                concept=concept,
                json_schema=response_model.model_json_schema(),
            ),
        },
    ]


__all__ = [
    'follow_up_article_prompt',
    'initial_article_prompt',
    'suggested_questions_prompt',
    'tooltip_prompt',
]
