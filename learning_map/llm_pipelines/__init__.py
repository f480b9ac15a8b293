"""LLM pipelines producing lesson content for the learning map"""

from .lesson.pipeline import LessonPipeline

__all__ = ['LessonPipeline']
