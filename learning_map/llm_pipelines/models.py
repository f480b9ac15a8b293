from inspect import cleandoc

from pydantic import BaseModel, Field


class ArticleDraft(BaseModel):
    """A single micro-lesson"""

    content: str = Field(
        description=cleandoc("""
            The lesson in markdown. Headings start at level 2.
            Ends with a blockquote listing the key takeaways, each line formatted as `> - takeaway`.
        """)
    )
    summary: str = Field(
        description=cleandoc("""
            One or two sentences describing what the lesson teaches.
            Shown on the map node, so it must stand on its own.
        """)
    )
    takeaways: list[str] = Field(
        description=cleandoc("""
            Between 1 and 5 key takeaways, as brief as possible.
            The same takeaways as in the closing blockquote of the content, without markdown.
        """)
    )


class SuggestedQuestions(BaseModel):
    """Follow-up questions a learner may ask after reading a lesson"""

    questions: list[str] = Field(
        description=cleandoc("""
            Between 3 and 5 short, self-contained questions.
            Each one explores a concept of the lesson in more depth
            or branches to a related concept.
        """)
    )


class Tooltip(BaseModel):
    """Standalone explanation of one concept"""

    tooltip: str = Field(
        description=cleandoc("""
            Markdown starting with an ### h3 title, followed by one or two short paragraphs.
        """)
    )
