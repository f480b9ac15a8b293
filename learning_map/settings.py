from typing import Literal

from pydantic import HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """App configuration"""

    model_config = SettingsConfigDict(  # pyright: ignore[reportUnannotatedClassAttribute]
        env_file='.env', env_file_encoding='utf-8', extra='ignore'
    )

    openai_api_key: str
    openai_base_url: HttpUrl = HttpUrl('https://api.openai.com/v1')
    model_name: str
    model_name_lite: str
    language: str = 'en'
    layout_direction: Literal['DOWN', 'UP', 'RIGHT', 'LEFT'] = 'DOWN'
    log_level: str = 'INFO'


settings = Settings()  # pyright: ignore[reportCallIssue]
