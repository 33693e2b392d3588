from openai import AsyncOpenAI
from pydantic_ai import Agent
from pydantic_ai.models.openai import OpenAIChatModel, OpenAIModelProfile
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

from .config import OPENROUTER_BASE_URL, Settings
from .prompt import SYSTEM_PROMPT


def build_summary_agent(settings: Settings) -> Agent[None, str] | None:
    """Agent used for commit summaries, or None when no API key is configured."""
    if not settings.openrouter_api_key:
        return None

    # One attempt only: failures go straight to the heuristic summary.
    client = AsyncOpenAI(
        base_url=OPENROUTER_BASE_URL,
        api_key=settings.openrouter_api_key,
        max_retries=0,
        timeout=settings.ai_timeout,
        default_headers={
            "HTTP-Referer": "https://github.com/repo-ingestor",
            "X-Title": "repo-ingestor-summarizer",
        },
    )
    return Agent(
        model=OpenAIChatModel(
            model_name=settings.summary_model,
            provider=OpenAIProvider(openai_client=client),
            profile=OpenAIModelProfile(openai_supports_tool_choice_required=False),
        ),
        output_type=str,
        instructions=SYSTEM_PROMPT,
        model_settings=ModelSettings(max_tokens=settings.max_tokens),
    )
