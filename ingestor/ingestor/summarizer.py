import asyncio
import logging

from pydantic_ai import Agent

from .fallback import DiffStats, fallback_summary
from .models import SummaryResult
from .prompt import build_user_prompt

logger = logging.getLogger(__name__)


class SummaryGenerator:
    """Commit summaries from the AI backend, degrading to a heuristic summary.

    The backend gets exactly one attempt. Any failure, timeout or empty answer
    produces the heuristic summary with `used_fallback=True`; `summarize`
    itself never raises for backend problems.
    """

    def __init__(
        self,
        agent: Agent[None, str] | None,
        *,
        timeout: float = 60.0,
        max_diff_chars: int = 12_000,
        max_summary_chars: int = 500,
    ):
        self._agent = agent
        self.timeout = timeout
        self.max_diff_chars = max_diff_chars
        self.max_summary_chars = max_summary_chars

    async def summarize(
        self, message: str, diff_text: str | None, stats: DiffStats | None = None
    ) -> SummaryResult:
        text = await self._ask_model(message, diff_text)
        if text:
            return SummaryResult(text=text, used_fallback=False)
        return SummaryResult(text=fallback_summary(message, diff_text, stats), used_fallback=True)

    async def _ask_model(self, message: str, diff_text: str | None) -> str | None:
        if self._agent is None:
            return None

        prompt = build_user_prompt(message, diff_text, self.max_diff_chars)
        try:
            result = await asyncio.wait_for(self._agent.run(prompt), timeout=self.timeout)
        except Exception as e:
            logger.warning("AI summary failed, using heuristic summary: %s", str(e) or type(e).__name__)
            return None

        output = result.output.strip() if isinstance(result.output, str) else ""
        if not output:
            logger.warning("AI backend returned an empty summary, using heuristic summary")
            return None
        if len(output) > self.max_summary_chars:
            output = output[: self.max_summary_chars - 3].rstrip() + "..."
        return output
