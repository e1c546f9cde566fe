import time
import asyncio
import logging
from typing import Any, List, Optional

from openai import AsyncOpenAI

from ..config import AISettings
from ..models import Region
from ..progress import Progress, ProgressSink, Stage, estimate_eta

logger = logging.getLogger("slides_worker")

PLACEHOLDER = "##text##"


def build_prompt(template: str, text: str) -> str:
    return template.replace(PLACEHOLDER, text)


def parse_summary_response(text: str, fallback: str) -> str:
    """
    Strip a colon-terminated preamble block ("Here is the reformatted text:")

    Returns:
        The reformatted text, or fallback when nothing is left after the preamble
    """
    blocks = text.split("\n\n")
    if blocks[0].endswith(":"):
        remainder = "\n\n".join(blocks[1:]).strip()
        if not remainder:
            logger.warning("Response contained only a preamble, keeping raw text")
            return fallback
        return remainder
    return text.strip()


async def summarize_region(client: Any, settings: AISettings, text: str) -> str:
    """Request a reformatted version of one region's text"""
    response = await client.chat.completions.create(
        model=settings.model,
        messages=[
            {
                "role": "user",
                "content": build_prompt(settings.prompt_template, text)
            }
        ]
    )

    content = response.choices[0].message.content
    if not content:
        raise ValueError("No response content")

    return parse_summary_response(content, text)


async def summarize_regions(
    regions: List[Region],
    settings: AISettings,
    sink: ProgressSink,
    client: Optional[Any] = None,
    pause_sec: float = 1.0,
) -> List[Region]:
    """
    Rewrite each region's summary in place, one request at a time.

    A failed request leaves that region with its trimmed raw text; the run
    always continues.
    """
    client = client or AsyncOpenAI(base_url=settings.base_url, api_key=settings.key)
    total = len(regions)
    start_time = time.monotonic()
    failures = 0

    logger.info(f"Summarising {total} regions with {settings.model}")

    for idx, region in enumerate(regions):
        region.summary = region.summary.strip()

        if region.summary:
            try:
                region.summary = await summarize_region(client, settings, region.summary)
                await asyncio.sleep(pause_sec)
            except Exception as e:
                failures += 1
                logger.warning(f"Summarising region {idx} failed, keeping raw text: {e}")

        sink.emit(Progress.update(
            Stage.SUMMARISING,
            (idx + 1) / total,
            estimate_eta(start_time, idx + 1, total)
        ))

    logger.info(f"Summarisation completed: {total - failures}/{total} regions without errors")
    return regions
