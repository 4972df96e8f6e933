"""
Run Input Builder Module

Enriches the message of a run before the prompt chain sees it: caller
context items, audio transcripts, knowledge lookups and the text of the
web pages the caller linked. Run-scoped additions reach the model only;
session-scoped additions are also kept in the saved conversation.
"""

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog
from bs4 import BeautifulSoup
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

KnowledgeSource = Callable[[str], Awaitable[str]]
PageReader = Callable[[str], Awaitable[str]]
Transcriber = Callable[[str], Awaitable[str]]


class ContextScope(str, Enum):
    """Where an addition to the run message is kept."""

    RUN = "run"
    SESSION = "session"


class ContextItem(BaseModel):
    """A described value the caller attaches to a run."""

    description: str
    value: Any
    scope: ContextScope = ContextScope.SESSION


@dataclass
class BuiltInputs:
    """Inputs of a run after enrichment."""

    inputs: Dict[str, Any]
    message: str
    context_message: str


class WebPageReader:
    """
    Fetches a page and extracts its readable text.

    Uses httpx for the request and BeautifulSoup for the HTML.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self._client = client
        self.timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": "AgentFlow/0.4"},
            )
        return self._client

    async def __call__(self, url: str) -> str:
        response = await self.client.get(url)
        response.raise_for_status()

        soup = BeautifulSoup(response.text, "html.parser")
        for element in soup(["script", "style", "nav", "footer", "header"]):
            element.decompose()

        content = soup.find("main") or soup.find("article") or soup.body or soup
        text = content.get_text(separator="\n", strip=True)
        text = re.sub(r"\n{3,}", "\n\n", text)
        text = re.sub(r" {2,}", " ", text)

        logger.info("page_read", url=url, text_length=len(text))
        return text

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class InputBuilder:
    """
    Builds the message a run sends to the model.

    Reads ``context`` (a list of context items), ``audio`` (audio URLs) and
    ``urls`` (web pages) from the run inputs. Additions are appended to the
    message in that order, followed by the knowledge lookup and the page
    texts. Sources that are not configured are skipped.

    Example:
        builder = InputBuilder(knowledge=search_docs)
        built = await builder.build({"message": "Hi", "urls": ["https://example.com"]})
    """

    def __init__(
        self,
        knowledge: Optional[KnowledgeSource] = None,
        page_reader: Optional[PageReader] = None,
        transcriber: Optional[Transcriber] = None,
    ):
        self.knowledge = knowledge
        self.page_reader = page_reader or WebPageReader()
        self.transcriber = transcriber

    async def build(self, inputs: Dict[str, Any]) -> BuiltInputs:
        message_parts: List[str] = []
        context_parts: List[str] = []

        def add(content: str, scope: ContextScope) -> None:
            if not content:
                return
            message_parts.append(content)
            if scope == ContextScope.SESSION:
                context_parts.append(content)

        base = inputs.get("message")
        add(str(base) if base else "", ContextScope.SESSION)

        for raw in inputs.get("context") or []:
            item = ContextItem.model_validate(raw)
            add(f"{item.description}: {item.value}", item.scope)

        audio = list(inputs.get("audio") or [])
        if audio:
            if self.transcriber is None:
                logger.warning("audio_input_ignored", count=len(audio))
            else:
                for text in await asyncio.gather(*(self.transcriber(url) for url in audio)):
                    add(text, ContextScope.SESSION)

        urls = list(inputs.get("urls") or [])
        pages_task = asyncio.gather(*(self.page_reader(url) for url in urls))
        knowledge_task = self._lookup("\n".join(message_parts))
        pages, knowledge = await asyncio.gather(pages_task, knowledge_task)

        add(knowledge, ContextScope.RUN)
        for page in pages:
            add(page, ContextScope.SESSION)

        message = "\n".join(message_parts)
        new_inputs = dict(inputs)
        if message:
            new_inputs["message"] = message

        if message != (str(base) if base else ""):
            logger.debug(
                "run_inputs_enriched",
                context_items=len(inputs.get("context") or []),
                audio=len(audio),
                urls=len(urls),
                knowledge=bool(knowledge),
            )

        return BuiltInputs(
            inputs=new_inputs,
            message=message,
            context_message="\n".join(context_parts),
        )

    async def _lookup(self, message: str) -> str:
        if self.knowledge is None or not message:
            return ""
        return await self.knowledge(message) or ""


__all__ = [
    "ContextScope",
    "ContextItem",
    "BuiltInputs",
    "WebPageReader",
    "InputBuilder",
]
