"""
AI topic grouping.

Batches ungrouped, eligible tabs into one clustering prompt, then reconciles
the proposed clusters against the live tab set before grouping anything.
A malformed cluster is discarded on its own; it never sinks the whole run.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, ValidationError, field_validator

from closure.config import (
    PROMPT_EXCERPT_MAX_CHARS,
    PROMPT_TITLE_MAX_CHARS,
    PROMPT_URL_MAX_CHARS,
    TOPIC_CLUSTER_MIN_MEMBERS,
    TOPIC_GROUPING_MIN_CANDIDATES,
)
from closure.llm.client import AIAvailability, AIClient, AIResponseError, AIUnavailableError
from closure.observability.logging import get_logger
from closure.observability.telemetry import counter, log_event, time_block
from closure.storage.adapter import StoreAdapter
from closure.tabs.classifier import color_for_key
from closure.tabs.extraction import PageContentExtractor, try_extract
from closure.tabs.models import Tab, UserConfig
from closure.tabs.provider import TabProvider, TabProviderError
from closure.tabs.safety import evaluate
from closure.utils.redaction import sanitize_for_prompt

logger = get_logger(__name__)

TOPIC_TITLE_MAX_CHARS = 40

JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class TopicClusterSchema(BaseModel):
    """One cluster as proposed by the model."""

    title: str = Field(min_length=1, description="Short topic name")
    tabs: list[int] = Field(description="Indices into the candidate list")

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = " ".join(value.split())[:TOPIC_TITLE_MAX_CHARS]
        if not value:
            raise ValueError("blank title")
        return value


@dataclass
class CommittedCluster:
    title: str
    group_id: int
    tab_ids: list[int]


@dataclass
class TopicGroupingResult:
    status: str  # "grouped", or the reason the run stopped early
    groups: list[CommittedCluster] = field(default_factory=list)
    discarded: int = 0


def extract_clusters(response_text: str) -> tuple[list[TopicClusterSchema], int]:
    """
    Pull clusters out of a model response.

    Returns (valid clusters, number discarded). A response with no JSON
    object at all yields ([], 0).
    """
    match = JSON_OBJECT_RE.search(response_text or "")
    if not match:
        counter("topics.no_json")
        return [], 0

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        counter("topics.parse_error")
        logger.warning("Failed to parse topic clustering response: %s", e)
        return [], 0

    raw_groups = data.get("groups") if isinstance(data, dict) else None
    if not isinstance(raw_groups, list):
        counter("topics.parse_error")
        return [], 0

    clusters: list[TopicClusterSchema] = []
    discarded = 0
    for raw in raw_groups:
        try:
            clusters.append(TopicClusterSchema.model_validate(raw))
        except ValidationError:
            discarded += 1
    return clusters, discarded


class TopicGroupingPipeline:
    """Periodic or on-demand AI clustering of ungrouped tabs."""

    PROMPT_TEMPLATE = """You organize browser tabs into topic groups.

Below is a numbered list of open tabs. Group tabs that belong to the same task
or topic. Only group tabs that clearly belong together; leave the rest out.
Every group needs at least 2 tabs and a short title (1-3 words).

Respond with JSON only, in exactly this shape:
{{"groups": [{{"title": "Trip planning", "tabs": [0, 3]}}]}}

Tabs:
{tab_lines}"""

    def __init__(
        self,
        provider: TabProvider,
        store: StoreAdapter,
        ai: AIClient,
        extractor: PageContentExtractor | None = None,
    ):
        self.provider = provider
        self.store = store
        self.ai = ai
        self.extractor = extractor

    async def run(self, *, force: bool = False) -> TopicGroupingResult:
        """
        Run one clustering pass.

        Scheduled runs honor enableTopicGrouping; a manual trigger passes
        force=True. The AI master switch applies to both.
        """
        config = await self.store.get_config()
        if not force and not config.enable_topic_grouping:
            return TopicGroupingResult(status="disabled")
        if not config.enable_ai:
            counter("topics.ai_disabled")
            return TopicGroupingResult(status="ai_disabled")

        with time_block("topics.run"):
            return await self._run(config)

    async def _run(self, config: UserConfig) -> TopicGroupingResult:
        candidates = await self._candidates(config)
        if len(candidates) < TOPIC_GROUPING_MIN_CANDIDATES:
            counter("topics.too_few_candidates")
            return TopicGroupingResult(status="too_few_candidates")

        try:
            availability = await self.ai.availability()
            if availability is not AIAvailability.READY:
                counter("topics.ai_not_ready")
                log_event("topics.aborted", reason=availability.value)
                return TopicGroupingResult(status=availability.value)

            prompt = await self._build_prompt(candidates, config)
            response = await self.ai.prompt(prompt, json_output=True, purpose="topics")
        except (AIUnavailableError, AIResponseError) as e:
            counter("topics.ai_error")
            logger.warning("Topic clustering call failed: %s", e)
            return TopicGroupingResult(status="ai_error")
        except Exception as e:
            counter("topics.ai_error")
            logger.warning("Unexpected topic clustering error: %s", e)
            return TopicGroupingResult(status="ai_error")

        clusters, discarded = extract_clusters(response)
        result = TopicGroupingResult(status="grouped", discarded=discarded)
        claimed: set[int] = set()

        for cluster in clusters:
            tab_ids = []
            for index in cluster.tabs:
                if 0 <= index < len(candidates) and candidates[index].id not in claimed:
                    tab_id = candidates[index].id
                    if tab_id not in tab_ids:
                        tab_ids.append(tab_id)
            if len(tab_ids) < TOPIC_CLUSTER_MIN_MEMBERS:
                result.discarded += 1
                continue

            committed = await self._commit(cluster.title, tab_ids, config)
            if committed is None:
                result.discarded += 1
                continue
            claimed.update(committed.tab_ids)
            result.groups.append(committed)

        counter("topics.clusters_committed", len(result.groups))
        counter("topics.clusters_discarded", result.discarded)
        log_event(
            "topics.completed",
            candidates=len(candidates),
            committed=len(result.groups),
            discarded=result.discarded,
        )
        return result

    async def _candidates(self, config: UserConfig) -> list[Tab]:
        tabs = await self.provider.query_tabs()
        return [t for t in tabs if not t.is_grouped and evaluate(t, config).allowed]

    async def _build_prompt(self, candidates: list[Tab], config: UserConfig) -> str:
        lines = []
        for index, tab in enumerate(candidates):
            title = sanitize_for_prompt(tab.title, max_length=PROMPT_TITLE_MAX_CHARS)
            url = sanitize_for_prompt(tab.url, max_length=PROMPT_URL_MAX_CHARS)
            line = f"{index}. {title or '(untitled)'} | {url}"
            if config.enable_rich_page_analysis:
                content = await try_extract(self.extractor, tab.id)
                if content is not None:
                    detail = content.meta_description or content.excerpt
                    detail = sanitize_for_prompt(detail, max_length=PROMPT_EXCERPT_MAX_CHARS // 2)
                    if detail:
                        line += f" | {detail}"
            lines.append(line)
        return self.PROMPT_TEMPLATE.format(tab_lines="\n".join(lines))

    async def _verify(self, tab_ids: list[int], config: UserConfig) -> list[int]:
        """Keep only tabs that still exist, are still ungrouped and still eligible."""
        alive = []
        for tab_id in tab_ids:
            try:
                tab = await self.provider.get_tab(tab_id)
            except TabProviderError:
                counter("topics.tab_vanished")
                continue
            if tab.is_grouped or not evaluate(tab, config).allowed:
                counter("topics.tab_changed")
                continue
            alive.append(tab_id)
        return alive

    async def _commit(
        self, title: str, tab_ids: list[int], config: UserConfig
    ) -> CommittedCluster | None:
        survivors = await self._verify(tab_ids, config)
        if len(survivors) < TOPIC_CLUSTER_MIN_MEMBERS:
            return None

        try:
            existing = await self.provider.query_groups(title=title)
            if existing:
                group_id = existing[0].id
                await self.provider.group_tabs(survivors, group_id=group_id)
            else:
                group_id = await self.provider.group_tabs(survivors)
                await self.provider.update_group(
                    group_id, title=title, color=color_for_key(title), collapsed=False
                )
        except TabProviderError as e:
            counter("topics.provider_error")
            logger.debug("Topic group commit failed: %s", e)
            return None

        return CommittedCluster(title=title, group_id=group_id, tab_ids=survivors)
