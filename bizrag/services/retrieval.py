"""Retrieval service: filtered similarity search with relevance re-ranking."""

from __future__ import annotations

import json
import re
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from bizrag.config.logger import app_logger
from bizrag.models.documents import ScoredChunk
from bizrag.services.indexing import IndexingPipeline, get_indexing_pipeline

# Relevance weights; they sum to 1 so the score stays in [0, 1] without clipping
WEIGHTS: Dict[str, float] = {
    "content": 0.20,
    "metadata": 0.10,
    "entity_type": 0.10,
    "priority": 0.15,
    "keywords": 0.15,
    "tags": 0.15,
    "confidence": 0.05,
    "recency": 0.10,
}
PRIORITY_TIERS = {"high": 1.0, "medium": 2 / 3, "low": 1 / 3}
RECENCY_WINDOW_SECONDS = 7 * 24 * 3600

RELATED_SAME_TYPE_K = 5
RELATED_SAME_ENTITY_K = 3
RELATED_SAME_TYPE_SCORE = 0.7
RELATED_SAME_ENTITY_SCORE = 0.6

ABBREVIATIONS: Dict[str, str] = {
    "inv": "inventory",
    "acc": "accounting",
    "cust": "customer client",
    "supp": "supplier",
    "prod": "product",
    "bal": "balance",
    "rev": "revenue sales",
}
_ABBREVIATION_RE = re.compile(r"\b(" + "|".join(ABBREVIATIONS) + r")\b", re.IGNORECASE)

STOPWORDS = frozenset(
    "a an and are all any for from has have how in is it me of on or show the to what which with".split()
)
_TERM_RE = re.compile(r"\w+", re.UNICODE)


def preprocess_query(query: str) -> str:
    """Expand domain abbreviations (``inv`` -> ``inventory``)."""
    return _ABBREVIATION_RE.sub(lambda m: ABBREVIATIONS[m.group(1).lower()], query.strip())


def query_terms(text: str) -> List[str]:
    terms = [t.lower() for t in _TERM_RE.findall(text)]
    return [t for t in dict.fromkeys(terms) if len(t) > 1 and t not in STOPWORDS]


def _singular(term: str) -> str:
    return term[:-1] if term.endswith("s") and len(term) > 3 else term


def _token_set(values: Sequence[str]) -> set:
    tokens = set()
    for value in values:
        value = str(value).lower()
        tokens.add(value)
        tokens.update(_singular(t) for t in re.split(r"[\s\-_]+", value) if t)
    return tokens


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


class DateRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[datetime] = Field(default=None, alias="from")
    to: Optional[datetime] = None


class SearchFilters(BaseModel):
    """Semantic filters accepted by enhanced and advanced search."""

    entity_types: Optional[List[str]] = None
    date_range: Optional[DateRange] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    priority: Optional[Union[str, List[str]]] = None
    tags: Optional[List[str]] = None
    keywords: Optional[List[str]] = None


def normalize_filters(filters: Optional[SearchFilters]) -> Optional[Dict[str, Any]]:
    """Structured filter for the indexing pipeline (lists become "one of")."""
    if filters is None:
        return None
    structured: Dict[str, Any] = dict(filters.metadata)
    if filters.entity_types:
        types = filters.entity_types
        structured["entity_type"] = types[0] if len(types) == 1 else list(types)
    if filters.date_range and (filters.date_range.from_ or filters.date_range.to):
        structured["updated_at"] = {
            "from": filters.date_range.from_.isoformat() if filters.date_range.from_ else None,
            "to": filters.date_range.to.isoformat() if filters.date_range.to else None,
        }
    if filters.priority:
        structured["priority"] = filters.priority
    if filters.tags:
        structured["tags"] = list(filters.tags)
    if filters.keywords:
        structured["keywords"] = [k.lower() for k in filters.keywords]
    return structured or None


class SearchResult(BaseModel):
    id: str
    content: str
    entity_type: str = "unknown"
    entity_id: Optional[str] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    priority: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    relationships: List[Dict[str, Any]] = Field(default_factory=list)
    similarity: float = 0.0
    relevance_score: float = 0.0
    search_rank: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


def relevance_score(
    chunk: ScoredChunk,
    terms: Sequence[str],
    filters: Optional[SearchFilters] = None,
    now: Optional[float] = None,
) -> float:
    """Weighted blend of lexical, metadata and enrichment signals in [0, 1]."""
    meta = chunk.metadata
    filters = filters or SearchFilters()
    stems = [_singular(t) for t in terms]
    n_terms = len(stems) or 1

    content_tokens = _token_set(_TERM_RE.findall(chunk.text))
    content = sum(1 for t in stems if t in content_tokens) / n_terms

    metadata = 0.0
    if filters.metadata:
        matched = sum(1 for k, v in filters.metadata.items() if meta.get(k) == v)
        metadata = matched / len(filters.metadata)

    entity_type = str(meta.get("entity_type", ""))
    if filters.entity_types:
        type_match = 1.0 if entity_type in filters.entity_types else 0.0
    else:
        type_match = 1.0 if _singular(entity_type.split("_")[0]) in stems else 0.0

    priority = PRIORITY_TIERS.get(str(meta.get("priority", "")).lower(), 0.0)

    keyword_tokens = _token_set(_as_list(meta.get("keywords")))
    wanted_keywords = set(stems) | {k.lower() for k in filters.keywords or []}
    keywords = len(wanted_keywords & keyword_tokens) / (len(wanted_keywords) or 1)

    tag_tokens = _token_set(_as_list(meta.get("tags")))
    wanted_tags = set(stems) | {t.lower() for t in filters.tags or []}
    tags = len(wanted_tags & tag_tokens) / (len(wanted_tags) or 1)

    try:
        confidence = min(1.0, max(0.0, float(meta.get("confidence_score", 0.0))))
    except (TypeError, ValueError):
        confidence = 0.0

    recency = 0.0
    updated_ts = meta.get("updated_ts")
    if isinstance(updated_ts, (int, float)):
        age = (now if now is not None else time.time()) - updated_ts
        recency = 1.0 if 0 <= age <= RECENCY_WINDOW_SECONDS else 0.0

    score = (
        WEIGHTS["content"] * content
        + WEIGHTS["metadata"] * metadata
        + WEIGHTS["entity_type"] * type_match
        + WEIGHTS["priority"] * priority
        + WEIGHTS["keywords"] * keywords
        + WEIGHTS["tags"] * tags
        + WEIGHTS["confidence"] * confidence
        + WEIGHTS["recency"] * recency
    )
    return round(min(1.0, max(0.0, score)), 6)


def to_search_result(chunk: ScoredChunk, relevance: float) -> SearchResult:
    meta = chunk.metadata
    try:
        relationships = json.loads(meta.get("relationships") or "[]")
    except (TypeError, ValueError):
        relationships = []
    return SearchResult(
        id=chunk.id,
        content=chunk.text,
        entity_type=str(meta.get("entity_type", "unknown")),
        entity_id=str(meta["entity_id"]) if meta.get("entity_id") is not None else None,
        title=meta.get("title"),
        summary=meta.get("summary"),
        priority=meta.get("priority"),
        tags=_as_list(meta.get("tags")),
        keywords=_as_list(meta.get("keywords")),
        relationships=relationships,
        similarity=chunk.score,
        relevance_score=relevance,
        search_rank=chunk.search_rank,
        metadata=dict(meta),
    )


def dedupe_key(result: SearchResult) -> str:
    return f"{result.entity_type}|{result.entity_id}|{result.content[:50]}"


def month_key(result: SearchResult) -> Optional[str]:
    ts = result.metadata.get("updated_ts")
    if not isinstance(ts, (int, float)):
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m")


class AdvancedSearchResult(BaseModel):
    query: str
    total: int
    results: List[SearchResult]
    results_by_type: Dict[str, List[SearchResult]] = Field(default_factory=dict)
    facets: Dict[str, Dict[str, int]] = Field(default_factory=dict)


class EnrichedContext(BaseModel):
    query: str
    results: List[SearchResult]
    related: List[SearchResult] = Field(default_factory=list)
    context_summary: str = ""
    insights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RetrievalService:
    """Enhanced, advanced and context-enriched search over the indexing pipeline."""

    def __init__(self, pipeline: IndexingPipeline):
        self.pipeline = pipeline

    async def enhanced_search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
    ) -> List[SearchResult]:
        """Similarity search re-ranked by relevance; ties keep vector order."""
        processed = preprocess_query(query)
        chunks = await self.pipeline.search(processed, k=limit * 2, filter=normalize_filters(filters))
        terms = query_terms(processed)
        now = time.time()
        results = [to_search_result(c, relevance_score(c, terms, filters, now)) for c in chunks]
        results.sort(key=lambda r: (-r.relevance_score, r.search_rank))
        app_logger.debug(f"Enhanced search '{query[:50]}' returned {len(results[:limit])} results")
        return results[:limit]

    async def advanced_search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 20,
        group_by_type: bool = True,
        include_facets: bool = True,
    ) -> AdvancedSearchResult:
        results = await self.enhanced_search(query, filters, limit)
        response = AdvancedSearchResult(query=query, total=len(results), results=results)
        if group_by_type:
            for result in results:
                response.results_by_type.setdefault(result.entity_type, []).append(result)
        if include_facets:
            response.facets = {
                "entity_types": dict(Counter(r.entity_type for r in results)),
                "months": dict(Counter(m for m in map(month_key, results) if m)),
            }
        return response

    async def find_related(self, results: Sequence[SearchResult], limit: int = 5) -> List[SearchResult]:
        """Secondary searches scoped to each result's entity type and entity id."""
        seen = {dedupe_key(r) for r in results}
        related: List[SearchResult] = []
        for result in results:
            probe = result.summary or result.content[:200]
            scoped = [
                ({"entity_type": result.entity_type}, RELATED_SAME_TYPE_K, RELATED_SAME_TYPE_SCORE),
            ]
            if result.entity_id:
                scoped.append(
                    ({"entity_id": result.entity_id}, RELATED_SAME_ENTITY_K, RELATED_SAME_ENTITY_SCORE)
                )
            for filter, k, score in scoped:
                for chunk in await self.pipeline.search(probe, k=k, filter=filter):
                    candidate = to_search_result(chunk, score)
                    key = dedupe_key(candidate)
                    if key in seen:
                        continue
                    seen.add(key)
                    related.append(candidate)
            if len(related) >= limit:
                break
        return related[:limit]

    async def enrich_context(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 8,
        include_related: bool = True,
    ) -> EnrichedContext:
        results = await self.enhanced_search(query, filters, limit)
        related = await self.find_related(results[:3]) if include_related and results else []
        insights = metadata_insights(results)
        return EnrichedContext(
            query=query,
            results=results,
            related=related,
            context_summary=context_summary(results, related),
            insights=generate_insights(insights),
            recommendations=generate_recommendations(insights, results),
            metadata=insights,
        )


def metadata_insights(results: Sequence[SearchResult]) -> Dict[str, Any]:
    return {
        "entity_types": dict(Counter(r.entity_type for r in results)),
        "months": dict(Counter(m for m in map(month_key, results) if m)),
        "priorities": dict(Counter(r.priority for r in results if r.priority)),
        "tags": dict(Counter(t for r in results for t in r.tags).most_common(10)),
    }


def generate_insights(insights: Dict[str, Any]) -> List[str]:
    lines = []
    top_types = Counter(insights["entity_types"]).most_common(3)
    if top_types:
        lines.append("Most common document types: " + ", ".join(f"{t} ({n})" for t, n in top_types))
    months = sorted(insights["months"].items(), reverse=True)[:3]
    if months:
        lines.append("Recent activity periods: " + ", ".join(f"{m} ({n} docs)" for m, n in months))
    high = insights["priorities"].get("high", 0)
    if high:
        lines.append(f"{high} high-priority item(s) in the results")
    return lines


def generate_recommendations(insights: Dict[str, Any], results: Sequence[SearchResult]) -> List[str]:
    lines = []
    top_types = [t for t, _ in Counter(insights["entity_types"]).most_common(2)]
    if top_types:
        lines.append(f"Consider filtering by entity types: {', '.join(top_types)}")
    tags = insights["tags"]
    if tags.get("overdue"):
        lines.append("Follow up on overdue invoices")
    if tags.get("low-stock") or tags.get("out-of-stock"):
        lines.append("Review reorder levels for low-stock products")
    if tags.get("negative-balance"):
        lines.append("Investigate accounts with negative balances")
    return lines


def context_summary(results: Sequence[SearchResult], related: Sequence[SearchResult]) -> str:
    if not results:
        return "No matching records found."
    types = ", ".join(sorted({r.entity_type for r in results}))
    return f"Found {len(results)} relevant document(s) across {types}; {len(related)} related document(s)."


_service: Optional[RetrievalService] = None


def get_retrieval_service() -> RetrievalService:
    global _service
    if _service is None:
        _service = RetrievalService(get_indexing_pipeline())
    return _service
