"""High level orchestration for conversation analysis jobs.

Classes:
    AnalysisStageTimer: Captures stage-level timings for a job attempt.
    AnalysisOutcome: Summary of a successful analysis run.
    AnalysisService: Runs embedding, projection, clustering, labeling, grouping, and consolidation for a claimed job.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence
from uuid import UUID, uuid4

import numpy as np
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from conversation_analysis.core.config import Settings, get_settings
from conversation_analysis.core.errors import ConcurrencyError, PersistenceError, ValidationError
from conversation_analysis.models import (
    AnalysisJob,
    AnalysisStatus,
    AnalysisStrategy,
    Conversation,
    Response,
    SimilarityGroup,
    SimilarityGroupMember,
    Theme,
)
from conversation_analysis.services.consolidation import (
    PROMPT_VERSION,
    ConsolidationInput,
    ConsolidationOutput,
    GroupResponse,
    consolidate_groups,
)
from conversation_analysis.services.embedding import (
    EmbeddingTarget,
    embed_in_batches,
    load_embeddings,
    persist_embeddings,
)
from conversation_analysis.services.jobs import JobQueue
from conversation_analysis.services.labeling import ClusterTexts, ThemeDraft, label_clusters
from conversation_analysis.services.openai_client import EmbeddingProvider, OpenAIService, TextGenerator
from conversation_analysis.services.projection import (
    ClusterResult,
    OutlierResult,
    ProjectionResult,
    compute_projection,
    detect_outliers,
    run_kmeans,
)
from conversation_analysis.services.similarity import (
    ClusteredVector,
    SimilarityGroupDraft,
    group_responses_by_similarity,
)

_LOGGER = logging.getLogger(__name__)

_PRE_EMBEDDING_STAGES = {None, "queued", "embedding"}


class AnalysisStageTimer:
    """Utility to capture stage-level timings for an analysis job."""

    def __init__(self) -> None:
        self._origin = time.perf_counter()
        self._wall_start = datetime.utcnow()
        self._stages: list[dict[str, Any]] = []

    @asynccontextmanager
    async def track(self, name: str):
        start_counter = time.perf_counter()
        start_wall = datetime.utcnow()
        failed = False
        try:
            yield
        except BaseException:
            failed = True
            raise
        finally:
            self._stages.append(
                {
                    "name": name,
                    "duration_ms": round((time.perf_counter() - start_counter) * 1000.0, 3),
                    "offset_ms": round((start_counter - self._origin) * 1000.0, 3),
                    "started_at": start_wall.isoformat(timespec="milliseconds") + "Z",
                    "ok": not failed,
                }
            )

    def snapshot(self) -> dict[str, Any]:
        return {
            "total_duration_ms": round((time.perf_counter() - self._origin) * 1000.0, 3),
            "stages": list(self._stages),
            "started_at": self._wall_start.isoformat(timespec="milliseconds") + "Z",
            "finished_at": datetime.utcnow().isoformat(timespec="milliseconds") + "Z",
        }


@dataclass(slots=True)
class AnalysisOutcome:
    job_id: UUID
    conversation_id: UUID
    response_count: int
    embedded_count: int
    theme_count: int
    group_count: int
    projection_method: str
    timings: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class _ClusteringArtifacts:
    projection: ProjectionResult
    clusters: ClusterResult
    outliers: OutlierResult


class AnalysisService:
    def __init__(
        self,
        openai_service: OpenAIService | None = None,
        *,
        embedder: EmbeddingProvider | None = None,
        generator: TextGenerator | None = None,
        settings: Settings | None = None,
        queue: JobQueue | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        if embedder is None or generator is None:
            openai_service = openai_service or OpenAIService(settings=self._settings)
        self._embedder: EmbeddingProvider = embedder or openai_service
        self._generator: TextGenerator = generator or openai_service
        self._queue = queue or JobQueue(self._settings)

    @property
    def queue(self) -> JobQueue:
        return self._queue

    def _synthesis_model(self) -> str:
        return getattr(self._generator, "chat_model", None) or self._settings.openai_chat_model

    async def _set_status(
        self,
        session,
        conversation: Conversation,
        status: str,
        *,
        error: Optional[str] = None,
    ) -> None:
        conversation.analysis_status = status
        conversation.analysis_error = error
        conversation.analysis_updated_at = datetime.utcnow()
        session.add(conversation)
        try:
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceError(f"Failed to record status {status}: {exc}") from exc
        await session.refresh(conversation)

    async def run_job(self, session, job: AnalysisJob, owner: str) -> AnalysisOutcome:
        """Execute a claimed job end to end.

        Stage failures move the conversation to ``error`` and settle the job through the
        queue's retry policy before re-raising. A lost lock re-raises ConcurrencyError
        without touching the job row.
        """

        conversation = await session.get(Conversation, job.conversation_id)
        if conversation is None:
            await self._queue.mark_failed(session, job, owner, "Conversation no longer exists")
            raise ValidationError(f"Conversation {job.conversation_id} not found")

        job_id = job.id
        resume_stage = job.stage
        timer = AnalysisStageTimer()

        async def _embedding_heartbeat(batch_index: int) -> None:
            await self._queue.heartbeat(session, job, owner, "embedding")

        current_stage = "embedding"
        try:
            await self._queue.heartbeat(session, job, owner, current_stage)
            await self._set_status(session, conversation, AnalysisStatus.EMBEDDING)

            responses = await self._load_responses(session, conversation.id)
            async with timer.track("embedding"):
                embedded_count = await self._run_embedding_stage(
                    session,
                    responses,
                    strategy=job.strategy,
                    resume_stage=resume_stage,
                    on_batch=_embedding_heartbeat,
                )

            current_stage = "analyzing"
            await self._queue.heartbeat(session, job, owner, current_stage)
            await self._set_status(session, conversation, AnalysisStatus.ANALYZING)

            if not responses:
                await self._persist_results(session, conversation, responses, None, [], [], [], [])
                outcome = AnalysisOutcome(
                    job_id=job_id,
                    conversation_id=conversation.id,
                    response_count=0,
                    embedded_count=0,
                    theme_count=0,
                    group_count=0,
                    projection_method="none",
                )
            else:
                matrix = await self._load_matrix(session, responses)

                async with timer.track("projection-clustering"):
                    artifacts = await self._run_clustering_stage(matrix)

                current_stage = "labeling-grouping"
                await self._queue.heartbeat(session, job, owner, current_stage)
                async with timer.track("labeling-grouping"):
                    themes, drafts, inputs, outputs = await self._run_summaries_stage(
                        responses, matrix, artifacts.clusters
                    )

                current_stage = "persisting"
                await self._queue.heartbeat(session, job, owner, current_stage)
                async with timer.track("persisting"):
                    await self._persist_results(
                        session, conversation, responses, artifacts, themes, drafts, inputs, outputs
                    )
                outcome = AnalysisOutcome(
                    job_id=job_id,
                    conversation_id=conversation.id,
                    response_count=len(responses),
                    embedded_count=embedded_count,
                    theme_count=len(themes),
                    group_count=len(outputs),
                    projection_method=artifacts.projection.method,
                )

            outcome.timings = timer.snapshot()
            await self._queue.mark_succeeded(session, job, owner, outcome.timings)
            _LOGGER.info(
                "Analysis for conversation %s ready: %d responses, %d themes, %d groups",
                conversation.id,
                outcome.response_count,
                outcome.theme_count,
                outcome.group_count,
            )
            return outcome
        except ConcurrencyError:
            await session.rollback()
            _LOGGER.warning("Job %s lost by worker %s during %s", job_id, owner, current_stage)
            raise
        except Exception as exc:
            await session.rollback()
            message = f"{current_stage} failed: {exc}"
            _LOGGER.error("Analysis job %s failed during %s", job_id, current_stage, exc_info=True)
            await session.refresh(conversation)
            await self._set_status(session, conversation, AnalysisStatus.ERROR, error=message)
            try:
                await self._queue.mark_failed(session, job, owner, message, timer.snapshot())
            except ConcurrencyError:
                _LOGGER.warning("Job %s was reclaimed before its failure could be recorded", job_id)
            raise

    async def _load_responses(self, session, conversation_id: UUID) -> list[Response]:
        result = await session.execute(
            select(Response)
            .where(Response.conversation_id == conversation_id)
            .order_by(Response.created_at, Response.id)
        )
        return list(result.scalars().all())

    async def _run_embedding_stage(
        self,
        session,
        responses: Sequence[Response],
        *,
        strategy: str,
        resume_stage: Optional[str],
        on_batch: Optional[Callable[[int], Awaitable[None]]] = None,
    ) -> int:
        if not responses:
            return 0

        only_missing = strategy == AnalysisStrategy.INCREMENTAL or resume_stage not in _PRE_EMBEDDING_STAGES
        if only_missing:
            existing = await load_embeddings(session, [response.id for response in responses])
            targets = [
                EmbeddingTarget(response_id=response.id, text=response.text)
                for response in responses
                if response.id not in existing
            ]
        else:
            targets = [EmbeddingTarget(response_id=response.id, text=response.text) for response in responses]

        if not targets:
            _LOGGER.info("All %d responses already embedded", len(responses))
            return 0

        vectors = await embed_in_batches(
            self._embedder,
            [target.text for target in targets],
            batch_size=self._settings.embedding_batch_size,
            concurrency=self._settings.embedding_concurrency,
            on_batch=on_batch,
        )
        await persist_embeddings(session, targets, vectors, model=self._settings.openai_embedding_model)
        _LOGGER.info("Embedded %d of %d responses", len(targets), len(responses))
        return len(targets)

    async def _load_matrix(self, session, responses: Sequence[Response]) -> np.ndarray:
        vectors = await load_embeddings(session, [response.id for response in responses])
        missing = [response.id for response in responses if response.id not in vectors]
        if missing:
            raise ValidationError(f"{len(missing)} responses have no embedding")
        dims = {vectors[response.id].shape[0] for response in responses}
        if len(dims) != 1:
            raise ValidationError(f"Stored embeddings have mixed dimensions: {sorted(dims)}")
        return np.vstack([vectors[response.id] for response in responses]).astype(float)

    async def _run_clustering_stage(self, matrix: np.ndarray) -> _ClusteringArtifacts:
        settings = self._settings
        projection = await asyncio.to_thread(
            compute_projection,
            matrix,
            n_neighbors=settings.umap_n_neighbors,
            min_dist=settings.umap_min_dist,
            metric=settings.umap_metric,
            min_points=settings.umap_min_points,
            random_state=settings.random_state,
        )
        clusters = await asyncio.to_thread(
            run_kmeans,
            matrix,
            k=settings.cluster_k,
            random_state=settings.random_state,
        )
        outliers = detect_outliers(
            clusters.labels,
            clusters.distances,
            z_threshold=settings.outlier_z_threshold,
            min_cluster_size=settings.outlier_min_cluster_size,
            max_ratio=settings.outlier_max_ratio,
        )
        if projection.coords_2d.shape[0] != matrix.shape[0] or clusters.labels.shape[0] != matrix.shape[0]:
            raise ValidationError("Projection or clustering output does not cover every response")
        _LOGGER.info(
            "Projected %d responses with %s into %d clusters (%d outliers)",
            matrix.shape[0],
            projection.method,
            clusters.n_clusters,
            outliers.count,
        )
        return _ClusteringArtifacts(projection=projection, clusters=clusters, outliers=outliers)

    async def _run_summaries_stage(
        self,
        responses: Sequence[Response],
        matrix: np.ndarray,
        clusters: ClusterResult,
    ) -> tuple[list[ThemeDraft], list[SimilarityGroupDraft], list[ConsolidationInput], list[ConsolidationOutput]]:
        labels = clusters.labels.tolist()
        cluster_texts = [
            ClusterTexts(
                cluster_index=cluster,
                texts=[response.text for response, label in zip(responses, labels) if label == cluster],
                cohesion=clusters.cohesion.get(cluster),
            )
            for cluster in sorted(clusters.sizes)
        ]

        async def _group_and_consolidate():
            items = [
                ClusteredVector(response_id=response.id, cluster_index=int(label), vector=matrix[idx])
                for idx, (response, label) in enumerate(zip(responses, labels))
            ]
            drafts = await asyncio.to_thread(
                group_responses_by_similarity,
                items,
                threshold=self._settings.similarity_threshold,
                min_group_size=self._settings.min_group_size,
            )
            texts = {response.id: response.text for response in responses}
            inputs = [
                ConsolidationInput(
                    group_id=uuid4(),
                    cluster_index=draft.cluster_index,
                    representative_id=draft.representative_id,
                    responses=[GroupResponse(id=member, text=texts[member]) for member in draft.member_ids],
                )
                for draft in drafts
            ]
            outputs = await consolidate_groups(
                self._generator, inputs, temperature=self._settings.synthesis_temperature
            )
            return drafts, inputs, outputs

        themes, (drafts, inputs, outputs) = await asyncio.gather(
            label_clusters(
                self._generator,
                cluster_texts,
                sample_size=self._settings.label_sample_size,
                temperature=self._settings.labeling_temperature,
            ),
            _group_and_consolidate(),
        )
        return themes, drafts, inputs, outputs

    async def _persist_results(
        self,
        session,
        conversation: Conversation,
        responses: Sequence[Response],
        artifacts: Optional[_ClusteringArtifacts],
        themes: Sequence[ThemeDraft],
        drafts: Sequence[SimilarityGroupDraft],
        inputs: Sequence[ConsolidationInput],
        outputs: Sequence[ConsolidationOutput],
    ) -> None:
        """Write the run's results and flip the conversation to ``ready`` in one commit."""

        try:
            if artifacts is not None:
                coords = artifacts.projection.coords_2d
                for idx, response in enumerate(responses):
                    response.x = float(coords[idx][0])
                    response.y = float(coords[idx][1])
                    response.cluster_index = int(artifacts.clusters.labels[idx])
                    response.distance_to_centroid = float(artifacts.clusters.distances[idx])
                    response.outlier_score = float(artifacts.outliers.scores[idx])
                    response.is_outlier = bool(artifacts.outliers.flags[idx])
                    session.add(response)

            group_ids = select(SimilarityGroup.id).where(SimilarityGroup.conversation_id == conversation.id)
            await session.execute(delete(SimilarityGroupMember).where(SimilarityGroupMember.group_id.in_(group_ids)))
            await session.execute(delete(SimilarityGroup).where(SimilarityGroup.conversation_id == conversation.id))
            await session.execute(delete(Theme).where(Theme.conversation_id == conversation.id))

            session.add_all(
                [
                    Theme(
                        conversation_id=conversation.id,
                        cluster_index=theme.cluster_index,
                        name=theme.name,
                        description=theme.description,
                        size=theme.size,
                        cohesion=theme.cohesion,
                    )
                    for theme in themes
                ]
            )

            statements = {output.group_id: output for output in outputs}
            model_used = self._synthesis_model()
            for draft, group_input in zip(drafts, inputs):
                output = statements.get(group_input.group_id)
                session.add(
                    SimilarityGroup(
                        id=group_input.group_id,
                        conversation_id=conversation.id,
                        cluster_index=draft.cluster_index,
                        representative_response_id=draft.representative_id,
                        size=draft.size,
                        consolidated_statement=output.statement if output else None,
                        combined_responses=output.combined_responses if output else None,
                        params_json=json.dumps(draft.params),
                        model_used=model_used if output and not output.used_fallback else None,
                        prompt_version=PROMPT_VERSION if output else None,
                    )
                )
            await session.flush()
            session.add_all(
                [
                    SimilarityGroupMember(group_id=group_input.group_id, response_id=member.id)
                    for group_input in inputs
                    for member in group_input.responses
                ]
            )

            now = datetime.utcnow()
            conversation.analysis_status = AnalysisStatus.READY
            conversation.analysis_error = None
            conversation.analysis_response_count = len(responses)
            conversation.analyzed_at = now
            conversation.analysis_updated_at = now
            session.add(conversation)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceError(f"Failed to persist analysis results: {exc}") from exc
        await session.refresh(conversation)
