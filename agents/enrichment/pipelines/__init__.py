"""Pipeline registry: slug -> Pipeline subclass."""

from typing import Optional

from agents.enrichment.errors import UnknownPipelineError
from agents.enrichment.pipelines.artist_label import ArtistLabelPipeline
from agents.enrichment.pipelines.base import Pipeline, PipelineContext
from agents.enrichment.pipelines.collectives import CollectivesPipeline
from agents.enrichment.pipelines.consolidation import ConsolidationPipeline
from agents.enrichment.pipelines.media_engine import MediaEnginePipeline

PIPELINES: dict[str, type[Pipeline]] = {
    cls.name: cls
    for cls in (
        MediaEnginePipeline,
        ArtistLabelPipeline,
        CollectivesPipeline,
        ConsolidationPipeline,
    )
}


def get_pipeline(name: str, ctx: Optional[PipelineContext] = None) -> Pipeline:
    cls = PIPELINES.get(name)
    if cls is None:
        raise UnknownPipelineError(name)
    return cls(ctx or PipelineContext.from_settings())


__all__ = ["PIPELINES", "Pipeline", "PipelineContext", "get_pipeline"]
