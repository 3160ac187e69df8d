"""
Pipeline Module
===============

Orchestration of the retrieval / transform / cache flow.

Components:
    - Pipeline: ingest and fetch operations
    - PipelineJob: one render through the fixed stage sequence
    - RenderedImage: fetch result
    - WatermarkSpec: decoded watermark plus placement settings
"""

from canvas.pipeline.job import PipelineJob, WatermarkSpec
from canvas.pipeline.orchestrator import Pipeline, PipelineMetrics, RenderedImage

__all__ = [
    "Pipeline",
    "PipelineMetrics",
    "PipelineJob",
    "RenderedImage",
    "WatermarkSpec",
]
