"""Request pipeline stages and the builder that orders them."""

from serenity.middleware.connections import ConnectionTracker
from serenity.middleware.pipeline import MiddlewarePipeline, Stage, build_pipeline

__all__ = ["ConnectionTracker", "MiddlewarePipeline", "Stage", "build_pipeline"]
