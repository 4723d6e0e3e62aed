"""Display infrastructure for pipeline progress and error reporting."""

from delivery_pipeline.display.callbacks import ProgressCallback
from delivery_pipeline.display.error_display import ErrorDisplay
from delivery_pipeline.display.pipeline_display import PipelineDisplay

__all__ = ["PipelineDisplay", "ErrorDisplay", "ProgressCallback"]
