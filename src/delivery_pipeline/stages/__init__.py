"""The six delivery stages."""

from delivery_pipeline.stages.base import BaseStage
from delivery_pipeline.stages.build import BuildStage
from delivery_pipeline.stages.deploy import DeployStage
from delivery_pipeline.stages.image import ImageStage
from delivery_pipeline.stages.quality_gate import QualityGateStage
from delivery_pipeline.stages.security_scan import SecurityScanStage
from delivery_pipeline.stages.testing import TestStage

__all__ = [
    "BaseStage",
    "BuildStage",
    "DeployStage",
    "ImageStage",
    "QualityGateStage",
    "SecurityScanStage",
    "TestStage",
]
