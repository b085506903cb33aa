"""
matrixci — domain package

File: src/matrixci/domain/__init__.py
Last updated: 2026-10-18

Purpose
- Domain types shared across components: variants, stages, results, runs, and errors.
- Keep the domain layer free of IO side effects.
"""

from matrixci.domain.errors import CommandError, InstallError, MatrixError, NetworkError
from matrixci.domain.models import (
    InstallAttempt,
    InstallReport,
    InstallScope,
    InstallStepResult,
    PipelineRun,
    PipelineState,
    SetupStep,
    Stage,
    StageResult,
    StageStatus,
    ToolchainVariant,
    VariantRun,
    VariantStatus,
    Verdict,
)

__all__ = [
    "CommandError",
    "InstallAttempt",
    "InstallError",
    "InstallReport",
    "InstallScope",
    "InstallStepResult",
    "MatrixError",
    "NetworkError",
    "PipelineRun",
    "PipelineState",
    "SetupStep",
    "Stage",
    "StageResult",
    "StageStatus",
    "ToolchainVariant",
    "VariantRun",
    "VariantStatus",
    "Verdict",
]
