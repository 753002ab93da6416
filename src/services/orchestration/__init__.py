"""
Orchestration 模块

提供生成编排相关的组件：
- ErrorClassifier: 错误分类器，把任意失败归一为 ErrorInfo（纯逻辑，无副作用）
- GenerationOrchestrator: 生成编排器，组合缓存、能力探测、模型与转换器
"""

from .error_classifier import (
    ClientErrorKind,
    ErrorAction,
    ErrorCategory,
    ErrorClassifier,
    ErrorInfo,
    classify_error,
)
from .generation import Artifact, GenerationOrchestrator, GenerationResult

__all__ = [
    "Artifact",
    "ClientErrorKind",
    "ErrorAction",
    "ErrorCategory",
    "ErrorClassifier",
    "ErrorInfo",
    "GenerationOrchestrator",
    "GenerationResult",
    "classify_error",
]
