"""
模型协作方接口

编排层只依赖 DiagramModel 协议：输入自然语言描述，返回 Draw.io XML。
失败以 LLMError（带错误码）抛出。
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class DiagramModel(Protocol):
    async def generate_xml(self, prompt: str) -> str:
        """根据描述生成 Draw.io XML"""
        ...
