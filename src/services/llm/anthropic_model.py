"""
Anthropic Messages API 模型协作方

调用 /v1/messages 生成 Draw.io XML，负责：
- 构建系统提示词与用户提示词
- 自身的响应截止时间（与入站请求的截止时间相互独立）
- 从模型输出中提取并校验 <mxfile> 文档
- 把上游失败映射为带错误码的 LLMError
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from src.clients.http_client import HTTPClientPool
from src.config import Config
from src.core.error_utils import extract_error_message, extract_payload_message
from src.core.exceptions import ErrorCode, LLMConfigError, LLMError
from src.core.logger import logger
from src.services.orchestration.error_classifier import ErrorClassifier
from src.services.rate_limit.detector import RateLimitDetector

MESSAGES_PATH = "/v1/messages"

SYSTEM_PROMPT = """你是生成 Draw.io 格式 XML 的专家。请把用户用自然语言描述的图表，转换为可以在 Draw.io（diagrams.net）中打开的有效 XML。

重要要求:
1. 必须输出有效的 Draw.io XML
2. XML 必须以 <mxfile> 标签开始，以 </mxfile> 标签结束
3. 图中的元素使用 <mxCell> 标签定义
4. 设置合理的坐标和尺寸
5. 正确处理中文等非 ASCII 文本
6. 根据描述选择合适的图表类型（流程图、组织架构图、系统架构图等）

输出格式:
- 只输出 XML，不要附加任何说明
- XML 需要格式化
- 使用 UTF-8 编码

Draw.io XML 基本结构示例:
```xml
<mxfile host="app.diagrams.net" agent="AI" version="22.1.0">
  <diagram name="Page-1" id="page-id">
    <mxGraphModel dx="1422" dy="794" grid="1" gridSize="10" guides="1" tooltips="1" connect="1" arrows="1" fold="1" page="1" pageScale="1" pageWidth="827" pageHeight="1169">
      <root>
        <mxCell id="0"/>
        <mxCell id="1" parent="0"/>
      </root>
    </mxGraphModel>
  </diagram>
</mxfile>
```"""

USER_PROMPT_TEMPLATE = """请根据以下描述生成 Draw.io 格式的 XML：

{prompt}

要求:
- 用合适的图表表达上述描述
- 清晰地表示元素之间的关系
- 布局易于阅读

只输出 XML："""

_FENCED_XML_PATTERN = re.compile(r"```xml\s*([\s\S]*?)\s*```")
_MXFILE_PATTERN = re.compile(r"(<mxfile[\s\S]*?</mxfile>)")
_OPEN_TAG_PATTERN = re.compile(r"<[^/][^>]*>")
_CLOSE_TAG_PATTERN = re.compile(r"</[^>]*>")
_SELF_CLOSING_PATTERN = re.compile(r"<[^>]*/>")

# 校验必需的结构标记 -> 缺失时的错误消息
_REQUIRED_MARKERS = (
    ("<mxfile", "生成的 XML 无效: 缺少 mxfile 标签"),
    ("</mxfile>", "生成的 XML 无效: 缺少 mxfile 结束标签"),
    ("<mxGraphModel", "生成的 XML 无效: 缺少 mxGraphModel 标签"),
    ("<root>", "生成的 XML 无效: 缺少 root 标签"),
)

_QUOTA_INDICATORS = ("quota", "billing", "credit")


def extract_drawio_xml(text: str) -> str:
    """从模型输出中提取 XML（```xml 代码块、内嵌 <mxfile> 文档或整段输出）"""
    match = _FENCED_XML_PATTERN.search(text) or _MXFILE_PATTERN.search(text)
    if match:
        return match.group(1).strip()

    stripped = text.strip()
    if stripped.startswith("<mxfile") and stripped.endswith("</mxfile>"):
        return stripped

    raise LLMError("AI 未能生成有效的图表，请尝试换一种描述", ErrorCode.INVALID_RESPONSE)


def validate_drawio_xml(xml: str) -> None:
    """
    校验 Draw.io XML 的基本结构

    缺少必需标记时抛出 INVALID_XML；标签不平衡、内容过少只记录警告。
    """
    for marker, message in _REQUIRED_MARKERS:
        if marker not in xml:
            raise LLMError(message, ErrorCode.INVALID_XML)

    open_tags = len(_OPEN_TAG_PATTERN.findall(xml))
    close_tags = len(_CLOSE_TAG_PATTERN.findall(xml))
    self_closing = len(_SELF_CLOSING_PATTERN.findall(xml))
    if open_tags != close_tags + self_closing:
        logger.warning("XML 标签数量不平衡，文档可能格式有误")

    if xml.count("<mxCell") < 2:
        logger.warning("XML 内容过少，可能是空白图表")


def _normalize_base_url(base_url: str) -> str:
    """去除末尾斜杠，以及与 /v1/messages 重复的 /v1 前缀"""
    base = base_url.rstrip("/")
    if base.endswith("/v1"):
        base = base[: -len("/v1")]
    return base


class AnthropicDiagramModel:
    """基于 Anthropic Messages API 的 DiagramModel 实现"""

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str,
        model: str,
        api_version: str,
        max_tokens: int,
        temperature: float,
        timeout: float,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = _normalize_base_url(base_url)
        self.model = model
        self.api_version = api_version
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_config(cls, cfg: Config) -> AnthropicDiagramModel:
        return cls(
            cfg.anthropic_api_key,
            base_url=cfg.anthropic_base_url,
            model=cfg.anthropic_model,
            api_version=cfg.anthropic_api_version,
            max_tokens=cfg.llm_max_tokens,
            temperature=cfg.llm_temperature,
            timeout=cfg.llm_timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def build_payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": SYSTEM_PROMPT,
            "messages": [
                {"role": "user", "content": USER_PROMPT_TEMPLATE.format(prompt=prompt)},
            ],
        }

    def build_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

    async def generate_xml(self, prompt: str) -> str:
        if not self.api_key:
            logger.error("未配置 ANTHROPIC_API_KEY，无法调用模型")
            raise LLMConfigError()

        logger.info("调用模型生成图表: model={}, prompt_length={}", self.model, len(prompt))
        response = await self._send(prompt)

        if not response.is_success:
            raise self._error_from_response(response)

        text = self._extract_text(response)
        xml = extract_drawio_xml(text)
        validate_drawio_xml(xml)
        logger.info("模型生成 XML 成功: length={}", len(xml))
        return xml

    async def _send(self, prompt: str) -> httpx.Response:
        client = self._client or await HTTPClientPool.get_default_client_async()
        try:
            return await asyncio.wait_for(
                client.post(
                    f"{self.base_url}{MESSAGES_PATH}",
                    json=self.build_payload(prompt),
                    headers=self.build_headers(),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning("模型响应超时 ({}s)", self.timeout)
            raise LLMError(
                "AI 服务响应超时，请重试", ErrorCode.TIMEOUT_ERROR, original_error=e
            ) from e
        except httpx.HTTPError as e:
            logger.warning("模型请求失败: {}", extract_error_message(e))
            if ErrorClassifier.is_timeout_error(e):
                raise LLMError(
                    "AI 服务响应超时，请重试", ErrorCode.TIMEOUT_ERROR, original_error=e
                ) from e
            raise LLMError(
                "无法连接到 AI 服务，请检查网络连接后重试",
                ErrorCode.CONNECTION_ERROR,
                original_error=e,
            ) from e

    def _error_from_response(self, response: httpx.Response) -> LLMError:
        status = response.status_code
        try:
            payload: Any = response.json()
        except ValueError:
            payload = None
        upstream_message = extract_payload_message(payload) or response.text[:200]
        logger.warning("模型 API 返回错误: HTTP {}: {}", status, upstream_message)

        if status == 429:
            info = RateLimitDetector.detect_from_headers(response.headers)
            return LLMError(
                "AI 服务达到速率限制，请稍后重试",
                ErrorCode.RATE_LIMIT_ERROR,
                retry_after=info.suggested_backoff,
            )

        lowered = upstream_message.lower()
        if status == 402 or any(word in lowered for word in _QUOTA_INDICATORS):
            return LLMError("AI 服务已达到使用上限，请联系管理员", ErrorCode.QUOTA_EXCEEDED)

        if status in (401, 403):
            return LLMError("AI 服务认证失败，请检查配置", ErrorCode.API_KEY_MISSING)

        if status in (408, 504):
            return LLMError("AI 服务响应超时，请重试", ErrorCode.TIMEOUT_ERROR)

        return LLMError("AI 服务出现错误，请稍后重试", ErrorCode.UNKNOWN_ERROR)

    @staticmethod
    def _extract_text(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError as e:
            raise LLMError(
                "AI 服务返回了无法解析的响应", ErrorCode.INVALID_RESPONSE, original_error=e
            ) from e

        content = data.get("content") if isinstance(data, dict) else None
        if not content or not isinstance(content, list):
            raise LLMError("AI 服务返回了意外的响应格式", ErrorCode.INVALID_RESPONSE)

        first = content[0]
        if not isinstance(first, dict) or first.get("type") != "text":
            raise LLMError("AI 服务返回了意外的响应格式", ErrorCode.INVALID_RESPONSE)
        return str(first.get("text", ""))
