import os

# 测试中关闭文件日志，需在导入 src.core.logger 之前设置
os.environ.setdefault("LOG_DISABLE_FILE", "true")

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

VALID_XML = """<mxfile host="app.diagrams.net">
  <diagram name="Page-1" id="login">
    <mxGraphModel dx="800" dy="600">
      <root>
        <mxCell id="0"/>
        <mxCell id="1" parent="0"/>
        <mxCell id="2" value="登录" vertex="1" parent="1"/>
      </root>
    </mxGraphModel>
  </diagram>
</mxfile>"""


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConverter:
    """可控的转换器替身"""

    def __init__(self, available: bool = True, png: bytes = b"\x89PNG fake") -> None:
        self.available = available
        self.png = png
        self.probe_calls = 0
        self.render_calls: list[Path] = []
        self.render_error: Exception | None = None

    async def is_available(self) -> bool:
        self.probe_calls += 1
        return self.available

    async def render_png(self, source: Path) -> bytes:
        self.render_calls.append(source)
        if self.render_error is not None:
            raise self.render_error
        return self.png


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def valid_xml() -> str:
    return VALID_XML


@pytest.fixture
def fake_model() -> AsyncMock:
    model = AsyncMock()
    model.generate_xml = AsyncMock(return_value=VALID_XML)
    return model


@pytest.fixture
def fake_converter() -> FakeConverter:
    return FakeConverter()
