"""
Draw.io CLI 转换协作方

通过本地安装的 drawio 命令把 .drawio 文件导出为 PNG：
    drawio --export --format png --output <out.png> <in.drawio>

可用性探测使用 `drawio --version`，由 CapabilityProbeCache 缓存结果。
"""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import Protocol

from src.config import Config
from src.core.exceptions import ConversionError
from src.core.logger import logger

_TERMINATE_GRACE_SECONDS = 2.0


class DiagramConverter(Protocol):
    async def is_available(self) -> bool: ...

    async def render_png(self, source: Path) -> bytes: ...


class DrawioCliConverter:
    """基于 drawio 命令行的 PNG 转换器"""

    def __init__(
        self,
        cli_path: str = "drawio",
        *,
        timeout: float = 30.0,
        probe_timeout: float = 5.0,
    ) -> None:
        self.cli_path = cli_path
        self.timeout = timeout
        self.probe_timeout = probe_timeout

    @classmethod
    def from_config(cls, cfg: Config) -> DrawioCliConverter:
        return cls(
            cfg.drawio_cli_path,
            timeout=cfg.converter_timeout,
            probe_timeout=cfg.converter_probe_timeout,
        )

    async def is_available(self) -> bool:
        """执行 drawio --version，退出码为 0 即视为可用"""
        try:
            returncode, _, _ = await self._run(["--version"], self.probe_timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug("Draw.io CLI 不可用: {}", e)
            return False
        return returncode == 0

    async def render_png(self, source: Path) -> bytes:
        """
        把 .drawio 文件渲染为 PNG 并返回其内容

        临时输出文件写在源文件旁边，读取后删除。

        Raises:
            ConversionError: 源文件不存在、进程启动失败、超时或退出码非 0
        """
        if not source.exists():
            raise ConversionError(f"源文件不存在: {source.name}")

        output = source.with_suffix(".png")
        args = ["--export", "--format", "png", "--output", str(output), str(source)]
        logger.debug("执行 Draw.io CLI: {} {}", self.cli_path, " ".join(args))

        try:
            returncode, stdout, stderr = await self._run(args, self.timeout)
        except asyncio.TimeoutError as e:
            raise ConversionError(
                f"Draw.io CLI 执行超时 ({self.timeout:.0f}s)", original_error=e
            ) from e
        except OSError as e:
            raise ConversionError(f"无法启动 Draw.io CLI: {e}", original_error=e) from e

        if returncode != 0:
            logger.warning("Draw.io CLI 退出码 {}: {}", returncode, stderr.strip() or stdout.strip())
            raise ConversionError(f"Draw.io CLI 转换失败（退出码 {returncode}）")

        try:
            return output.read_bytes()
        except OSError as e:
            raise ConversionError("未找到 Draw.io CLI 输出的 PNG 文件", original_error=e) from e
        finally:
            with contextlib.suppress(OSError):
                output.unlink()

    async def _run(self, args: list[str], timeout: float) -> tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            self.cli_path,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        finally:
            # 超时或被外部取消（如探测缓存自身的截止时间）时结束子进程
            if process.returncode is None:
                await _terminate(process, " ".join(args))
        return (
            process.returncode if process.returncode is not None else -1,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )


async def _terminate(process: asyncio.subprocess.Process, command: str) -> None:
    logger.warning("Draw.io CLI 进程未结束，发送 SIGTERM: {}", command)
    with contextlib.suppress(ProcessLookupError):
        process.terminate()
    try:
        await asyncio.shield(asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE_SECONDS))
    except asyncio.TimeoutError:
        logger.warning("Draw.io CLI 进程未响应 SIGTERM，发送 SIGKILL: {}", command)
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()
