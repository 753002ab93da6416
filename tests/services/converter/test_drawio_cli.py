import asyncio
import stat
import sys
from pathlib import Path

import pytest

from src.core.exceptions import ConversionError
from src.services.capability.probe_cache import CapabilityProbeCache
from src.services.converter.drawio_cli import DrawioCliConverter

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="需要 POSIX shell")


def write_fake_cli(tmp_path: Path, body: str) -> str:
    script = tmp_path / "fake-drawio"
    script.write_text("#!/bin/sh\n" + body)
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return str(script)


@pytest.fixture
def drawio_source(tmp_path: Path, valid_xml: str) -> Path:
    source = tmp_path / "diagram.drawio"
    source.write_text(valid_xml, encoding="utf-8")
    return source


@pytest.mark.asyncio
async def test_missing_cli_is_unavailable(tmp_path: Path) -> None:
    converter = DrawioCliConverter(str(tmp_path / "no-such-drawio"))
    assert await converter.is_available() is False


@pytest.mark.asyncio
async def test_missing_cli_render_raises(drawio_source: Path, tmp_path: Path) -> None:
    converter = DrawioCliConverter(str(tmp_path / "no-such-drawio"))
    with pytest.raises(ConversionError, match="无法启动"):
        await converter.render_png(drawio_source)


@pytest.mark.asyncio
async def test_missing_source_raises(tmp_path: Path) -> None:
    converter = DrawioCliConverter()
    with pytest.raises(ConversionError, match="源文件不存在"):
        await converter.render_png(tmp_path / "missing.drawio")


@posix_only
@pytest.mark.asyncio
async def test_version_probe(tmp_path: Path) -> None:
    converter = DrawioCliConverter(write_fake_cli(tmp_path, 'echo "24.0.0"\n'))
    assert await converter.is_available() is True

    failing = DrawioCliConverter(write_fake_cli(tmp_path, "exit 3\n"))
    assert await failing.is_available() is False


@posix_only
@pytest.mark.asyncio
async def test_render_reads_and_removes_output(drawio_source: Path, tmp_path: Path) -> None:
    # 参数: --export --format png --output <out> <in>
    cli = write_fake_cli(tmp_path, 'printf "PNGDATA" > "$5"\n')
    converter = DrawioCliConverter(cli)

    png = await converter.render_png(drawio_source)

    assert png == b"PNGDATA"
    assert not drawio_source.with_suffix(".png").exists()


@posix_only
@pytest.mark.asyncio
async def test_nonzero_exit_raises(drawio_source: Path, tmp_path: Path) -> None:
    cli = write_fake_cli(tmp_path, 'echo "export failed" >&2\nexit 1\n')
    with pytest.raises(ConversionError, match="退出码 1"):
        await DrawioCliConverter(cli).render_png(drawio_source)


@posix_only
@pytest.mark.asyncio
async def test_missing_output_raises(drawio_source: Path, tmp_path: Path) -> None:
    cli = write_fake_cli(tmp_path, "exit 0\n")
    with pytest.raises(ConversionError, match="PNG"):
        await DrawioCliConverter(cli).render_png(drawio_source)


@pytest.mark.asyncio
async def test_render_timeout_raises(drawio_source: Path, monkeypatch) -> None:
    converter = DrawioCliConverter(timeout=0.01)

    async def slow_run(args, timeout):
        raise asyncio.TimeoutError()

    monkeypatch.setattr(converter, "_run", slow_run)

    with pytest.raises(ConversionError, match="超时"):
        await converter.render_png(drawio_source)


@pytest.mark.asyncio
async def test_probe_timeout_is_unavailable(monkeypatch) -> None:
    converter = DrawioCliConverter(probe_timeout=0.01)

    async def slow_run(args, timeout):
        raise asyncio.TimeoutError()

    monkeypatch.setattr(converter, "_run", slow_run)
    assert await converter.is_available() is False


@posix_only
@pytest.mark.asyncio
async def test_hanging_process_is_terminated(drawio_source: Path, tmp_path: Path) -> None:
    cli = write_fake_cli(tmp_path, "exec sleep 5\n")
    converter = DrawioCliConverter(cli, timeout=0.2)

    with pytest.raises(ConversionError, match="超时"):
        await asyncio.wait_for(converter.render_png(drawio_source), timeout=3)


@posix_only
@pytest.mark.asyncio
async def test_cancelled_version_check_terminates_child(tmp_path: Path, monkeypatch) -> None:
    cli = write_fake_cli(tmp_path, "exec sleep 30\n")
    converter = DrawioCliConverter(cli, probe_timeout=5)
    probe_cache = CapabilityProbeCache(
        converter.is_available, freshness_seconds=300, probe_timeout=0.3, name="drawio-cli"
    )
    spawned: list[asyncio.subprocess.Process] = []
    create_subprocess_exec = asyncio.create_subprocess_exec

    async def recording_exec(*args, **kwargs):
        process = await create_subprocess_exec(*args, **kwargs)
        spawned.append(process)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", recording_exec)

    # 外层截止时间先于 CLI 自身超时触发
    assert await asyncio.wait_for(probe_cache.is_available(), timeout=5) is False
    assert len(spawned) == 1
    assert spawned[0].returncode is not None
