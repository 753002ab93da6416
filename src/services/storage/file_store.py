"""
临时文件存储

生成的 .drawio 文档与 PNG 预览写入本地目录，按 file_id 下载。
每个文件有独立的过期时间，过期后返回 410，并由定时任务清理。

登记表仅在内存中，进程重启后旧文件不可再下载（目录在启动时清空）。
"""

from __future__ import annotations

import shutil
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from src.core.exceptions import FileExpiredException, FileNotFoundException
from src.core.logger import logger


class FileKind(str, Enum):
    DRAWIO = "drawio"
    PNG = "png"


_ORIGINAL_NAMES = {
    FileKind.DRAWIO: "diagram.drawio",
    FileKind.PNG: "diagram.png",
}


@dataclass(frozen=True)
class StoredFile:
    file_id: str
    kind: FileKind
    path: Path
    original_name: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    @property
    def media_type(self) -> str:
        return "image/png" if self.kind == FileKind.PNG else "application/xml"

    @property
    def disposition(self) -> str:
        # PNG 在页面内预览，.drawio 触发下载
        return "inline" if self.kind == FileKind.PNG else "attachment"


class TempFileStore:
    """本地临时文件存储"""

    def __init__(
        self,
        base_dir: Path,
        ttl_seconds: float,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_dir = base_dir
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._files: dict[str, StoredFile] = {}

    def initialize(self) -> None:
        """创建存储目录并清除上次运行遗留的文件"""
        if self.base_dir.exists():
            shutil.rmtree(self.base_dir, ignore_errors=True)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info("临时文件目录已就绪: {}", self.base_dir)

    def save_drawio(self, xml: str) -> str:
        return self._save(FileKind.DRAWIO, xml.encode("utf-8"))

    def save_png(self, data: bytes) -> str:
        return self._save(FileKind.PNG, data)

    def get_file_info(self, file_id: str) -> StoredFile | None:
        return self._files.get(file_id)

    def get_file_path(self, file_id: str) -> Path:
        return self.resolve(file_id).path

    def resolve(self, file_id: str) -> StoredFile:
        """
        获取可下载的文件

        Raises:
            FileNotFoundException: 未登记或磁盘上已不存在
            FileExpiredException: 已过期
        """
        stored = self._files.get(file_id)
        if stored is None or not stored.path.exists():
            raise FileNotFoundException(file_id)
        if stored.is_expired(self._clock()):
            raise FileExpiredException(file_id)
        return stored

    def exists(self, file_id: str) -> bool:
        """文件仍可下载（已登记、未过期且磁盘上存在）"""
        stored = self._files.get(file_id)
        return (
            stored is not None
            and not stored.is_expired(self._clock())
            and stored.path.exists()
        )

    def sweep_expired(self) -> int:
        """删除过期文件，返回清理数量"""
        now = self._clock()
        expired = [fid for fid, stored in self._files.items() if stored.is_expired(now)]
        for file_id in expired:
            stored = self._files.pop(file_id)
            try:
                stored.path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("删除过期文件失败: {}: {}", stored.path, e)
        if expired:
            logger.info("清理了 {} 个过期临时文件", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._files)

    def _save(self, kind: FileKind, data: bytes) -> str:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        file_id = uuid.uuid4().hex
        path = self.base_dir / f"{file_id}.{kind.value}"
        path.write_bytes(data)

        now = self._clock()
        self._files[file_id] = StoredFile(
            file_id=file_id,
            kind=kind,
            path=path,
            original_name=_ORIGINAL_NAMES[kind],
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        logger.debug("已保存临时文件: {} ({}, {} bytes)", file_id, kind.value, len(data))
        return file_id


def build_file_url(file_id: str, base_url: str = "") -> str:
    """文件下载地址"""
    return f"{base_url.rstrip('/')}/api/files/{file_id}"
