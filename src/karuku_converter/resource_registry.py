"""
バイトバッファのハンドル管理モジュール

元画像・変換結果のバイト列をハンドルとして登録し、
各ハンドルがちょうど1回だけ解放されることを保証します。
"""

from __future__ import annotations

from dataclasses import dataclass, field
import itertools
import threading
from typing import Dict, List, Optional

from loguru import logger

from karuku_converter.errors import DoubleReleaseError, HandleReleasedError


@dataclass(eq=False)
class ByteHandle:
    """バイト列への所有参照"""

    handle_id: int
    label: str
    size: int
    released: bool = False
    _data: Optional[bytes] = field(default=None, repr=False)

    def __hash__(self) -> int:
        return hash(self.handle_id)


@dataclass(frozen=True)
class RegistryStats:
    acquired: int
    released: int
    live: int
    live_bytes: int


class ResourceRegistry:
    """ハンドルの取得と解放を記録するレジストリ"""

    def __init__(self) -> None:
        self._handles: Dict[int, ByteHandle] = {}
        self._counter = itertools.count(1)
        self._acquired_total = 0
        self._released_total = 0
        self._lock = threading.Lock()

    def acquire(self, data: bytes, label: str = "") -> ByteHandle:
        """バイト列を登録してハンドルを返す"""
        payload = bytes(data)
        with self._lock:
            handle = ByteHandle(
                handle_id=next(self._counter),
                label=label,
                size=len(payload),
                _data=payload,
            )
            self._handles[handle.handle_id] = handle
            self._acquired_total += 1
        logger.trace(f"ハンドル取得: #{handle.handle_id} {label} ({handle.size} bytes)")
        return handle

    def read(self, handle: ByteHandle) -> bytes:
        """ハンドルの内容を返す。解放済みなら HandleReleasedError"""
        with self._lock:
            if handle.released or handle.handle_id not in self._handles:
                raise HandleReleasedError(
                    f"解放済みのハンドルを参照しました: #{handle.handle_id} {handle.label}"
                )
            return handle._data  # type: ignore[return-value]

    def release(self, handle: ByteHandle) -> None:
        """ハンドルを解放する。二重解放は DoubleReleaseError"""
        with self._lock:
            if handle.released:
                raise DoubleReleaseError(
                    f"ハンドルが二重に解放されました: #{handle.handle_id} {handle.label}"
                )
            if self._handles.pop(handle.handle_id, None) is None:
                raise HandleReleasedError(
                    f"このレジストリが管理していないハンドルです: #{handle.handle_id}"
                )
            handle.released = True
            handle._data = None
            self._released_total += 1
        logger.trace(f"ハンドル解放: #{handle.handle_id} {handle.label}")

    def release_if_live(self, handle: Optional[ByteHandle]) -> bool:
        """None または解放済みでなければ解放する"""
        if handle is None or handle.released:
            return False
        self.release(handle)
        return True

    def is_live(self, handle: ByteHandle) -> bool:
        with self._lock:
            return not handle.released and handle.handle_id in self._handles

    def live_handles(self) -> List[ByteHandle]:
        with self._lock:
            return list(self._handles.values())

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._handles)

    def stats(self) -> RegistryStats:
        with self._lock:
            return RegistryStats(
                acquired=self._acquired_total,
                released=self._released_total,
                live=len(self._handles),
                live_bytes=sum(h.size for h in self._handles.values()),
            )
