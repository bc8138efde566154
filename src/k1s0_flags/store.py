"""現在のフラグ設定と参照用インデックスを保持するストア"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from .configuration import Configuration, FlagDefinition, Segment


@dataclass(frozen=True)
class _Snapshot:
    configuration: Configuration
    flags_by_key: Mapping[str, FlagDefinition]
    segments_by_key: Mapping[str, Segment]

    @classmethod
    def build(cls, configuration: Configuration) -> _Snapshot:
        return cls(
            configuration=configuration,
            flags_by_key=MappingProxyType({f.key: f for f in configuration.flags}),
            segments_by_key=MappingProxyType({s.key: s for s in configuration.segments}),
        )


_EMPTY: Mapping[str, FlagDefinition] = MappingProxyType({})
_EMPTY_SEGMENTS: Mapping[str, Segment] = MappingProxyType({})


class ConfigurationStore:
    """設定スナップショットを 1 つだけ保持するストア。

    設定とインデックスは単一の不変オブジェクトにまとめ、参照の差し替えで
    更新する。評価側は更新途中の状態を観測しない。
    """

    def __init__(self, configuration: Configuration | None = None) -> None:
        self._snapshot: _Snapshot | None = None
        if configuration is not None:
            self.set_configuration(configuration)

    def set_configuration(self, configuration: Configuration) -> None:
        """設定を丸ごと置き換える。"""
        self._snapshot = _Snapshot.build(configuration)

    @property
    def configuration(self) -> Configuration | None:
        snapshot = self._snapshot
        return snapshot.configuration if snapshot is not None else None

    @property
    def flags_by_key(self) -> Mapping[str, FlagDefinition]:
        snapshot = self._snapshot
        return snapshot.flags_by_key if snapshot is not None else _EMPTY

    @property
    def segments_by_key(self) -> Mapping[str, Segment]:
        snapshot = self._snapshot
        return snapshot.segments_by_key if snapshot is not None else _EMPTY_SEGMENTS

    def is_ready(self) -> bool:
        return self._snapshot is not None

    def get_etag(self) -> str | None:
        """条件付き再取得に使う現在の etag。"""
        snapshot = self._snapshot
        return snapshot.configuration.etag if snapshot is not None else None

    def get_flag(self, flag_key: str) -> FlagDefinition | None:
        return self.flags_by_key.get(flag_key)

    def get_segment(self, segment_key: str) -> Segment | None:
        return self.segments_by_key.get(segment_key)
