from __future__ import annotations

from typing import List

import pytest

from mountain_guide.services.mountain_repo import Mountain


def _m(id, name_en, name_ja, name_zh, region, prefecture, difficulty, elevation_m) -> Mountain:
    return Mountain(
        id=id,
        name_en=name_en,
        name_ja=name_ja,
        name_zh=name_zh,
        region=region,
        prefecture=prefecture,
        difficulty=difficulty,
        elevation_m=elevation_m,
    )


MOUNTAINS: List[Mountain] = [
    _m("m01", "Mount Fuji", "富士山", "富士山", "中部", "山梨県・静岡県", "★★★★", 3776),
    _m("m02", "Mount Tsukuba", "筑波山", "筑波山", "関東", "茨城県", "★", 877),
    _m("m03", "Mount Tanzawa", "丹沢山", "丹泽山", "関東", "神奈川県", "★★", 1567),
    _m("m04", "Mount Kumotori", "雲取山", "云取山", "関東", "東京都・埼玉県・山梨県", "★★★", 2017),
    _m("m05", "Mount Yari", "槍ヶ岳", "枪岳", "中部", "長野県・岐阜県", "★★★★★", 3180),
    _m("m06", "Mount Ibuki", "伊吹山", "伊吹山", "関西", "滋賀県", "★★", 1377),
    _m("m07", "Mount Daisen", "大山", "大山", "中国", "鳥取県", "★★", 1729),
    _m("m08", "Mount Ishizuchi", "石鎚山", "石锤山", "四国", "愛媛県", "★★★", 1982),
    _m("m09", "Mount Kuju", "九重山", "九重山", "九州", "大分県", "★★", 1791),
    _m("m10", "Mount Rishiri", "利尻岳", "利尻山", "北海道", "北海道", "★★★★", 1721),
    _m("m11", "Mount Chokai", "鳥海山", "鸟海山", "東北", "山形県・秋田県", "★★★", 2236),
    _m("m12", "Mount Kita", "北岳", "北岳", "中部", "山梨県", "★★★★★", 3193),
]


class StaticRepo:
    """MountainRepo over a fixed list; counts reads."""

    def __init__(self, mountains: List[Mountain]):
        self.mountains = list(mountains)
        self.calls = 0

    async def fetch_all(self) -> List[Mountain]:
        self.calls += 1
        return list(self.mountains)


class FailingRepo:
    def __init__(self, message: str = "connection refused"):
        self.message = message
        self.calls = 0

    async def fetch_all(self) -> List[Mountain]:
        self.calls += 1
        raise RuntimeError(self.message)


@pytest.fixture
def mountains() -> List[Mountain]:
    return list(MOUNTAINS)


@pytest.fixture
def static_repo() -> StaticRepo:
    return StaticRepo(MOUNTAINS)


@pytest.fixture
def failing_repo() -> FailingRepo:
    return FailingRepo()
