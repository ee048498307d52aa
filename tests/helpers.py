"""测试辅助：可控时钟和数据构造"""

from models.data_models import (
    BlinkEvent,
    BlinkRatePoint,
    Face,
    Point3D,
    SessionData,
)

MINUTE = 60_000


class FakeClock:
    """可手动推进的毫秒时钟"""

    def __init__(self, now: float = 1_700_000_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


def make_face(num_points: int = 468, x: float = 0.5, y: float = 0.5) -> Face:
    return Face(points=tuple(Point3D(x, y, 0.0) for _ in range(num_points)))


def make_session(start_time: float, rates=(), blink_events=(), session_id="session-test", **kwargs) -> SessionData:
    """rates: [(timestamp, rate), ...]"""
    return SessionData(
        id=session_id,
        start_time=start_time,
        blink_rate_history=[BlinkRatePoint(timestamp=t, rate=r) for t, r in rates],
        blink_events=[BlinkEvent(timestamp=t) for t in blink_events],
        **kwargs,
    )
