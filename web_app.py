"""Flask JSON 接口 - 供桌面外壳读取眨眼与疲劳监测状态"""

import datetime
import logging
import threading
import time

import cv2
from flask import Flask, jsonify, request

from config.settings import (
    _DEFAULTS,
    build_alert_config,
    build_detector_config,
    build_notification_settings,
    build_session_timing,
)
from detectors.blink_detector import BlinkDetector
from detectors.face_detector import FaceDetector
from evaluators.fatigue_evaluator import FatigueAlertEngine
from evaluators.notifier import CallbackNotifier
from models.data_models import ConfigOutOfRangeError
from sessions.blink_rate import DEFAULT_SMOOTHING_WINDOW, get_chart_data_from_session
from sessions.session_aggregator import SessionAggregator

logger = logging.getLogger(__name__)

app = Flask(__name__)


class WebMonitorSystem:
    """Web 版监测系统，后台线程处理摄像头帧，接口读取最新状态。"""

    MAX_LOG_ENTRIES = 200

    def __init__(self, capture_factory=None, face_detector_factory=None):
        self._capture_factory = capture_factory or (lambda: cv2.VideoCapture(0))
        self._face_detector_factory = face_detector_factory or FaceDetector
        self._cap = None
        self._thread = None
        self._running = False
        self._lock = threading.Lock()
        self._logs = []
        self._log_lock = threading.Lock()
        self._prev_face_detected = False
        self._config = dict(_DEFAULTS)
        self._latest_data = self._empty_data()

        self.blink_detector = None
        timing = build_session_timing(self._config)
        self.aggregator = SessionAggregator(
            face_lost_timeout_seconds=timing.face_lost_timeout_seconds,
            rate_update_interval_seconds=timing.rate_update_interval_seconds,
        )
        self.alert_engine = self._build_alert_engine()

    @staticmethod
    def _empty_data():
        return {
            "blink_count": 0, "ear": None, "is_blinking": False,
            "face_detected": False, "is_tracking": False, "session": None,
        }

    def _build_alert_engine(self):
        return FatigueAlertEngine(
            build_alert_config(self._config),
            notifier=CallbackNotifier(lambda n: self._add_log("danger", f"{n.title}: {n.body}")),
            notification_settings=build_notification_settings(self._config),
        )

    def start(self):
        """启动摄像头和处理线程。"""
        if self._running:
            return True
        self._cap = self._capture_factory()
        if not self._cap.isOpened():
            self._add_log("danger", "无法打开摄像头")
            return False
        self.blink_detector = BlinkDetector(
            build_detector_config(self._config),
            face_detector=self._face_detector_factory(),
        )
        self._running = True
        self.aggregator.start_tracking()
        self.alert_engine.start_monitoring(
            lambda: self.aggregator.active_session,
            self.aggregator.record_fatigue_alert,
        )
        self._add_log("info", "监测启动，摄像头已开启")
        self._thread = threading.Thread(target=self._process_loop, daemon=True)
        self._thread.start()
        return True

    def stop(self):
        """停止监测，可重复调用。"""
        if not self._running:
            return
        self._running = False
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
        self._thread = None
        self.alert_engine.stop_monitoring()
        self.aggregator.stop_tracking()
        if self._cap is not None and self._cap.isOpened():
            self._cap.release()
        self._cap = None
        if self.blink_detector is not None:
            self.blink_detector.dispose()
        with self._lock:
            self._latest_data = self._empty_data()
        self._add_log("info", "监测已停止")

    def _process_loop(self):
        """后台处理循环。"""
        while self._running:
            if not self._cap or not self._cap.isOpened():
                break
            ret, frame = self._cap.read()
            if not ret:
                time.sleep(0.01)
                continue
            self.process_frame(frame, time.time() * 1000.0)

    def process_frame(self, frame, timestamp):
        """处理单帧并更新最新状态。"""
        result = self.blink_detector.process_frame(frame, timestamp)
        self.aggregator.on_detection(result)

        session = self.aggregator.active_session
        with self._lock:
            self._latest_data = {
                "blink_count": result.blink_count,
                "ear": None if result.current_ear is None else round(result.current_ear, 4),
                "is_blinking": result.is_blinking,
                "face_detected": result.face_detected,
                "is_tracking": self.aggregator.is_tracking,
                "session": session.to_dict() if session is not None else None,
            }

        if result.face_detected and not self._prev_face_detected:
            self._add_log("info", "检测到人脸")
        elif not result.face_detected and self._prev_face_detected:
            self._add_log("warning", "人脸丢失")
        self._prev_face_detected = result.face_detected
        return result

    def _add_log(self, level, message):
        """添加一条系统日志。level: info / warning / danger"""
        entry = {
            "time": datetime.datetime.now().strftime("%H:%M:%S"),
            "level": level,
            "message": message,
        }
        with self._log_lock:
            self._logs.append(entry)
            if len(self._logs) > self.MAX_LOG_ENTRIES:
                self._logs = self._logs[-self.MAX_LOG_ENTRIES:]

    def get_logs(self, since=0):
        """获取日志，since 为起始索引。"""
        with self._log_lock:
            return self._logs[since:], len(self._logs)

    def get_data(self):
        with self._lock:
            return dict(self._latest_data)

    def get_sessions(self):
        return [s.to_dict() for s in self.aggregator.sessions]

    def get_chart_data(self, session_id, smoothing_window):
        """指定会话的眨眼频率曲线；会话不存在时返回 None"""
        for session in self.aggregator.sessions:
            if session.id == session_id:
                points = get_chart_data_from_session(session, smoothing_window)
                return [{"timestamp": p.timestamp, "rate": round(p.rate, 2)} for p in points]
        return None

    def update_config(self, updates):
        """
        动态更新阈值配置。

        新配置先完整校验，校验失败时抛出 ConfigOutOfRangeError，原配置不变。
        """
        config = dict(self._config)
        for key in _DEFAULTS:
            if key in updates and updates[key] is not None:
                config[key] = updates[key]

        detector_config = build_detector_config(config)
        alert_config = build_alert_config(config)
        settings = build_notification_settings(config)
        timing = build_session_timing(config)

        self._config = config
        self.aggregator.set_timing(timing)
        self.alert_engine.config = alert_config
        self.alert_engine.notification_settings = settings
        if self.blink_detector is not None:
            # 检测器配置不可变，替换实例并沿用同一个人脸检测器
            old = self.blink_detector
            self.blink_detector = BlinkDetector(detector_config, face_detector=old.face_detector)
        self._add_log("info", "配置已更新")

    def reset_counter(self):
        if self.blink_detector is not None:
            self.blink_detector.reset_blink_counter()
        self._add_log("info", "眨眼计数已重置")


# 全局监测系统实例
system = WebMonitorSystem()


# ---- Flask 路由 ----

@app.route("/api/start", methods=["POST"])
def api_start():
    ok = system.start()
    return jsonify({"success": ok, "message": "监测启动成功" if ok else "无法打开摄像头"})


@app.route("/api/stop", methods=["POST"])
def api_stop():
    system.stop()
    return jsonify({"success": True, "message": "监测已停止"})


@app.route("/api/data")
def api_data():
    return jsonify(system.get_data())


@app.route("/api/sessions")
def api_sessions():
    return jsonify({"sessions": system.get_sessions()})


@app.route("/api/sessions/<session_id>/chart")
def api_session_chart(session_id):
    window = request.args.get("window", DEFAULT_SMOOTHING_WINDOW, type=int)
    try:
        points = system.get_chart_data(session_id, window)
    except ValueError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    if points is None:
        return jsonify({"success": False, "message": "会话不存在"}), 404
    return jsonify({"window": window, "points": points})


@app.route("/api/config", methods=["POST"])
def api_config():
    data = request.get_json(force=True)
    try:
        system.update_config(data)
    except ConfigOutOfRangeError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    return jsonify({"success": True, "message": "配置已更新"})


@app.route("/api/reset", methods=["POST"])
def api_reset():
    system.reset_counter()
    return jsonify({"success": True})


@app.route("/api/logs")
def api_logs():
    since = request.args.get("since", 0, type=int)
    logs, total = system.get_logs(since)
    return jsonify({"logs": logs, "total": total})


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.run(host="127.0.0.1", port=5000, debug=False, threaded=True)
