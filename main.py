"""眨眼与疲劳监测系统入口文件"""

import argparse
import logging
import sys
import time

import cv2

from calibration.threshold_calibrator import CalibrationStore
from config.settings import (
    build_alert_config,
    build_detector_config,
    build_notification_settings,
    load_config,
)
from detectors.blink_detector import BlinkDetector
from detectors.face_detector import FaceDetector
from evaluators.fatigue_evaluator import FatigueAlertEngine
from models.data_models import BlinkDetectorConfig
from sessions.blink_rate import format_session_duration
from sessions.session_aggregator import SessionAggregator

logger = logging.getLogger(__name__)


class MonitorSystem:
    """眨眼监测主程序，协调检测、会话聚合和疲劳提醒，并管理视频流主循环。"""

    def __init__(self, config_path=None, calibration_path=None, notifier=None):
        self._cap = None
        self._stopped = False

        config = load_config(config_path)
        detector_config = build_detector_config(config)

        calibration_id = None
        if calibration_path is not None:
            calibration = CalibrationStore(calibration_path).get_active()
            if calibration is not None:
                detector_config = BlinkDetectorConfig.from_calibration(
                    calibration,
                    consecutive_frames=detector_config.consecutive_frames,
                    debounce_time=detector_config.debounce_time,
                )
                calibration_id = calibration.id
                logger.info("使用校准 %s (EAR 阈值 %.3f)", calibration.id, calibration.ear_threshold)

        self.blink_detector = BlinkDetector(detector_config, face_detector=FaceDetector())
        self.aggregator = SessionAggregator(
            face_lost_timeout_seconds=config["face_lost_timeout_seconds"],
            rate_update_interval_seconds=config["rate_update_interval_seconds"],
            calibration_id=calibration_id,
        )
        self.alert_engine = FatigueAlertEngine(
            build_alert_config(config),
            notifier=notifier,
            notification_settings=build_notification_settings(config),
        )

    def run(self):
        """启动主检测循环。"""
        self._cap = cv2.VideoCapture(0)

        if not self._cap.isOpened():
            print("无法打开摄像头")
            sys.exit(1)

        self.aggregator.start_tracking()
        self.alert_engine.start_monitoring(
            lambda: self.aggregator.active_session,
            self.aggregator.record_fatigue_alert,
        )

        try:
            self._main_loop()
        finally:
            self.stop()

    def _main_loop(self):
        """视频流处理主循环。"""
        while True:
            ret, frame = self._cap.read()
            if not ret:
                continue

            result = self.blink_detector.process_frame(frame, time.time() * 1000.0)
            self.aggregator.on_detection(result)

            if result.current_ear is not None:
                text = f"Blinks: {result.blink_count}  EAR: {result.current_ear:.2f}"
            else:
                text = "No face"
            cv2.putText(frame, text, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.8, (0, 255, 0), 2)
            cv2.imshow("眨眼监测", frame)

            # 按 q 退出
            if cv2.waitKey(1) & 0xFF == ord("q"):
                break

    def stop(self):
        """停止监测、结束会话、释放摄像头和检测器，可重复调用。"""
        if self._stopped:
            return
        self._stopped = True

        self.alert_engine.stop_monitoring()
        session = self.aggregator.stop_tracking()
        if session is not None:
            print(
                f"会话结束: 时长 {format_session_duration(session.duration)}, 眨眼 {session.total_blinks} 次, "
                f"疲劳提醒 {session.fatigue_alert_count} 次"
            )
        if self._cap is not None and self._cap.isOpened():
            self._cap.release()
        cv2.destroyAllWindows()
        self.blink_detector.dispose()


def main():
    parser = argparse.ArgumentParser(description="眨眼与疲劳监测系统")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON 阈值配置文件路径",
    )
    parser.add_argument(
        "--calibration",
        type=str,
        default=None,
        help="校准档案 JSON 文件路径（使用其中激活的校准）",
    )
    parser.add_argument("--verbose", action="store_true", help="输出调试日志")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    system = MonitorSystem(config_path=args.config, calibration_path=args.calibration)
    system.run()


if __name__ == "__main__":
    main()
