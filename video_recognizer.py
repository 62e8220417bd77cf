"""实时检测入口：摄像头 / 视频文件 -> 人脸识别 + 物体检测 + 识别记录。"""

from __future__ import annotations

import argparse
import time

from facemark.face.recognizer import FaceRecognizer
from facemark.utils.log import get_logger, set_level
from facemark.video.detection_log import JsonlDetectionLogSink
from facemark.video.loop import DetectionLoop, LoopConfig

logger = get_logger(__name__)


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="实时人脸识别与物体检测（轮询间隔限速）")
    parser.add_argument("source", nargs="?", default="0", help="摄像头编号或视频文件路径（默认 0）")
    parser.add_argument("--gallery", "-g", default="data/gallery", help="图库目录")
    parser.add_argument("--threshold", "-t", type=float, default=0.35, help="基础匹配阈值（0~1）")
    parser.add_argument("--interval", "-i", type=float, default=0.3, help="最小检测间隔（秒），默认 0.3")
    parser.add_argument("--max-faces", type=int, default=10, help="每帧最多检测人脸数")
    parser.add_argument("--no-refine", action="store_true", help="关闭 FaceMesh 虹膜精细化（更快）")
    parser.add_argument("--objects", action="store_true", help="启用 COCO 物体检测（Ultralytics YOLO）")
    parser.add_argument("--object-weights", default="yolo11n.pt", help="物体检测权重")
    parser.add_argument("--object-conf", type=float, default=0.25, help="物体检测置信度阈值")
    parser.add_argument(
        "--device",
        type=str,
        default="auto",
        choices=["auto", "cpu", "gpu"],
        help="物体检测设备：auto/cpu/gpu（默认 auto：有 CUDA 就用 GPU）",
    )
    parser.add_argument("--log-file", default=None, help="识别记录 JSONL 路径（不指定则不记录）")
    parser.add_argument("--snapshot-dir", default=None, help="识别快照目录")
    parser.add_argument("--log-interval", type=float, default=5.0, help="识别记录最小间隔（秒）")
    parser.add_argument("--display", action="store_true", help="显示窗口（按 q 退出）")
    parser.add_argument("--max-frames", type=int, default=None, help="最多读取多少帧（用于调试）")
    parser.add_argument("--log-level", default="INFO", help="日志级别")
    args = parser.parse_args(argv)
    set_level(args.log_level)

    recognizer = FaceRecognizer(
        gallery_path=args.gallery,
        threshold=float(args.threshold),
        max_faces=int(args.max_faces),
        refine_landmarks=not args.no_refine,
    )

    object_detector = None
    if args.objects:
        from facemark.video.object_detector import UltralyticsObjectDetector

        object_detector = UltralyticsObjectDetector(args.object_weights, device=args.device)
        logger.info(f"物体检测已启用: {args.object_weights}, device={object_detector.device}")

    sink = JsonlDetectionLogSink(args.log_file, args.snapshot_dir) if args.log_file else None

    loop = DetectionLoop(
        recognizer,
        source=args.source,
        object_detector=object_detector,
        log_sink=sink,
        config=LoopConfig(
            min_interval_sec=float(args.interval),
            log_interval_sec=float(args.log_interval),
            object_conf=float(args.object_conf),
            display=bool(args.display),
        ),
    )
    try:
        loop.run(max_frames=args.max_frames)
    except KeyboardInterrupt:
        loop.stop()
    finally:
        recognizer.close()


if __name__ == "__main__":
    st = time.time()
    main()
    logger.info(f"总耗时: {time.time() - st:.2f} 秒")
