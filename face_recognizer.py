"""图库管理与静态图片识别 CLI。

python face_recognizer.py enroll photo.jpg --name 张三
python face_recognizer.py identify group.jpg -o out.jpg
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from facemark.face.errors import FaceRecognitionError
from facemark.face.quality import validate_gallery
from facemark.face.recognizer import FaceRecognizer
from facemark.utils.log import get_logger, set_level
from facemark.utils.serializer import serialize_detection

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="人脸关键点识别：图库管理与图片识别")
    parser.add_argument("--gallery", "-g", default="data/gallery", help="图库目录（gallery.json + images/）")
    parser.add_argument("--threshold", "-t", type=float, default=None, help="基础匹配阈值（0~1），默认 0.35")
    parser.add_argument("--log-level", default="INFO", help="日志级别")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("enroll", help="录入人员照片")
    p.add_argument("image", type=Path)
    p.add_argument("--name", "-n", required=True)
    p.add_argument("--description", default=None)

    p = sub.add_parser("reenroll", help="用新照片重新录入已有人员")
    p.add_argument("person_id", type=int)
    p.add_argument("image", type=Path)

    p = sub.add_parser("delete", help="删除人员")
    p.add_argument("person_id", type=int)

    sub.add_parser("list", help="列出已录入人员")
    sub.add_parser("check", help="检查图库特征质量与类间相似度")

    p = sub.add_parser("identify", help="识别图片中的人脸")
    p.add_argument("image", type=Path)
    p.add_argument("--output", "-o", default=None, help="输出带标注图片路径")
    p.add_argument("--json", action="store_true", help="以 JSON 输出识别结果")

    p = sub.add_parser("export", help="导出图库为 JSON")
    p.add_argument("output", type=Path)

    p = sub.add_parser("import", help="从 JSON 导入人员（追加）")
    p.add_argument("input", type=Path)
    p.add_argument("--extractor-version", default=None, help="导出数据对应的特征版本（已知时填写）")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    set_level(args.log_level)

    kwargs = {"gallery_path": args.gallery}
    if args.threshold is not None:
        kwargs["threshold"] = float(args.threshold)
    recognizer = FaceRecognizer(**kwargs)

    try:
        if args.command == "enroll":
            person = recognizer.enroll_image(args.image, args.name, description=args.description)
            print(f"enrolled id={person.id} name={person.name}")
        elif args.command == "reenroll":
            person = recognizer.reenroll_image(args.person_id, args.image)
            print(f"re-enrolled id={person.id} name={person.name}")
        elif args.command == "delete":
            if not recognizer.delete_person(args.person_id):
                print(f"person {args.person_id} not found", file=sys.stderr)
                return 1
            print(f"deleted id={args.person_id}")
        elif args.command == "list":
            for p in recognizer.gallery:
                stale = "" if p.extractor_version == recognizer.extractor.version else "  [需重新录入]"
                print(f"{p.id:>4}  {p.name}  ({p.extractor_version}){stale}")
            print(json.dumps(recognizer.get_gallery_info(), ensure_ascii=False, indent=2))
        elif args.command == "check":
            report = validate_gallery(recognizer.gallery)
            print(f"valid={report.valid}/{report.total} success={report.success}")
            for err in report.errors:
                print(f"  {err}")
            recognizer.analyze_gallery_quality()
        elif args.command == "identify":
            result_image, detections = recognizer.process(str(args.image), args.output)
            if args.json:
                payload = [serialize_detection(d, result_image.shape) for d in detections]
                print(json.dumps(payload, ensure_ascii=False, indent=2))
                return 0
            if not detections:
                print("No faces detected.")
            for i, det in enumerate(detections):
                print(f"Face {i + 1}: {det.name} ({det.similarity:.1f}%)")
        elif args.command == "export":
            args.output.write_text(recognizer.gallery.export_json(), encoding="utf-8")
            print(f"exported {len(recognizer.gallery)} persons to {args.output}")
        elif args.command == "import":
            added = recognizer.gallery.import_json(
                args.input.read_text(encoding="utf-8"), extractor_version=args.extractor_version
            )
            recognizer.gallery.save(recognizer.gallery_path)
            print(f"imported {added} persons")
    except (FaceRecognitionError, KeyError, ValueError, OSError) as e:
        logger.error(f"{args.command} 失败: {e}")
        return 1
    finally:
        recognizer.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
