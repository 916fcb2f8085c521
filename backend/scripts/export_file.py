"""离线导出：把保存下来的会话 JSON 转成 zip / markdown / json"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

# 添加项目根目录到Python路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config import settings
from app.schemas.export import ExportOptions
from app.services.pipeline.export_pipeline import export_conversation_zip, render_single_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export a saved conversation document.")
    parser.add_argument("conversation", type=Path, help="conversation JSON file")
    parser.add_argument("--out", type=Path, default=Path(settings.EXPORT_DIR), help="output directory")
    parser.add_argument(
        "--format",
        choices=["zip", "markdown", "embedded", "json"],
        default="zip",
    )
    parser.add_argument("--no-thinking", action="store_true", help="omit thinking blocks")
    parser.add_argument(
        "--filename-style",
        choices=["title", "title_date", "date_title"],
        default=None,
    )
    return parser


async def run(args: argparse.Namespace) -> Path:
    data = json.loads(args.conversation.read_text(encoding="utf-8"))
    options = ExportOptions(
        include_thinking=False if args.no_thinking else None,
        filename_style=args.filename_style,
    )
    args.out.mkdir(parents=True, exist_ok=True)

    if args.format == "zip":
        filename, payload = await export_conversation_zip(data, client=None, options=options)
        target = args.out / filename
        target.write_bytes(payload)
        return target

    filename, content = render_single_file(data, args.format, options)
    target = args.out / filename
    target.write_text(content, encoding="utf-8")
    return target


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    target = asyncio.run(run(args))
    print(f"✅ 导出完成: {target}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
