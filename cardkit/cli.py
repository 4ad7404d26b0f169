"""
cardkit 命令行

使用:
  cardkit serve --port 3000                      # 启动 API 服务
  cardkit markdown note.md -o note.html          # 正则版 Markdown → HTML
  cardkit render note.md --engine rich           # 内联 CSS 的 HTML（可直接粘贴）
  cardkit shot note.md -o card.png               # 本地渲染卡片截图
  cardkit shot card.html -o card.jpg --format jpeg
  cardkit views my-post --hit                    # 调用运行中的服务计数
"""

import argparse
import logging
import sys
from pathlib import Path

import requests

from . import __version__, render, screenshot
from .client import DEFAULT_SERVER, CardClient
from .config import load_config
from .markdown_lite import markdown_to_html
from .server import serve

log = logging.getLogger("cardkit")


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _read_input(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _write_output(text: str, output: str = None):
    if output:
        Path(output).write_text(text, encoding="utf-8")
        log.info(f"Output: {output}")
    else:
        print(text)


# ── 子命令 ────────────────────────────────────────────────

def cmd_serve(args, config):
    serve(config, args.host, args.port)
    return 0


def cmd_markdown(args, config):
    _write_output(markdown_to_html(_read_input(args.input)), args.output)
    return 0


def cmd_render(args, config):
    css_text = render.load_css(args.css or config["universal_css"])
    html = render.render(_read_input(args.input), css_text, args.engine)
    _write_output(html, args.output)
    return 0


def cmd_shot(args, config):
    text = _read_input(args.input)
    if args.input.endswith((".html", ".htm")):
        body_html = text
    else:
        body_html = markdown_to_html(text)

    params = {
        "width": args.width,
        "height": args.height,
        "scale": args.scale,
        "format": args.format,
        "padding": args.padding,
    }
    shot_cfg = config["screenshot"]
    options = screenshot.ShotOptions.from_params(params, shot_cfg)
    universal = Path(config["universal_css"])
    universal_css = universal.read_text(encoding="utf-8") if universal.exists() else ""
    extra_css = Path(args.css).read_text(encoding="utf-8") if args.css else ""
    document = screenshot.build_document(body_html, extra_css, universal_css, options)

    try:
        data = screenshot.capture_html(document, options, shot_cfg.get("timeout", 30000))
    except screenshot.ScreenshotError as e:
        log.error(f"截图失败: {e}")
        return 1

    output = args.output or f"{Path(args.input).stem}.{'jpg' if options.format == 'jpeg' else 'png'}"
    Path(output).write_bytes(data)
    log.info(f"Saved: {output} ({len(data) // 1024}KB)")
    return 0


def cmd_views(args, config):
    client = CardClient(args.server)
    try:
        views = client.hit(args.slug) if args.hit else client.views(args.slug)
    except requests.RequestException as e:
        log.error(f"请求失败: {e}")
        return 1
    print(f"{args.slug}: {views}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cardkit",
        description="博客知识卡片服务：浏览量 / Markdown 预览 / 卡片截图",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"cardkit {__version__}")
    parser.add_argument("--config", help="配置文件路径（默认 ./cardkit.yaml）")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="启动 HTTP API 服务")
    p.add_argument("--host", help="监听地址（默认读配置 server.host）")
    p.add_argument("--port", type=int, help="监听端口（默认读配置 server.port）")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("markdown", help="正则版 Markdown → HTML")
    p.add_argument("input", help="Markdown 文件路径，- 表示 stdin")
    p.add_argument("-o", "--output", help="输出文件路径（默认 stdout）")
    p.set_defaults(func=cmd_markdown)

    p = sub.add_parser("render", help="Markdown → 内联 CSS 的 HTML")
    p.add_argument("input", help="Markdown 文件路径，- 表示 stdin")
    p.add_argument("-o", "--output", help="输出文件路径（默认 stdout）")
    p.add_argument("--css", help="自定义 CSS 文件路径（默认 universal_css）")
    p.add_argument("--engine", choices=render.ENGINES, default="lite",
                   help="lite: 正则版；rich: python-markdown")
    p.set_defaults(func=cmd_render)

    p = sub.add_parser("shot", help="本地渲染卡片并截图")
    p.add_argument("input", help="Markdown 或 .html 文件路径")
    p.add_argument("-o", "--output", help="输出图片路径（默认 <input>.png）")
    p.add_argument("--width", type=int)
    p.add_argument("--height", type=int)
    p.add_argument("--scale", type=float)
    p.add_argument("--format", choices=["png", "jpeg"])
    p.add_argument("--padding", type=int)
    p.add_argument("--css", help="额外 CSS 文件")
    p.set_defaults(func=cmd_shot)

    p = sub.add_parser("views", help="查询 / 增加文章浏览量（调用运行中的服务）")
    p.add_argument("slug")
    p.add_argument("--hit", action="store_true", help="浏览量 +1")
    p.add_argument("--server", default=DEFAULT_SERVER, help=f"服务地址（默认 {DEFAULT_SERVER}）")
    p.set_defaults(func=cmd_views)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    setup_logging(config.get("log_level", "INFO"))
    sys.exit(args.func(args, config))


if __name__ == "__main__":
    main()
