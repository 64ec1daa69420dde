from __future__ import annotations

import argparse
import mimetypes
import webbrowser
from pathlib import Path
from typing import List, Optional

from .client import ArtifactClient, ArtifactRetrievalError
from .config import ViewerConfig, load_config
from .logging_config import configure_logging


def _fmt_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.1f} MB"


def cmd_serve(args: argparse.Namespace, config: ViewerConfig) -> None:
    from .server.app import create_app

    host = args.host or config.host
    port = args.port or config.port
    app = create_app(config)

    url = f"http://{host}:{port}/api/view"
    if not args.no_open:
        try:
            webbrowser.open(url)
        except webbrowser.Error:
            pass

    import uvicorn

    uvicorn.run(app, host=host, port=port, log_level="warning")


def cmd_fetch(args: argparse.Namespace, config: ViewerConfig) -> None:
    # Headless retrieval of every configured artifact (handy for checking a backend)
    client = ArtifactClient(config.base_url, timeout_s=config.timeout_s)
    out_dir: Path = args.out
    out_dir.mkdir(parents=True, exist_ok=True)

    failures = 0
    print(f"{'Kind':<10}  {'Status':<8}  {'Type':<18}  {'Size':>10}  Path")
    try:
        for spec in config.artifact_specs():
            try:
                media = client.fetch(spec)
            except ArtifactRetrievalError as e:
                failures += 1
                print(f"{spec.kind:<10}  {'failed':<8}  {'-':<18}  {'-':>10}  {e}")
                continue
            ext = mimetypes.guess_extension(media.media_type) or ".bin"
            out_path = out_dir / f"{spec.kind}{ext}"
            out_path.write_bytes(media.data)
            print(f"{spec.kind:<10}  {'ok':<8}  {media.media_type:<18}  {_fmt_size(len(media.data)):>10}  {out_path}")
    finally:
        client.close()

    if failures:
        raise SystemExit(1)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="cardioview", description="CardioView result viewer")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("serve", help="Run the result viewer API.")
    s.add_argument("--config", type=Path, default=None, help="Path to a YAML config file")
    s.add_argument("--host", type=str, default=None)
    s.add_argument("--port", type=int, default=None)
    s.add_argument("--no-open", action="store_true", help="Do not open a browser automatically")
    s.set_defaults(func=cmd_serve)

    f = sub.add_parser("fetch", help="Fetch every configured artifact once and save it.")
    f.add_argument("--config", type=Path, default=None, help="Path to a YAML config file")
    f.add_argument("--out", type=Path, required=True)
    f.set_defaults(func=cmd_fetch)

    args = parser.parse_args(argv)
    config = load_config(args.config)
    configure_logging(config, verbose=args.verbose)
    args.func(args, config)


if __name__ == "__main__":
    main()
