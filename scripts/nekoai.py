#!/usr/bin/env python3
"""Command-line front end for the NovelAI image client.

Usage:
  python scripts/nekoai.py generate "1girl, cute" --model v4.5 --preset normal_portrait
  python scripts/nekoai.py generate "1girl, cute" --stream --out outputs/nekoai
  python scripts/nekoai.py director lineart path/to/image.png
  python scripts/nekoai.py director emotion face.png --emotion happy --level 2
  python scripts/nekoai.py cost "1girl" --size 1024x1024 --steps 28 --n 4 --discount
  python scripts/nekoai.py metadata path/to/image.png

Notes:
- Loads .env from the repository root (or the current directory).
- NOVELAI_TOKEN must be set for the generate and director commands.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
import time
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from nekoai_image_api.api import NovelAIClient
from nekoai_image_api.core.contracts import (
    UNSET,
    DirectorTool,
    Emotion,
    GenerationRequest,
    ResultImage,
)
from nekoai_image_api.core.cost import estimate_cost
from nekoai_image_api.core.errors import NovelAIError
from nekoai_image_api.core.metadata_reader import get_image_summary
from nekoai_image_api.core.normalizer import normalize_request
from nekoai_image_api.core.utils import ensure_out_dir, format_file_size


logger = logging.getLogger("nekoai")

DIRECTOR_CHOICES = [tool.value for tool in DirectorTool]
EMOTION_CHOICES = [emotion.value for emotion in Emotion]


def _find_repo_dotenv() -> Optional[Path]:
    current = Path(__file__).resolve()
    for parent in (current.parent, *current.parents):
        dotenv_path = parent / ".env"
        if dotenv_path.exists():
            return dotenv_path
    return None


def _load_repo_dotenv() -> Optional[Path]:
    dotenv_path = _find_repo_dotenv()
    if dotenv_path is not None:
        load_dotenv(dotenv_path=dotenv_path, override=False)
        return dotenv_path
    load_dotenv(override=False)
    return None


class _Spinner:
    def __init__(self, message: str, interval: float = 0.1) -> None:
        self.message = message
        self.interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)

    def start(self) -> None:
        if sys.stdout.isatty():
            self._thread.start()

    def stop(self) -> None:
        if not self._thread.is_alive():
            return
        self._stop.set()
        self._thread.join(timeout=1.0)
        sys.stdout.write("\r" + " " * (len(self.message) + 4) + "\r")
        sys.stdout.flush()

    def _run(self) -> None:
        frames = ["|", "/", "-", "\\"]
        index = 0
        while not self._stop.is_set():
            sys.stdout.write(f"\r{self.message} {frames[index % len(frames)]}")
            sys.stdout.flush()
            time.sleep(self.interval)
            index += 1


def _build_request(args: argparse.Namespace) -> GenerationRequest:
    request = GenerationRequest(prompt=args.prompt)
    options = {
        "model": args.model,
        "res_preset": args.preset,
        "size": args.size,
        "steps": args.steps,
        "scale": args.scale,
        "sampler": args.sampler,
        "seed": args.seed,
        "n_samples": args.n,
        "negative_prompt": args.negative,
        "uc_preset": args.uc_preset,
    }
    for key, value in options.items():
        if value is not None:
            setattr(request, key, value)
    if getattr(args, "no_quality", False):
        request.quality_toggle = False
    return request


def _describe(image: ResultImage) -> str:
    return f"{image.path} ({format_file_size(len(image.data))})"


def _client(args: argparse.Namespace) -> NovelAIClient:
    return NovelAIClient(verbose=args.verbose)


def _run_generate(args: argparse.Namespace) -> int:
    client = _client(args)
    request = _build_request(args)
    out_dir = ensure_out_dir(Path(args.out) if args.out else None)
    if args.stream:
        for event in client.stream_image(request, args.host):
            if event.is_final:
                client.save_results([event.image], out_dir, request=request)
                print(_describe(event.image))
            elif args.save_steps:
                event.image.save(out_dir / f"sample{event.samp_ix}", store=client.store)
                print(f"step {event.step_ix:02d} sample {event.samp_ix} sigma={event.sigma:.3f}")
            else:
                print(f"step {event.step_ix:02d} sample {event.samp_ix} sigma={event.sigma:.3f}")
        return 0

    spinner = _Spinner("Generating")
    spinner.start()
    try:
        images = client.generate_image(request, args.host, discount=args.discount)
    finally:
        spinner.stop()
    client.save_results(images, out_dir, request=request)
    for image in images:
        print(_describe(image))
    return 0


def _run_director(args: argparse.Namespace) -> int:
    client = _client(args)
    tool = DirectorTool(args.tool)
    if tool == DirectorTool.EMOTION:
        result = client.change_emotion(args.image, args.host, args.emotion, args.prompt or "", args.level)
    elif tool == DirectorTool.COLORIZE:
        result = client.colorize(args.image, args.host, args.prompt or "", args.defry)
    elif tool == DirectorTool.LINEART:
        result = client.line_art(args.image, args.host)
    elif tool == DirectorTool.SKETCH:
        result = client.sketch(args.image, args.host)
    elif tool == DirectorTool.BACKGROUND_REMOVAL:
        result = client.background_removal(args.image, args.host)
    else:
        result = client.declutter(args.image, args.host)
    out_dir = ensure_out_dir(Path(args.out) if args.out else None)
    result.save(out_dir, store=client.store)
    print(_describe(result))
    return 0


def _run_cost(args: argparse.Namespace) -> int:
    normalized = normalize_request(_build_request(args))
    cost = estimate_cost(normalized, args.discount)
    print(f"{normalized.model.value} {normalized.width}x{normalized.height} steps={normalized.steps} "
          f"n={normalized.n_samples}: {cost} Anlas")
    for warning in normalized.warnings:
        print(f"warning: {warning}")
    return 0


def _jsonable(value):
    if value is UNSET:
        return None
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)


def _run_metadata(args: argparse.Namespace) -> int:
    summary = get_image_summary(args.image)
    print(json.dumps(_jsonable(asdict(summary)), indent=2, ensure_ascii=False))
    return 0 if summary.has_metadata else 1


def _add_request_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("prompt", help="Prompt text (comma-separated tags)")
    parser.add_argument("--model", default=None, help="Model id or alias (e.g. v4.5, v4-curated, legacy-v3)")
    parser.add_argument("--preset", default=None, help="Resolution preset (e.g. normal_portrait)")
    parser.add_argument("--size", default=None, help="Explicit WxH, rounded up to multiples of 64")
    parser.add_argument("--steps", type=int, default=None)
    parser.add_argument("--scale", type=float, default=None)
    parser.add_argument("--sampler", default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--n", type=int, default=None, help="Number of samples")
    parser.add_argument("--negative", default=None, help="Negative prompt")
    parser.add_argument("--uc-preset", dest="uc_preset", type=int, default=None)
    parser.add_argument("--no-quality", action="store_true", help="Do not append quality tags")
    parser.add_argument("--discount", action="store_true", help="Apply the subscription discount to the estimate")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="NovelAI image generation client.")
    parser.add_argument("--verbose", action="store_true", help="Debug logging and cost output")
    parser.add_argument("--host", default=None, help="api, web or a custom https:// URL")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate images")
    _add_request_arguments(gen)
    gen.add_argument("--stream", action="store_true", help="Stream progress events")
    gen.add_argument("--save-steps", action="store_true", help="Also save intermediate stream images")
    gen.add_argument("--out", default=None, help="Output directory (default: outputs/nekoai/<stamp>)")
    gen.set_defaults(handler=_run_generate)

    director = sub.add_parser("director", help="Run a director tool on an image")
    director.add_argument("tool", choices=DIRECTOR_CHOICES)
    director.add_argument("image", help="Input image path")
    director.add_argument("--prompt", default=None)
    director.add_argument("--defry", type=int, default=0)
    director.add_argument("--emotion", choices=EMOTION_CHOICES, default=Emotion.NEUTRAL.value)
    director.add_argument("--level", type=int, default=0, choices=range(0, 6))
    director.add_argument("--out", default=None)
    director.set_defaults(handler=_run_director)

    cost = sub.add_parser("cost", help="Estimate the Anlas cost of a request")
    _add_request_arguments(cost)
    cost.set_defaults(handler=_run_cost)

    metadata = sub.add_parser("metadata", help="Print generation metadata embedded in an image")
    metadata.add_argument("image")
    metadata.set_defaults(handler=_run_metadata)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    _load_repo_dotenv()
    try:
        return args.handler(args)
    except NovelAIError as exc:
        logger.error("%s", exc)
        return 2
    except KeyboardInterrupt:
        print("\nCancelled.")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
