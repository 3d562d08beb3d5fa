#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""冥想生成链路诊断脚本。

用途：
1. 复现服务端发给混元的 prompt（system + user、max_tokens、temperature）
2. 可选地走一遍完整分发流程（含语音合成），保存请求与响应
3. 检查生成文本的字数、预估朗读时长是否符合预期
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any


def _add_server_to_path(repo_root: Path) -> None:
    server_path = repo_root / "server"
    if str(server_path) not in sys.path:
        sys.path.insert(0, str(server_path))


def _now_tag() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def main() -> int:
    parser = argparse.ArgumentParser(description="冥想生成链路诊断")
    parser.add_argument("--type", default="generate", choices=["generate", "preview", "recommend", "ping"])
    parser.add_argument("--topic", default="基础放松")
    parser.add_argument("--style", default="")
    parser.add_argument("--duration", type=int, default=0)
    parser.add_argument("--language", default="zh")
    parser.add_argument("--voice", action="store_true")
    parser.add_argument("--keywords", default="", help="逗号分隔，仅 recommend 使用")
    parser.add_argument("--save-dir", default="logs/meditation_diag")
    parser.add_argument("--dry-run", action="store_true", help="只打印 prompt，不请求大模型")
    args = parser.parse_args()

    repo_root = Path(__file__).resolve().parents[2]
    _add_server_to_path(repo_root)

    from dotenv import load_dotenv

    load_dotenv(repo_root / ".env")

    from meditation_agent.dependencies import get_orchestrator, get_prompt_builder
    from meditation_agent.schemas.meditation import GenerateRequest
    from meditation_agent.services.meditation.dispatcher import dispatch

    event: dict[str, Any] = {"type": args.type, "topic": args.topic, "language": args.language, "voice": args.voice}
    if args.style:
        event["style"] = args.style
    if args.duration > 0:
        event["duration"] = args.duration
    if args.keywords:
        event["keywords"] = [item.strip() for item in args.keywords.split(",") if item.strip()]

    orchestrator = get_orchestrator()
    tag = _now_tag()
    save_dir = (repo_root / args.save_dir).resolve()

    if args.type in {"generate", "preview"}:
        request = GenerateRequest.model_validate(event)
        duration = orchestrator.resolve_duration(request)
        quick = orchestrator.is_quick_mode(duration)
        builder = get_prompt_builder()
        style = orchestrator.resolve_style(request)
        if quick:
            prompt = builder.build_quick_prompt(
                topic=request.topic, style=style, duration=duration, language=request.language
            )
        else:
            prompt = builder.build_prompt(
                topic=request.topic, style=style, duration=duration, language=request.language
            )
        req_path = save_dir / f"{tag}_prompt.json"
        _write_json(
            req_path,
            {
                "system": builder.system_prompt(request.language, quick=quick),
                "user": prompt,
                "duration": duration,
                "mode": "quick" if quick else "standard",
                "max_tokens": orchestrator.calculate_max_tokens(duration, quick),
            },
        )
        print("=== Prompt 诊断 ===")
        print(f"topic: {request.topic}  style: {style}  duration: {duration}  mode: {'quick' if quick else 'standard'}")
        print(f"max_tokens: {orchestrator.calculate_max_tokens(duration, quick)}")
        print(f"prompt_chars: {len(prompt)}")
        print(f"prompt_saved: {req_path}")
        print("prompt_preview:\n" + prompt[:600] + ("\n...(truncated)" if len(prompt) > 600 else ""))

    if args.dry_run:
        print("[dry-run] 已跳过网络请求。")
        return 0

    result = asyncio.run(dispatch(event, orchestrator, request_id=f"diag_{tag}"))
    result_path = save_dir / f"{tag}_result.json"
    audio = (result.get("data") or {}).get("audio") or {}
    if audio.get("base64"):
        audio["base64"] = f"<{len(audio['base64'])} chars>"
    _write_json(result_path, result)

    print("=== 生成结果 ===")
    print(f"success: {result.get('success')}")
    print(f"result_saved: {result_path}")
    if not result.get("success"):
        print(f"[error] {json.dumps(result.get('error'), ensure_ascii=False)}", file=sys.stderr)
        return 3

    data = result.get("data") or {}
    metadata = data.get("metadata") or {}
    if "text" in data:
        print(f"text_length: {metadata.get('textLength')}  word_count: {metadata.get('wordCount')}")
        print(f"estimated_read_time: {metadata.get('estimatedReadTime')}s")
        print(f"audio_url: {audio.get('url') or '(none)'}  cache_hit: {audio.get('cacheHit')}")
        print("text_preview:\n" + str(data["text"])[:400])
    else:
        print(json.dumps(data, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
