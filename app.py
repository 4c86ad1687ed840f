from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

import structlog

from voicementor.audio.mic_capture import MicCapture
from voicementor.audio.output import AudioOutput
from voicementor.config import AppConfig, load_config
from voicementor.errors import MentorError
from voicementor.live.gemini_live import GeminiLiveConnector
from voicementor.live.session import LiveSessionController, SessionState
from voicementor.log import configure_logging
from voicementor.playback.clip_player import ClipPlayer
from voicementor.questions import ALL_CATEGORY, load_question_bank
from voicementor.services.answer_cache import AnswerCache
from voicementor.services.auth import AuthProvider, build_auth
from voicementor.services.document_store import build_document_store
from voicementor.services.mentor_ai import MentorAI, create_genai_client
from voicementor.study import StudySession
from voicementor.types import AIResponse

logger = structlog.get_logger("voicementor.app")


def _build_cache(config: AppConfig, auth: AuthProvider) -> AnswerCache:
    return AnswerCache(
        build_document_store(config.storage),
        auth,
        answers_collection=config.storage.answers_collection,
        questions_collection=config.storage.questions_collection,
    )


def _build_study(config: AppConfig, output: AudioOutput) -> StudySession:
    auth = build_auth(config.auth, config.storage)
    cache = _build_cache(config, auth)
    mentor = MentorAI(create_genai_client(config.gemini), cache, config.gemini)
    bank = load_question_bank(Path(config.questions_path) if config.questions_path else None)
    player = ClipPlayer(output, mentor.get_audio)
    return StudySession(bank, cache, mentor, player, auth)


def _print_response(response: AIResponse) -> None:
    print(response.answer)
    if response.sources:
        print("\nSources:")
        for source in response.sources:
            print(f"  - {source.title or source.uri}: {source.uri}")


async def _cmd_list(args: argparse.Namespace, config: AppConfig) -> int:
    bank = load_question_bank(Path(config.questions_path) if config.questions_path else None)
    cache = _build_cache(config, build_auth(config.auth, config.storage))
    synced = set(await cache.all_cached_ids())
    custom = await cache.get_custom_questions()

    category = str(args.category or ALL_CATEGORY)
    if category != ALL_CATEGORY and category not in bank.categories:
        print(f"Unknown category: {category}. Choose from: {', '.join(bank.all_categories)}", file=sys.stderr)
        return 1

    for q in custom + bank.questions:
        if category != ALL_CATEGORY and q.category != category:
            continue
        marks = ("S" if q.id in synced else " ") + ("C" if q.is_custom else " ")
        print(f"[{marks}] {q.id:<24} {q.category:<24} {q.text}")
    print(f"\n{len(synced)} cloud sync")
    return 0


async def _answer_and_listen(
    study: StudySession,
    output: AudioOutput,
    answer: Callable[[], Awaitable[AIResponse]],
    play_audio: bool,
) -> int:
    if play_audio:
        output.start()
    try:
        response = await answer()
        _print_response(response)
        if play_audio:
            print("\nPlaying podcast... (Ctrl+C to stop)")
            await study.wait_for_audio()
        return 0
    finally:
        study.close()
        output.close()


async def _cmd_ask(args: argparse.Namespace, config: AppConfig) -> int:
    output = AudioOutput(config.audio.output_sample_rate, device=config.audio.output_device, loop=asyncio.get_running_loop())
    study = _build_study(config, output)
    await study.refresh()
    question = study.find(args.question_id)
    if question is None:
        print(f"Unknown question id: {args.question_id}", file=sys.stderr)
        return 1
    print(f"{question.text}\n[{question.category}]\n")
    return await _answer_and_listen(study, output, lambda: study.open_question(question, play_audio=not args.no_audio), not args.no_audio)


async def _cmd_custom(args: argparse.Namespace, config: AppConfig) -> int:
    output = AudioOutput(config.audio.output_sample_rate, device=config.audio.output_device, loop=asyncio.get_running_loop())
    study = _build_study(config, output)
    return await _answer_and_listen(study, output, lambda: study.ask(args.text, play_audio=not args.no_audio), not args.no_audio)


async def _cmd_live(args: argparse.Namespace, config: AppConfig) -> int:
    output = AudioOutput(config.audio.output_sample_rate, device=config.audio.output_device, loop=asyncio.get_running_loop())
    connector = GeminiLiveConnector(create_genai_client(config.gemini), config.gemini)
    controller = LiveSessionController(
        connector,
        output,
        capture_factory=lambda: MicCapture(device=config.audio.input_device),
        input_sample_rate=config.audio.input_sample_rate,
        frame_samples=config.audio.frame_samples,
    )

    output.start()
    try:
        if not await controller.start():
            print("Failed to start voice assistant.", file=sys.stderr)
            return 1
        print("Speaking with your Angular Mentor... (Ctrl+C to stop)")
        while controller.state is not SessionState.IDLE:
            await asyncio.sleep(0.2)
        return 0
    finally:
        await controller.stop()
        output.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Angular interview mentor: answers, podcasts and live voice chat.")
    parser.add_argument(
        "--config",
        default=str(Path(__file__).with_name("config.yaml")),
        help="Path to config.yaml (default: next to app.py)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List questions")
    p_list.add_argument("--category", default=ALL_CATEGORY, help="Category filter (default: All)")
    p_list.set_defaults(handler=_cmd_list)

    p_ask = sub.add_parser("ask", help="Answer a question from the library")
    p_ask.add_argument("question_id")
    p_ask.add_argument("--no-audio", action="store_true", help="Print the answer without playing it")
    p_ask.set_defaults(handler=_cmd_ask)

    p_custom = sub.add_parser("custom", help="Ask your own question")
    p_custom.add_argument("text")
    p_custom.add_argument("--no-audio", action="store_true", help="Print the answer without playing it")
    p_custom.set_defaults(handler=_cmd_custom)

    p_live = sub.add_parser("live", help="Start a live voice session")
    p_live.set_defaults(handler=_cmd_live)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(Path(args.config))
    configure_logging(config.logging.level)

    try:
        return asyncio.run(args.handler(args, config))
    except KeyboardInterrupt:
        return 0
    except (MentorError, ValueError, FileNotFoundError) as exc:
        logger.debug("Command failed", command=args.command, error=str(exc))
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
