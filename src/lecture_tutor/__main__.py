"""
Interactive terminal session: python -m lecture_tutor <lecture_id>

Prints each segment as it arrives, prompts for an answer when the tutor asks
a question, and cancels the remote session on Ctrl+C or end of input.
"""

import argparse
import asyncio
import logging
import sys
import threading
from typing import List, Optional

from lecture_tutor.config import configure_logging, load_settings
from lecture_tutor.controller import SessionController
from lecture_tutor.core.errors import (
    AnswerSubmissionFailure,
    StaleAnswerError,
    TutorSessionError,
)
from lecture_tutor.core.session_models import SegmentView, SessionError, SupplementaryResult

logger = logging.getLogger(__name__)

STOP_CHECK_SECONDS = 3600.0


def print_segment(view: SegmentView) -> None:
    print(f"\n== {view.heading} ==")
    print(view.text)


def print_supplementary(result: SupplementaryResult) -> None:
    print("\n== Supplementary explanation ==")
    print(result.supplementary)


def print_error(error: SessionError) -> None:
    print(f"\n[error] {error.message}", file=sys.stderr)


def print_still_working(elapsed: float) -> None:
    print(f"\n(still preparing content after {elapsed:.0f}s...)")


async def read_answer(tutor: SessionController, prompt: str = "Your answer> ") -> Optional[str]:
    """
    Read one line without blocking the event loop.

    Returns None on end of input or when the session is stopped while the
    prompt is open. The reader is a daemon thread so a pending `input()`
    never holds up interpreter exit.
    """
    loop = asyncio.get_running_loop()
    line: asyncio.Future = loop.create_future()

    def _resolve(value: Optional[str]) -> None:
        if not line.done():
            line.set_result(value)

    def _read() -> None:
        try:
            value = input(prompt)
        except EOFError:
            value = None
        try:
            loop.call_soon_threadsafe(_resolve, value)
        except RuntimeError:
            pass  # loop already closed

    threading.Thread(target=_read, name="answer-reader", daemon=True).start()

    stopped = asyncio.ensure_future(_wait_for_stop(tutor))
    try:
        await asyncio.wait({line, stopped}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopped.cancel()
    return line.result() if line.done() else None


async def _wait_for_stop(tutor: SessionController) -> None:
    while not await tutor.cancellation.signal.wait(STOP_CHECK_SECONDS):
        pass


async def run_session(lecture_id: int) -> int:
    settings = load_settings()
    configure_logging(settings.log_level)

    tutor = SessionController.from_settings(
        settings,
        on_segment=print_segment,
        on_supplementary=print_supplementary,
        on_error=print_error,
        on_still_working=print_still_working,
    )

    async with tutor:
        try:
            manifest = await tutor.start(lecture_id)
        except TutorSessionError as e:
            if tutor.status == "cancelled":
                return 0
            logger.error(f"Could not start lecture {lecture_id}: {e}")
            return 1
        logger.info(f"Lecture {lecture_id}: {manifest.total_chapters} chapters")

        while tutor.waiting_for_answer:
            answer = await read_answer(tutor)
            if answer is None:
                if tutor.status != "cancelled":
                    print("\nInput closed; stopping the session.")
                return 0
            if not answer.strip():
                print("Please type an answer.")
                continue
            try:
                await tutor.submit_answer(tutor.current_question_id, answer)
            except AnswerSubmissionFailure:
                # Question stays open; the error callback already reported it
                continue
            except StaleAnswerError as e:
                logger.warning(f"{e}")
                break
            except TutorSessionError:
                return 1

        if tutor.status == "completed":
            print("\nLecture complete.")
            return 0
        return 0 if tutor.status == "cancelled" else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lecture_tutor",
        description="Run an interactive AI tutoring session for a lecture.",
    )
    parser.add_argument("lecture_id", type=int, help="ID of the lecture to study")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run_session(args.lecture_id))
    except KeyboardInterrupt:
        # Loops without signal handler support; `async with` already sent the remote cancel
        print("\nSession stopped.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
