"""
Command executor for the tutoring session workflow.

Executes commands emitted by the logic layer and returns results as status
dicts ({'status': 'success' | 'cancelled' | 'error' | 'scheduled' | 'skipped', ...}).
The controller turns those results back into session events.
"""

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set, Union

from lecture_tutor.cancellation import AbortSignal
from lecture_tutor.core.commands import (
    CancelRemoteSessionCommand,
    Command,
    DeliverSegmentCommand,
    DeliverSupplementaryCommand,
    FetchNextSegmentCommand,
    InitializeSessionCommand,
    ShowErrorToastCommand,
    SubmitAnswerCommand,
    TrackUsageMetricCommand,
)
from lecture_tutor.core.session_models import SessionError
from lecture_tutor.gateway import RemoteSessionGateway
from lecture_tutor.polling import PollingFetcher

logger = logging.getLogger(__name__)


@dataclass
class SessionCallbacks:
    """Hooks the surrounding UI registers. Sync or async callables."""

    on_segment: Optional[Callable[..., Any]] = None
    on_supplementary: Optional[Callable[..., Any]] = None
    on_error: Optional[Callable[..., Any]] = None


@dataclass
class ExecutionContext:
    gateway: RemoteSessionGateway
    fetcher: PollingFetcher
    signal: AbortSignal
    callbacks: SessionCallbacks
    advance_delay_seconds: float = 0.5
    background_tasks: Set[asyncio.Task] = field(default_factory=set)


async def execute_command(command: Command, context: ExecutionContext) -> Dict[str, Any]:
    """
    Execute a command and return result.

    Args:
        command: Command to execute
        context: Gateway, fetcher, abort signal and callbacks of the current session

    Returns:
        Dictionary with command execution result
    """
    if isinstance(command, FetchNextSegmentCommand):
        return await execute_fetch_next_command(command, context)

    elif isinstance(command, InitializeSessionCommand):
        return await execute_initialize_command(command, context)

    elif isinstance(command, SubmitAnswerCommand):
        return await execute_submit_answer_command(command, context)

    elif isinstance(command, CancelRemoteSessionCommand):
        schedule_remote_cancel(command, context.gateway, context.background_tasks)
        return {'status': 'scheduled', 'lecture_id': command.lecture_id}

    elif isinstance(command, DeliverSegmentCommand):
        return await _invoke_callback(context.callbacks.on_segment, command.view, command)

    elif isinstance(command, DeliverSupplementaryCommand):
        return await _invoke_callback(context.callbacks.on_supplementary, command.result, command)

    elif isinstance(command, ShowErrorToastCommand):
        error = SessionError(message=command.message, code=command.error_code)
        return await _invoke_callback(context.callbacks.on_error, error, command)

    elif isinstance(command, TrackUsageMetricCommand):
        return record_usage_metric(command)

    else:
        logger.warning(f"Unhandled command type: {type(command).__name__}")
        return {'status': 'skipped', 'command_type': type(command).__name__}


async def execute_initialize_command(
    command: InitializeSessionCommand,
    context: ExecutionContext,
) -> Dict[str, Any]:
    """Execute InitializeSessionCommand - start the remote session."""
    try:
        manifest = await context.gateway.initialize(command.lecture_id)
        logger.info(
            f"Initialized session for lecture {command.lecture_id} "
            f"({manifest.total_chapters} chapters)"
        )
        return {'status': 'success', 'manifest': manifest}

    except Exception as e:
        logger.error(f"Error initializing session for lecture {command.lecture_id}: {e}", exc_info=True)
        return {'status': 'error', 'error': e}


async def execute_fetch_next_command(
    command: FetchNextSegmentCommand,
    context: ExecutionContext,
) -> Dict[str, Any]:
    """Execute FetchNextSegmentCommand - poll until the next segment resolves."""
    if command.follow_up:
        # Give the UI a moment to show the previous segment before advancing
        if await context.signal.wait(context.advance_delay_seconds):
            logger.info(f"Auto-advance for lecture {command.lecture_id} suppressed by abort")
            return {'status': 'cancelled'}

    try:
        segment = await context.fetcher.fetch(command.lecture_id, context.signal)
    except Exception as e:
        return {'status': 'error', 'error': e}

    if segment is None:
        return {'status': 'cancelled'}
    return {'status': 'success', 'segment': segment}


async def execute_submit_answer_command(
    command: SubmitAnswerCommand,
    context: ExecutionContext,
) -> Dict[str, Any]:
    """Execute SubmitAnswerCommand - send the learner's answer."""
    try:
        result = await context.gateway.answer(command.lecture_id, command.request)
        logger.info(
            f"Answer to question {command.request.question_id} accepted "
            f"(can_continue={result.can_continue})"
        )
        return {'status': 'success', 'result': result}

    except Exception as e:
        logger.error(
            f"Error submitting answer to question {command.request.question_id}: {e}",
            exc_info=True,
        )
        return {'status': 'error', 'error': e}


def schedule_remote_cancel(
    command: CancelRemoteSessionCommand,
    gateway: RemoteSessionGateway,
    background_tasks: Set[asyncio.Task],
) -> Union[asyncio.Task, threading.Thread]:
    """
    Fire-and-forget remote cancel.

    Runs as a task on the current event loop when there is one, otherwise on
    a daemon thread (interpreter shutdown). Failures are logged only: the
    local session is already cancelled regardless of the outcome.
    """

    async def _cancel() -> None:
        try:
            await gateway.cancel(command.lecture_id)
            logger.info(f"Remote session for lecture {command.lecture_id} cancelled ({command.reason})")
        except Exception as e:
            logger.warning(
                f"Remote cancel for lecture {command.lecture_id} failed ({command.reason}): {e}",
                exc_info=True,
            )

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is not None:
        task = loop.create_task(_cancel())
        background_tasks.add(task)
        task.add_done_callback(background_tasks.discard)
        return task

    thread = threading.Thread(
        target=asyncio.run,
        args=(_cancel(),),
        name=f"remote-cancel-{command.lecture_id}",
        daemon=True,
    )
    thread.start()
    return thread


def record_usage_metric(command: TrackUsageMetricCommand) -> Dict[str, Any]:
    logger.info(f"metric {command.metric} {command.data}")
    return {'status': 'success', 'metric': command.metric}


async def _invoke_callback(callback: Optional[Callable[..., Any]], payload: Any, command: Command) -> Dict[str, Any]:
    """Call a UI hook. A failing hook is logged and never breaks the session loop."""
    if callback is None:
        return {'status': 'skipped', 'command_type': command.command_name}
    try:
        result = callback(payload)
        if inspect.isawaitable(result):
            await result
        return {'status': 'success'}
    except Exception as e:
        logger.error(f"Callback for {command.command_name} raised: {e}", exc_info=True)
        return {'status': 'error', 'error': e}
