"""WebSocket action dispatch table."""

from __future__ import annotations

from typing import Awaitable, Callable

from storyteller.ws.context import WsSessionContext

# Handlers reply on the socket themselves and return nothing.
ActionHandler = Callable[[WsSessionContext, dict], Awaitable[None]]


def get_action_dispatch() -> dict[str, ActionHandler]:
    """Build and return the event → handler dispatch table.

    Imports are deferred to avoid circular-import issues with ``storyteller.app``.
    """
    from storyteller.ws.actions.session import handle_join_session
    from storyteller.ws.actions.story import (
        handle_continue_story,
        handle_picture_book_images,
        handle_submit_choice,
        handle_voice_input,
    )
    from storyteller.ws.actions.launch import (
        handle_cancel_launch,
        handle_check_ready,
        handle_confirm_ready,
        handle_retry_stage,
    )

    return {
        "join-session": handle_join_session,
        "voice-input": handle_voice_input,
        "continue-story": handle_continue_story,
        "submit-choice": handle_submit_choice,
        "check-ready": handle_check_ready,
        "confirm-ready": handle_confirm_ready,
        "cancel-launch-sequence": handle_cancel_launch,
        "retry-stage": handle_retry_stage,
        "request-picture-book-images": handle_picture_book_images,
    }
