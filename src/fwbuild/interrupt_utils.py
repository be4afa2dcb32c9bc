"""Utilities for handling KeyboardInterrupt in try-except blocks.

This module provides utilities to ensure KeyboardInterrupt is properly
propagated to the main thread when caught in exception handlers.
"""

import _thread
import threading


def handle_keyboard_interrupt_properly(ke: KeyboardInterrupt) -> None:
    """Handle KeyboardInterrupt by propagating it to the main thread.

    Usage:
        try:
            builder.build()
        except KeyboardInterrupt as ke:
            handle_keyboard_interrupt_properly(ke)
        except BuildError:
            ...

    Args:
        ke: The KeyboardInterrupt exception to handle

    Raises:
        KeyboardInterrupt: Always re-raises the exception after handling
    """
    # The main thread already sees the exception being re-raised
    if threading.current_thread() is not threading.main_thread():
        _thread.interrupt_main()
    raise ke
