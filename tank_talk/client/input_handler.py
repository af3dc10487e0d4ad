"""Keyboard input handling."""

from blessed.keyboard import Keystroke

# Terminals only report key presses, so a direction counts as held for this
# long after its last press (auto-repeat refreshes it)
HOLD_WINDOW = 0.15

# Output volume change per +/- press
VOLUME_STEP = 0.1

# Movement mappings: key -> (dx, dy)
MOVEMENT_KEYS = {
    "w": (0, -1),
    "a": (-1, 0),
    "s": (0, 1),
    "d": (1, 0),
}

ARROW_KEYS = {
    "KEY_UP": (0, -1),
    "KEY_DOWN": (0, 1),
    "KEY_LEFT": (-1, 0),
    "KEY_RIGHT": (1, 0),
}


def get_movement(key: Keystroke) -> tuple[int, int] | None:
    """Get movement delta from key press, or None if not a movement key."""
    if key.name in ARROW_KEYS:
        return ARROW_KEYS[key.name]
    return MOVEMENT_KEYS.get(key.lower(), None)


def is_shoot_key(key: Keystroke) -> bool:
    return str(key) == " "


def is_mic_key(key: Keystroke) -> bool:
    """Check if key toggles transmission (M)."""
    return str(key).lower() == "m"


def is_mute_key(key: Keystroke) -> bool:
    """Check if key is the mute toggle (V)."""
    return str(key).lower() == "v"


def get_volume_change(key: Keystroke) -> float:
    """Output volume delta for +/- keys, 0.0 for anything else."""
    if str(key) in ("+", "="):
        return VOLUME_STEP
    if str(key) in ("-", "_"):
        return -VOLUME_STEP
    return 0.0


def is_retry_key(key: Keystroke) -> bool:
    """Check if key retries the microphone or reconnects (R)."""
    return str(key).lower() == "r"


def is_quit_key(key: Keystroke) -> bool:
    """Check if key is the quit key."""
    return str(key).lower() == "q"


class HeldKeys:
    """Tracks which movement directions are currently held."""

    def __init__(self, hold_window: float = HOLD_WINDOW) -> None:
        self.hold_window = hold_window
        self._last_press: dict[tuple[int, int], float] = {}

    def press(self, direction: tuple[int, int], now: float) -> None:
        self._last_press[direction] = now

    def direction(self, now: float) -> tuple[int, int]:
        """Sum of all directions pressed within the hold window."""
        dx = dy = 0
        for (kx, ky), pressed_at in list(self._last_press.items()):
            if now - pressed_at > self.hold_window:
                del self._last_press[(kx, ky)]
                continue
            dx += kx
            dy += ky
        return max(-1, min(1, dx)), max(-1, min(1, dy))
