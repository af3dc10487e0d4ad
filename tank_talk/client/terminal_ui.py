"""Terminal UI rendering with blessed."""

import math

from blessed import Terminal

from ..common.config import ArenaConfig
from ..common.protocol import BulletInfo, PlayerInfo

# Lines reserved below the arena for status and help
RESERVED_LINES = 6

# Tank glyph by heading, starting at 0 degrees (east) in 45 degree steps
HEADING_GLYPHS = [">", "\\", "v", "/", "<", "\\", "^", "/"]


def heading_glyph(angle: float) -> str:
    index = int(round((angle % 360) / 45)) % 8
    return HEADING_GLYPHS[index]


def health_bar(health: int, max_health: int = 100, width: int = 10) -> str:
    filled = max(0, min(width, math.ceil(health / max_health * width)))
    return "#" * filled + "." * (width - filled)


class TerminalUI:
    def __init__(self, terminal: Terminal):
        self.term = terminal

    def _arena_size(self) -> tuple[int, int]:
        """Character cells available for the arena drawing."""
        width = max(20, self.term.width - 2)
        height = max(8, self.term.height - RESERVED_LINES - 2)
        return width, height

    def to_cell(
        self, x: float, y: float, arena: ArenaConfig, cols: int, rows: int
    ) -> tuple[int, int]:
        """Scale an arena position to a cell inside the border."""
        cx = int(x / arena.width * (cols - 1)) if arena.width else 0
        cy = int(y / arena.height * (rows - 1)) if arena.height else 0
        return max(0, min(cols - 1, cx)), max(0, min(rows - 1, cy))

    def render(
        self,
        arena: ArenaConfig,
        players: list[PlayerInfo],
        bullets: list[BulletInfo],
        local_player_id: int | None,
        status_fields: dict[str, str],
        message: str = "",
    ) -> None:
        """Render the game state to the terminal."""
        cols, rows = self._arena_size()
        grid = [[" "] * cols for _ in range(rows)]
        overlays: dict[tuple[int, int], str] = {}

        for bullet in bullets:
            cx, cy = self.to_cell(bullet.x, bullet.y, arena, cols, rows)
            grid[cy][cx] = "."

        for p in players:
            cx, cy = self.to_cell(p.x, p.y, arena, cols, rows)
            glyph = heading_glyph(p.angle)
            if p.player_id == local_player_id:
                overlays[(cx, cy)] = str(self.term.bold_green(glyph))
            elif p.audio_enabled:
                overlays[(cx, cy)] = str(self.term.bold_yellow(glyph))
            else:
                overlays[(cx, cy)] = str(self.term.red(glyph))

        output: list[str] = [str(self.term.home)]
        clear_eol = str(self.term.clear_eol)
        border = "+" + "-" * cols + "+"
        output.append(border + clear_eol)
        for cy, row in enumerate(grid):
            cells = [overlays.get((cx, cy), ch) for cx, ch in enumerate(row)]
            output.append("|" + "".join(cells) + "|" + clear_eol)
        output.append(border + clear_eol)

        local = next((p for p in players if p.player_id == local_player_id), None)
        if local is not None:
            output.append(
                f"{local.name} HP [{health_bar(local.health)}] {local.health}{clear_eol}"
            )
        else:
            output.append(clear_eol)
        output.append(
            " | ".join(f"{k}: {v}" for k, v in status_fields.items()) + clear_eol
        )
        output.append(
            (self.term.bold_red(message) if message else "") + clear_eol
        )
        output.append(
            "Controls: WASD/Arrows=Move, Space=Shoot, M=Mic, V=Mute, +/-=Volume, "
            f"R=Retry, Q=Quit{clear_eol}"
        )
        output.append(str(self.term.clear_eos))
        print("".join(output), end="", flush=True)

    def cleanup(self) -> None:
        """Reset terminal attributes."""
        print(self.term.normal + self.term.clear, end="")
