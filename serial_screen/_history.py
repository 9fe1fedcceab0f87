HISTORY_LIMIT = 500


class CommandHistory:
    """Recall buffer of sent commands, navigated like a shell's up/down keys.

    'cursor' is None unless navigation is active; 'draft' holds the edit text
    from before navigation began, restored when moving down past the newest.
    """

    def __init__(self, limit: int = HISTORY_LIMIT):
        self.limit = limit
        self.entries: list[str] = []
        self.cursor: int | None = None
        self.draft = ""

    def __len__(self) -> int:
        return len(self.entries)

    def __repr__(self) -> str:
        return f"CommandHistory({len(self.entries)}/{self.limit})"

    def record(self, command: str) -> None:
        if not command:
            return
        if not self.entries or self.entries[-1] != command:
            self.entries.append(command)
        if len(self.entries) > self.limit:
            del self.entries[: len(self.entries) - self.limit]
        self.cursor = None
        self.draft = ""

    def up(self, current: str) -> str:
        """Returns the edit text after moving one entry older"""

        if not self.entries:
            return current
        if self.cursor is None:
            self.draft = current
            self.cursor = len(self.entries) - 1
        elif self.cursor > 0:
            self.cursor -= 1
        return self.entries[self.cursor]

    def down(self, current: str) -> str:
        """Returns the edit text after moving one entry newer"""

        if self.cursor is None or not self.entries:
            return current
        if self.cursor < len(self.entries) - 1:
            self.cursor += 1
            return self.entries[self.cursor]

        self.cursor = None
        return self.draft
