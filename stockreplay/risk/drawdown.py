"""Drawdown tracking — pure math, no I/O.

Tracks peak equity, the current drawdown, and the deepest drawdown seen
while walking an equity curve forward.
"""


class DrawdownTracker:
    """Tracks equity peaks and computes drawdown metrics.

    Drawdowns are fractions of the running peak (``0.1`` = 10 %).

    Args:
        initial_equity: Starting account equity.
    """

    def __init__(self, initial_equity: float) -> None:
        if initial_equity <= 0:
            raise ValueError(
                f"initial_equity must be positive, got {initial_equity}"
            )
        self._peak_equity: float = initial_equity
        self._current_equity: float = initial_equity
        self._max_drawdown: float = 0.0

    # ── Mutation ─────────────────────────────────────────────────────────

    def update(self, equity: float) -> None:
        """Update with the latest equity value.

        If *equity* exceeds the current peak, the peak is raised.
        """
        self._current_equity = equity
        if equity > self._peak_equity:
            self._peak_equity = equity
        if self.drawdown > self._max_drawdown:
            self._max_drawdown = self.drawdown

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def peak_equity(self) -> float:
        """Highest equity recorded."""
        return self._peak_equity

    @property
    def current_equity(self) -> float:
        """Most recently recorded equity."""
        return self._current_equity

    @property
    def drawdown(self) -> float:
        """Current drawdown as a fraction of peak equity."""
        if self._peak_equity == 0:
            return 0.0
        return (self._peak_equity - self._current_equity) / self._peak_equity

    @property
    def max_drawdown(self) -> float:
        """Largest peak-to-trough fraction seen so far."""
        return self._max_drawdown
