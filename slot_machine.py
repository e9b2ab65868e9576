import logging
import random
from collections import defaultdict
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class SlotMachineError(ValueError):
    pass


class InvalidDimensions(SlotMachineError):
    pass


class InvalidPayline(SlotMachineError):
    pass


class RandomEntropy:
    """Entropy provider backed by a random.Random instance."""

    def __init__(self, rng=None):
        self.rng = rng if rng is not None else random.SystemRandom()

    def randbelow(self, n):
        return self.rng.randrange(n)

    def random(self):
        return self.rng.random()


class FixedEntropy:
    """Replays a fixed sequence of values, wrapping around at the end.

    Integers are used as-is by randbelow (modulo n), floats are returned
    by random(). Useful for forcing a particular grid in tests.
    """

    def __init__(self, values):
        if not values:
            raise ValueError("FixedEntropy needs at least one value")
        self.values = list(values)
        self.pos = 0

    def _next(self):
        value = self.values[self.pos % len(self.values)]
        self.pos += 1
        return value

    def randbelow(self, n):
        return int(self._next()) % n

    def random(self):
        return float(self._next())


@dataclass(frozen=True)
class Payline:
    coords: tuple

    @classmethod
    def from_rows(cls, rows):
        # [0, 1, 2, 1, 0] -> ((0, 0), (1, 1), (2, 2), (3, 1), (4, 0))
        return cls(tuple((reel, int(row)) for reel, row in enumerate(rows)))

    @classmethod
    def parse(cls, text):
        # "1,1,1,1,1" -> middle row
        return cls.from_rows(int(x.strip()) for x in str(text).split(','))

    def __len__(self):
        return len(self.coords)


@dataclass(frozen=True)
class MultiplierTable:
    all_match: float = 5.0
    all_match_jackpot: float = 10.0
    four_in_row: float = 2.5
    three_in_row: float = 1.5
    two_in_row: float = 0.25
    jackpot_symbol: str = 'big_win'


@dataclass
class SpinResult:
    grid: tuple
    bet: float
    total_multiplier: float
    details: list = field(default_factory=list)

    @property
    def winnings(self):
        return self.bet * self.total_multiplier

    def to_dict(self):
        return {
            'grid': [list(reel) for reel in self.grid],
            'bet': self.bet,
            'total_multiplier': self.total_multiplier,
            'winnings': self.winnings,
            'details': self.details,
        }


def generate(reels, rows_per_reel, symbol_set, entropy=None):
    """Sample a reels x rows_per_reel grid, indexed grid[reel][row]."""
    if reels <= 0 or rows_per_reel <= 0:
        raise InvalidDimensions(f"Grid must be at least 1x1, got {reels}x{rows_per_reel}")
    symbols = list(symbol_set)
    if not symbols:
        raise InvalidDimensions("Symbol set is empty")
    if entropy is None:
        entropy = RandomEntropy()

    return tuple(
        tuple(symbols[entropy.randbelow(len(symbols))] for _ in range(rows_per_reel))
        for _ in range(reels)
    )


def _line_symbols(grid, payline, line_idx):
    num_reels = len(grid)
    if len(payline) != num_reels:
        raise InvalidPayline(
            f"Payline {line_idx} has {len(payline)} positions, grid has {num_reels} reels")

    line_symbols = []
    for reel, row in payline.coords:
        if not (0 <= reel < num_reels and 0 <= row < len(grid[reel])):
            raise InvalidPayline(f"Payline {line_idx} references ({reel}, {row}) outside the grid")
        line_symbols.append(grid[reel][row])
    return line_symbols


def _leading_run(line_symbols):
    first = line_symbols[0]
    count = 0
    for s in line_symbols:
        if s != first:
            break
        count += 1
    return count


def check_win(grid, paylines, table):
    total_multiplier = 0.0
    win_details = []  # List of {line_index, symbol, pattern, count, multiplier}

    for line_idx, payline in enumerate(paylines):
        line_symbols = _line_symbols(grid, payline, line_idx)
        if not line_symbols:
            continue

        match_symbol = line_symbols[0]
        count = _leading_run(line_symbols)

        # Matches only count from the leftmost reel outward: B A A A A pays nothing
        if count == len(line_symbols):
            pattern = 'all_match'
            if match_symbol == table.jackpot_symbol:
                multiplier = table.all_match_jackpot
            else:
                multiplier = table.all_match
        elif count >= 4:
            pattern, multiplier = 'four_in_row', table.four_in_row
        elif count == 3:
            pattern, multiplier = 'three_in_row', table.three_in_row
        elif count == 2:
            pattern, multiplier = 'two_in_row', table.two_in_row
        else:
            continue

        if multiplier > 0:
            total_multiplier += multiplier
            win_details.append({
                'line_index': line_idx,
                'symbol': match_symbol,
                'pattern': pattern,
                'count': count,
                'multiplier': multiplier,
            })

    return total_multiplier, win_details


def evaluate(grid, paylines, table):
    """Total multiplier summed over every payline."""
    total_multiplier, _ = check_win(grid, paylines, table)
    return total_multiplier


def evaluate_classic(grid, paytable):
    """Exact-match scoring for the single-row classic machine."""
    line_symbols = [reel[0] for reel in grid]
    if not line_symbols:
        return 0.0
    if all(s == line_symbols[0] for s in line_symbols):
        return float(paytable.get(line_symbols[0], 1))
    return 0.0


def passes_win_gate(win_percent, entropy=None):
    if entropy is None:
        entropy = RandomEntropy()
    return entropy.random() * 100 < win_percent


def load_paylines(path, reels=5):
    """Read a WinLine sheet (Id, Line) into paylines, skipping bad rows."""
    if str(path).lower().endswith('.csv'):
        df_lines = pd.read_csv(path)
    else:
        # Skip first row (header description) and use second row as header
        df_lines = pd.read_excel(path, header=1)

    paylines = []
    for _, row in df_lines.iterrows():
        try:
            payline = Payline.parse(row['Line'])
        except (ValueError, KeyError):
            continue
        if len(payline) == reels:
            paylines.append(payline)

    if not paylines:
        raise InvalidPayline(f"No valid win lines found in {path}")
    return paylines


FRUIT_SYMBOLS = (
    "apple", "apricot", "banana", "big_win", "cherry", "grapes", "lemon",
    "lucky_seven", "orange", "pear", "strawberry", "watermelon",
)

DEFAULT_PAYLINES = (
    Payline.from_rows([0, 0, 0, 0, 0]),  # top
    Payline.from_rows([1, 1, 1, 1, 1]),  # middle
    Payline.from_rows([2, 2, 2, 2, 2]),  # bottom
    Payline.from_rows([0, 1, 2, 1, 0]),  # V
    Payline.from_rows([2, 1, 0, 1, 2]),  # inverted V
)

CLASSIC_SYMBOLS = ("b1", "b2", "b3", "ch", "s7", "sc")

CLASSIC_PAYTABLE = {
    "ch": 50,
    "s7": 10,
    "sc": 5,
    "b3": 4,
    "b2": 3,
    "b1": 2,
}

VARIANTS = ('video', 'classic')


class SlotMachine:
    def __init__(self, variant='video', paylines=None, table=None, paytable=None, symbols=None):
        if variant not in VARIANTS:
            raise ValueError(f"Unknown variant: {variant}")
        self.variant = variant

        if variant == 'video':
            self.num_reels = 5
            self.num_rows = 3
            self.symbols = tuple(symbols or FRUIT_SYMBOLS)
            self.paylines = tuple(paylines or DEFAULT_PAYLINES)
            self.table = table or MultiplierTable()
            self.paytable = None
        else:
            self.num_reels = 3
            self.num_rows = 1
            self.symbols = tuple(symbols or CLASSIC_SYMBOLS)
            self.paylines = (Payline.from_rows([0, 0, 0]),)
            self.table = None
            self.paytable = dict(paytable or CLASSIC_PAYTABLE)

    def score(self, grid):
        if self.variant == 'classic':
            multiplier = evaluate_classic(grid, self.paytable)
            details = []
            if multiplier > 0:
                details.append({
                    'line_index': 0,
                    'symbol': grid[0][0],
                    'pattern': 'all_match',
                    'count': self.num_reels,
                    'multiplier': multiplier,
                })
            return multiplier, details
        return check_win(grid, self.paylines, self.table)

    def spin(self, bet, entropy=None):
        grid = generate(self.num_reels, self.num_rows, self.symbols, entropy)
        total_multiplier, details = self.score(grid)
        return SpinResult(grid=grid, bet=bet, total_multiplier=total_multiplier, details=details)

    def run_simulation(self, num_spins=100000, total_bet=1.0, seed=None):
        if num_spins <= 0:
            raise ValueError("num_spins must be positive")
        entropy = RandomEntropy(random.Random(seed))

        total_win_amount = 0.0
        pattern_hits = defaultdict(int)
        win_dist = defaultdict(int)
        hits_count = 0
        max_win = 0.0

        multipliers = np.zeros(num_spins)
        balance_history = []
        current_balance = 0.0

        for i in range(num_spins):
            result = self.spin(total_bet, entropy)
            current_spin_win = result.winnings
            multipliers[i] = result.total_multiplier

            total_win_amount += current_spin_win
            current_balance = current_balance - total_bet + current_spin_win
            # Record balance every 100 spins to save data size for chart
            if i % 100 == 0:
                balance_history.append(current_balance)

            if current_spin_win > 0:
                hits_count += 1
                max_win = max(max_win, current_spin_win)

                win_ratio = result.total_multiplier
                if win_ratio < 1: bucket = "< 1x Bet"
                elif win_ratio < 5: bucket = "1x - 5x Bet"
                elif win_ratio < 10: bucket = "5x - 10x Bet"
                elif win_ratio < 20: bucket = "10x - 20x Bet"
                elif win_ratio < 50: bucket = "20x - 50x Bet"
                elif win_ratio < 100: bucket = "50x - 100x Bet"
                else: bucket = "100x+ Bet"
                win_dist[bucket] += 1

                for d in result.details:
                    pattern_hits[d['pattern']] += 1

        rtp = total_win_amount / (num_spins * total_bet)
        hit_rate = hits_count / num_spins
        volatility_index = np.std(multipliers)
        margin_of_error = 1.96 * (volatility_index / np.sqrt(num_spins))

        logger.info("Simulated %d %s spins: RTP %.2f%%, hit rate %.2f%%",
                    num_spins, self.variant, rtp * 100, hit_rate * 100)

        return {
            'variant': self.variant,
            'rtp': float(rtp),
            'total_win': float(total_win_amount),
            'total_bet': float(num_spins * total_bet),
            'total_spins': int(num_spins),
            'hit_rate': float(hit_rate),
            'max_win': float(max_win),
            'volatility': float(volatility_index),
            'ci_95': (float(rtp - margin_of_error), float(rtp + margin_of_error)),
            'pattern_hits': dict(pattern_hits),
            'win_distribution': dict(win_dist),
            'balance_history': [float(b) for b in balance_history],
        }
