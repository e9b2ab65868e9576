import os
import random
import tempfile
import unittest

from slot_machine import (
    CLASSIC_PAYTABLE, DEFAULT_PAYLINES, FRUIT_SYMBOLS, FixedEntropy, InvalidDimensions,
    InvalidPayline, MultiplierTable, Payline, RandomEntropy, SlotMachine, check_win,
    evaluate, evaluate_classic, generate, load_paylines, passes_win_gate,
)

TOP_ROW = Payline.from_rows([0, 0, 0, 0, 0])


def grid_from_rows(rows):
    """Build a grid[reel][row] from a list of rows, each listing one symbol per reel."""
    return tuple(zip(*rows))


def single_row(symbols):
    return grid_from_rows([symbols])


class TestGenerate(unittest.TestCase):

    def test_shape_and_membership(self):
        entropy = RandomEntropy(random.Random(7))
        for reels, rows in [(3, 1), (5, 3), (1, 1), (6, 4)]:
            grid = generate(reels, rows, FRUIT_SYMBOLS, entropy)
            self.assertEqual(len(grid), reels)
            for reel in grid:
                self.assertEqual(len(reel), rows)
                for s in reel:
                    self.assertIn(s, FRUIT_SYMBOLS)

    def test_grid_is_immutable(self):
        grid = generate(5, 3, FRUIT_SYMBOLS)
        self.assertIsInstance(grid, tuple)
        self.assertIsInstance(grid[0], tuple)

    def test_fixed_entropy_is_deterministic(self):
        symbols = ['a', 'b', 'c']
        grid = generate(3, 2, symbols, FixedEntropy([0, 1, 2, 3, 4, 5]))
        self.assertEqual(grid, (('a', 'b'), ('c', 'a'), ('b', 'c')))

    def test_rejects_non_positive_dimensions(self):
        with self.assertRaises(InvalidDimensions):
            generate(0, 3, FRUIT_SYMBOLS)
        with self.assertRaises(InvalidDimensions):
            generate(5, -1, FRUIT_SYMBOLS)

    def test_rejects_empty_symbol_set(self):
        with self.assertRaises(InvalidDimensions):
            generate(5, 3, [])


class TestEvaluate(unittest.TestCase):

    def setUp(self):
        self.table = MultiplierTable(all_match=5, all_match_jackpot=10, four_in_row=2.5,
                                     three_in_row=1.5, two_in_row=0.25, jackpot_symbol='big_win')

    def test_three_in_row_example(self):
        grid = single_row(['cherry', 'cherry', 'cherry', 'grapes', 'grapes'])
        self.assertEqual(evaluate(grid, [TOP_ROW], MultiplierTable(three_in_row=1.5)), 1.5)

    def test_leftmost_run_picks_three_not_two_or_four(self):
        grid = single_row(['A', 'A', 'A', 'B', 'B'])
        self.assertEqual(evaluate(grid, [TOP_ROW], self.table), self.table.three_in_row)

    def test_four_in_row(self):
        grid = single_row(['A', 'A', 'A', 'A', 'B'])
        self.assertEqual(evaluate(grid, [TOP_ROW], self.table), self.table.four_in_row)

    def test_two_in_row(self):
        grid = single_row(['A', 'A', 'B', 'A', 'A'])
        self.assertEqual(evaluate(grid, [TOP_ROW], self.table), self.table.two_in_row)

    def test_run_not_starting_at_first_reel_scores_nothing(self):
        grid = single_row(['B', 'A', 'A', 'A', 'A'])
        self.assertEqual(evaluate(grid, [TOP_ROW], self.table), 0)

    def test_all_lines_one_symbol(self):
        grid = grid_from_rows([['cherry'] * 5] * 3)
        total = evaluate(grid, DEFAULT_PAYLINES, self.table)
        self.assertEqual(total, len(DEFAULT_PAYLINES) * self.table.all_match)

    def test_jackpot_on_all_five_lines(self):
        grid = grid_from_rows([['big_win'] * 5] * 3)
        self.assertEqual(evaluate(grid, DEFAULT_PAYLINES, self.table), 50)

    def test_jackpot_beats_regular_all_match(self):
        jackpot = evaluate(single_row(['big_win'] * 5), [TOP_ROW], self.table)
        regular = evaluate(single_row(['lemon'] * 5), [TOP_ROW], self.table)
        self.assertGreater(jackpot, regular)

    def test_jackpot_symbol_is_configurable(self):
        table = MultiplierTable(jackpot_symbol='lucky_seven')
        self.assertEqual(evaluate(single_row(['lucky_seven'] * 5), [TOP_ROW], table),
                         table.all_match_jackpot)
        self.assertEqual(evaluate(single_row(['big_win'] * 5), [TOP_ROW], table), table.all_match)

    def test_paylines_are_summed(self):
        grid = grid_from_rows([
            ['A', 'A', 'A', 'B', 'C'],
            ['D', 'D', 'E', 'F', 'G'],
            ['H', 'I', 'J', 'K', 'L'],
        ])
        total = evaluate(grid, DEFAULT_PAYLINES[:3], self.table)
        self.assertEqual(total, self.table.three_in_row + self.table.two_in_row)

    def test_v_shape_payline(self):
        grid = grid_from_rows([
            ['X', 'B', 'C', 'D', 'X'],
            ['E', 'X', 'G', 'X', 'I'],
            ['J', 'K', 'X', 'M', 'N'],
        ])
        total, details = check_win(grid, [DEFAULT_PAYLINES[3]], self.table)
        self.assertEqual(total, self.table.all_match)
        self.assertEqual(details, [{
            'line_index': 0, 'symbol': 'X', 'pattern': 'all_match', 'count': 5, 'multiplier': 5,
        }])

    def test_three_reel_grid_all_match(self):
        grid = single_row(['A', 'A', 'A'])
        self.assertEqual(evaluate(grid, [Payline.from_rows([0, 0, 0])], self.table), self.table.all_match)

    def test_out_of_range_reel(self):
        grid = grid_from_rows([['A'] * 5] * 3)
        payline = Payline(((0, 0), (1, 0), (2, 0), (3, 0), (5, 0)))
        with self.assertRaises(InvalidPayline):
            evaluate(grid, [payline], self.table)

    def test_out_of_range_row(self):
        grid = grid_from_rows([['A'] * 5] * 3)
        with self.assertRaises(InvalidPayline):
            evaluate(grid, [Payline.from_rows([0, 1, 3, 1, 0])], self.table)

    def test_payline_length_must_match_reels(self):
        grid = grid_from_rows([['A'] * 5] * 3)
        with self.assertRaises(InvalidPayline):
            evaluate(grid, [Payline.from_rows([0, 0, 0])], self.table)


class TestClassic(unittest.TestCase):

    def test_three_of_a_kind_pays_table_value(self):
        self.assertEqual(evaluate_classic(single_row(['ch', 'ch', 'ch']), CLASSIC_PAYTABLE), 50)

    def test_unknown_symbol_pays_one(self):
        self.assertEqual(evaluate_classic(single_row(['zz', 'zz', 'zz']), CLASSIC_PAYTABLE), 1)

    def test_partial_match_pays_nothing(self):
        self.assertEqual(evaluate_classic(single_row(['ch', 'ch', 's7']), CLASSIC_PAYTABLE), 0)

    def test_classic_machine_spin(self):
        machine = SlotMachine('classic')
        result = machine.spin(10, FixedEntropy([4]))  # s7 on every reel
        self.assertEqual(result.grid, (('s7',), ('s7',), ('s7',)))
        self.assertEqual(result.total_multiplier, 10)
        self.assertEqual(result.winnings, 100)


class TestSlotMachine(unittest.TestCase):

    def test_unknown_variant(self):
        with self.assertRaises(ValueError):
            SlotMachine('pachinko')

    def test_video_spin_jackpot(self):
        machine = SlotMachine('video')
        result = machine.spin(2, FixedEntropy([FRUIT_SYMBOLS.index('big_win')]))
        self.assertEqual(result.total_multiplier, 50)
        self.assertEqual(result.winnings, 100)
        self.assertEqual(len(result.details), 5)
        self.assertEqual(result.to_dict()['grid'][0], ['big_win'] * 3)

    def test_simulation_is_reproducible(self):
        machine = SlotMachine('video')
        first = machine.run_simulation(2000, total_bet=1.0, seed=11)
        second = machine.run_simulation(2000, total_bet=1.0, seed=11)
        self.assertEqual(first, second)
        self.assertEqual(first['total_spins'], 2000)
        self.assertEqual(first['total_bet'], 2000.0)
        self.assertGreater(first['hit_rate'], 0)
        self.assertLessEqual(first['ci_95'][0], first['rtp'])
        self.assertLessEqual(first['rtp'], first['ci_95'][1])
        self.assertEqual(len(first['balance_history']), 20)

    def test_simulation_rejects_zero_spins(self):
        with self.assertRaises(ValueError):
            SlotMachine('classic').run_simulation(0)


class TestWinGate(unittest.TestCase):

    def test_gate(self):
        self.assertTrue(passes_win_gate(30, FixedEntropy([0.1])))
        self.assertFalse(passes_win_gate(30, FixedEntropy([0.5])))
        self.assertFalse(passes_win_gate(0, FixedEntropy([0.0])))
        self.assertTrue(passes_win_gate(100, FixedEntropy([0.999])))


class TestLoadPaylines(unittest.TestCase):

    def test_csv_skips_bad_rows(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'WinLine.csv')
            with open(path, 'w', encoding='utf-8') as f:
                f.write('Id,Line\n1,"1,1,1,1,1"\n2,"0,1,2,1,0"\n3,"x,y"\n4,"0,0,0"\n')
            paylines = load_paylines(path, reels=5)
        self.assertEqual(paylines, [Payline.from_rows([1] * 5), Payline.from_rows([0, 1, 2, 1, 0])])

    def test_no_valid_lines(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'WinLine.csv')
            with open(path, 'w', encoding='utf-8') as f:
                f.write('Id,Line\n1,"bad"\n')
            with self.assertRaises(InvalidPayline):
                load_paylines(path)


if __name__ == '__main__':
    unittest.main()
