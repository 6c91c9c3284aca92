# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from adapters.environment.playwright_env import WindowLayout, calculate_window_layout


def test_two_windows_side_by_side() -> None:
    assert calculate_window_layout(0, 2) == WindowLayout(0, 0, 960, 800)
    assert calculate_window_layout(1, 2) == WindowLayout(960, 0, 960, 800)


def test_four_windows_in_grid() -> None:
    layouts = [calculate_window_layout(i, 4) for i in range(4)]

    assert [(layout.x, layout.y) for layout in layouts] == [(0, 0), (960, 0), (0, 540), (960, 540)]


@pytest.mark.parametrize("index, expected_x", [(3, 320), (4, 960)])
def test_five_windows_bottom_row_centered(index: int, expected_x: int) -> None:
    layout = calculate_window_layout(index, 5)

    assert (layout.x, layout.y) == (expected_x, 540)
