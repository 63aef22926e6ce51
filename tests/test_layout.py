import itertools

import pytest

import mergekit_print.config
import mergekit_print.errors
import mergekit_print.layout

LayoutError = mergekit_print.errors.LayoutError
MARGIN = mergekit_print.config.DEFAULT_OUTER_MARGIN
TOLERANCE = 1e-6

ITEM_SIZES = [
	(25.0, 10.0),
	(44.45, 12.7),
	(66.68, 25.4),
	(63.5, 63.5),
	(101.6, 50.8),
	(89.0, 51.0),
	(190.5, 254.0),
	(150.0, 100.0),
]
SHEETS = [
	(215.9, 279.4),
	(210.0, 297.0),
	(297.0, 420.0),
]


#============================================
def _slot_rect(layout, index: int) -> tuple[float, float, float, float]:
	"""
	Slot rectangle (x0, y0, x1, y1) in top-left mm.
	"""
	x, y = mergekit_print.layout.instance_position(index, layout)
	return (x, y, x + layout.item_width, y + layout.item_height)


#============================================
def test_grid_fits_usable_area() -> None:
	"""
	Columns and rows are at least 1 and the grid fits the usable area.
	"""
	for (item_w, item_h), (sheet_w, sheet_h) in itertools.product(ITEM_SIZES, SHEETS):
		usable_w = sheet_w - 2 * MARGIN
		usable_h = sheet_h - 2 * MARGIN
		if item_w > usable_w or item_h > usable_h:
			continue
		layout = mergekit_print.layout.calculate_layout(item_w, item_h, sheet_w, sheet_h)
		assert layout.columns >= 1
		assert layout.rows >= 1
		assert layout.columns * item_w <= usable_w + TOLERANCE
		assert layout.rows * item_h <= usable_h + TOLERANCE
		assert layout.items_per_sheet == layout.columns * layout.rows
		last = _slot_rect(layout, layout.items_per_sheet - 1)
		assert last[2] <= sheet_w - MARGIN + TOLERANCE
		assert last[3] <= sheet_h - MARGIN + TOLERANCE


#============================================
def test_positions_tile_without_overlap() -> None:
	"""
	Slots never overlap and advance row-major.
	"""
	for item_w, item_h in ITEM_SIZES[:6]:
		layout = mergekit_print.layout.calculate_layout(item_w, item_h)
		rects = [_slot_rect(layout, index) for index in range(layout.columns * layout.rows)]
		for first, second in itertools.combinations(rects, 2):
			overlap_w = min(first[2], second[2]) - max(first[0], second[0])
			overlap_h = min(first[3], second[3]) - max(first[1], second[1])
			assert overlap_w <= TOLERANCE or overlap_h <= TOLERANCE
		for index in range(1, len(rects)):
			previous = rects[index - 1]
			current = rects[index]
			if index % layout.columns == 0:
				assert current[1] > previous[1]
				assert current[0] == pytest.approx(layout.margin_left)
			else:
				assert current[1] == pytest.approx(previous[1])
				assert current[0] > previous[0]


#============================================
def test_avery_5160_grid() -> None:
	layout = mergekit_print.layout.calculate_layout(66.68, 25.4)
	assert layout.columns == 2
	assert layout.rows == 10
	assert layout.margin_left == pytest.approx(MARGIN)
	assert layout.gap_x == pytest.approx(190.5 - 2 * 66.68)
	assert layout.gap_y == pytest.approx(0.0, abs=TOLERANCE)


#============================================
def test_single_column_is_centered() -> None:
	layout = mergekit_print.layout.calculate_layout(150.0, 100.0)
	assert layout.columns == 1
	assert layout.gap_x == 0.0
	assert layout.margin_left == pytest.approx((215.9 - 150.0) / 2.0)


#============================================
def test_items_per_sheet_override() -> None:
	layout = mergekit_print.layout.calculate_layout(66.68, 25.4, items_per_sheet=12)
	assert layout.items_per_sheet == 12
	with pytest.raises(LayoutError):
		mergekit_print.layout.calculate_layout(66.68, 25.4, items_per_sheet=21)
	with pytest.raises(LayoutError):
		mergekit_print.layout.calculate_layout(66.68, 25.4, items_per_sheet=0)


#============================================
def test_invalid_sizes_rejected() -> None:
	with pytest.raises(LayoutError):
		mergekit_print.layout.calculate_layout(0.0, 10.0)
	with pytest.raises(LayoutError):
		mergekit_print.layout.calculate_layout(300.0, 10.0)


#============================================
def test_pagination_helpers() -> None:
	layout = mergekit_print.layout.calculate_layout(66.68, 25.4)
	assert mergekit_print.layout.total_sheets(0, layout) == 0
	assert mergekit_print.layout.total_sheets(20, layout) == 1
	assert mergekit_print.layout.total_sheets(21, layout) == 2
	sheets = mergekit_print.layout.paginate(list(range(45)), layout)
	assert [len(sheet) for sheet in sheets] == [20, 20, 5]
	placement = mergekit_print.layout.absolute_position(23, layout)
	assert placement.sheet == 1
	assert placement.slot == 3
	assert (placement.x, placement.y) == mergekit_print.layout.instance_position(3, layout)


#============================================
def test_layout_from_mapping_preset_and_explicit_grid() -> None:
	layout = mergekit_print.layout.layout_from_mapping({"preset": "5160"})
	assert (layout.item_width, layout.item_height) == (66.68, 25.4)
	assert layout.items_per_sheet == 20

	explicit = mergekit_print.layout.layout_from_mapping({
		"labelWidthMm": 66.68,
		"labelHeightMm": 25.4,
		"columns": 3,
		"rows": 10,
		"marginLeftMm": 4.76,
		"marginTopMm": 12.7,
		"gapXMm": 3.05,
		"gapYMm": 0.0,
	})
	assert explicit.columns == 3
	assert explicit.items_per_sheet == 30

	with pytest.raises(LayoutError):
		mergekit_print.layout.layout_from_mapping({
			"itemWidth": 100,
			"itemHeight": 25,
			"columns": 3,
			"rows": 1,
		})
	with pytest.raises(LayoutError):
		mergekit_print.layout.layout_from_mapping(None)


#============================================
def test_layout_from_mapping_uses_design_size() -> None:
	layout = mergekit_print.layout.layout_from_mapping({"sheet": "a4"}, (100.0, 50.0))
	assert layout.sheet_width == 210.0
	assert layout.columns == 1
	assert layout.rows == 5
