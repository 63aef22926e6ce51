"""
Imposition layout: how many items tile onto a sheet and where each one sits.

All values are millimeters with a top-left origin. The renderer owns the
conversion to PDF points and the axis flip.
"""

# Standard Library
import dataclasses
import math

# local repo modules
import mergekit_print as mkp
import mergekit_print.config
import mergekit_print.errors


LayoutConfig = mkp.config.LayoutConfig
LayoutError = mkp.errors.LayoutError

DEFAULT_SHEET_WIDTH = mkp.config.DEFAULT_SHEET_WIDTH
DEFAULT_SHEET_HEIGHT = mkp.config.DEFAULT_SHEET_HEIGHT
DEFAULT_OUTER_MARGIN = mkp.config.DEFAULT_OUTER_MARGIN
SHEET_SIZES = mkp.config.SHEET_SIZES
LABEL_PRESETS = mkp.config.LABEL_PRESETS

# Float slack tolerated when checking that a grid fits.
EPSILON = 1e-9


@dataclasses.dataclass(frozen=True)
class Placement:
	sheet: int
	slot: int
	x: float
	y: float


#============================================
def _grid_axis(usable: float, item: float, sheet: float, axis: str) -> tuple[int, float, float]:
	"""
	Compute count, leading margin and gap along one axis.

	Args:
		usable: Usable length inside the outer margins.
		item: Item length.
		sheet: Full sheet length.
		axis: Axis name for error messages.

	Returns:
		(count, margin, gap).
	"""
	if item > sheet + EPSILON:
		raise LayoutError(f"item {axis} {item:.2f} mm exceeds sheet {axis} {sheet:.2f} mm")
	count = max(1, math.floor((usable + EPSILON) / item))
	slack = usable - count * item
	if count > 1:
		return count, DEFAULT_OUTER_MARGIN, slack / (count - 1)
	# single column or row: center it, possibly eating into the outer margin
	return count, (sheet - item) / 2.0, 0.0


#============================================
def calculate_layout(
	item_width: float,
	item_height: float,
	sheet_width: float = DEFAULT_SHEET_WIDTH,
	sheet_height: float = DEFAULT_SHEET_HEIGHT,
	items_per_sheet: int | None = None,
) -> LayoutConfig:
	"""
	Compute the tiling grid for one sheet.

	Args:
		item_width: Item width in mm.
		item_height: Item height in mm.
		sheet_width: Sheet width in mm.
		sheet_height: Sheet height in mm.
		items_per_sheet: Optional override, at most columns * rows.

	Returns:
		LayoutConfig.

	Raises:
		LayoutError: Non-positive sizes, an item larger than the sheet, or an
			override above the grid capacity.
	"""
	if item_width <= 0 or item_height <= 0:
		raise LayoutError("item width and height must be positive")
	if sheet_width <= 0 or sheet_height <= 0:
		raise LayoutError("sheet width and height must be positive")

	usable_width = sheet_width - 2 * DEFAULT_OUTER_MARGIN
	usable_height = sheet_height - 2 * DEFAULT_OUTER_MARGIN
	columns, margin_left, gap_x = _grid_axis(usable_width, item_width, sheet_width, "width")
	rows, margin_top, gap_y = _grid_axis(usable_height, item_height, sheet_height, "height")

	capacity = columns * rows
	if items_per_sheet is None:
		items_per_sheet = capacity
	elif items_per_sheet < 1:
		raise LayoutError("items per sheet must be at least 1")
	elif items_per_sheet > capacity:
		raise LayoutError(
			f"{items_per_sheet} items per sheet exceeds the {columns}x{rows} grid capacity of {capacity}"
		)

	return LayoutConfig(
		sheet_width=sheet_width,
		sheet_height=sheet_height,
		item_width=item_width,
		item_height=item_height,
		columns=columns,
		rows=rows,
		margin_left=margin_left,
		margin_top=margin_top,
		gap_x=gap_x,
		gap_y=gap_y,
		items_per_sheet=items_per_sheet,
	)


#============================================
def validate_layout(layout: LayoutConfig) -> LayoutConfig:
	"""
	Check an explicitly supplied layout against its own sheet.

	Args:
		layout: Layout to check.

	Returns:
		The same layout.
	"""
	if layout.columns < 1 or layout.rows < 1:
		raise LayoutError("layout needs at least one column and one row")
	if layout.item_width <= 0 or layout.item_height <= 0:
		raise LayoutError("item width and height must be positive")
	if layout.items_per_sheet < 1 or layout.items_per_sheet > layout.columns * layout.rows:
		raise LayoutError(
			f"{layout.items_per_sheet} items per sheet does not fit a "
			f"{layout.columns}x{layout.rows} grid"
		)
	right = layout.margin_left + layout.columns * layout.item_width + (layout.columns - 1) * layout.gap_x
	bottom = layout.margin_top + layout.rows * layout.item_height + (layout.rows - 1) * layout.gap_y
	if right > layout.sheet_width + EPSILON or bottom > layout.sheet_height + EPSILON:
		raise LayoutError("layout grid extends past the sheet edge")
	return layout


#============================================
def resolve_sheet_size(name: str | None) -> tuple[float, float]:
	"""
	Look up a named sheet size.

	Args:
		name: Sheet name such as "letter" or "a4", or None for the default.

	Returns:
		(width, height) in mm.
	"""
	if not name:
		return (DEFAULT_SHEET_WIDTH, DEFAULT_SHEET_HEIGHT)
	size = SHEET_SIZES.get(name.strip().lower())
	if size is None:
		raise LayoutError(f"unknown sheet size '{name}'")
	return size


#============================================
def resolve_preset(name: str) -> tuple[float, float]:
	"""
	Look up a label stock preset.

	Args:
		name: Preset name such as "avery-5160" or "5160".

	Returns:
		(item_width, item_height) in mm.
	"""
	key = name.strip().lower().replace(" ", "-")
	if key.isdigit():
		key = f"avery-{key}"
	size = LABEL_PRESETS.get(key)
	if size is None:
		raise LayoutError(f"unknown label preset '{name}'")
	return size


#============================================
def layout_from_mapping(data: dict | None, item_size: tuple[float, float] | None = None) -> LayoutConfig:
	"""
	Build a layout from a request mapping.

	A mapping with explicit columns and rows is taken as a complete grid.
	Otherwise the grid is calculated from the item size, which comes from
	itemWidth/itemHeight, a preset name, or the item_size fallback.

	Args:
		data: Layout mapping in camelCase or snake_case.
		item_size: Fallback item size, usually the design page size.

	Returns:
		LayoutConfig.
	"""
	if data is None:
		raise LayoutError("layout configuration is required")
	if not isinstance(data, dict):
		raise LayoutError("layout must be an object")

	def read(*names):
		for name in names:
			if data.get(name) is not None:
				return data[name]
		return None

	def number(*names) -> float | None:
		value = read(*names)
		if value is None:
			return None
		try:
			return float(value)
		except (TypeError, ValueError) as error:
			raise LayoutError(f"layout.{names[0]} must be a number") from error

	sheet_width, sheet_height = resolve_sheet_size(read("sheet", "sheetSize"))
	sheet_width = number("sheetWidth", "sheet_width", "sheetWidthMm") or sheet_width
	sheet_height = number("sheetHeight", "sheet_height", "sheetHeightMm") or sheet_height

	item_width = number("itemWidth", "item_width", "labelWidthMm", "labelWidth")
	item_height = number("itemHeight", "item_height", "labelHeightMm", "labelHeight")
	preset = read("preset")
	if (item_width is None or item_height is None) and preset:
		item_width, item_height = resolve_preset(str(preset))
	if (item_width is None or item_height is None) and item_size is not None:
		item_width, item_height = item_size
	if item_width is None or item_height is None:
		raise LayoutError("layout needs an item size or a preset")

	raw_items = number("itemsPerSheet", "items_per_sheet", "labelsPerSheet")
	items_per_sheet = int(raw_items) if raw_items is not None else None

	columns = number("columns")
	rows = number("rows")
	if columns is None or rows is None:
		return calculate_layout(item_width, item_height, sheet_width, sheet_height, items_per_sheet)

	columns = int(columns)
	rows = int(rows)
	layout = LayoutConfig(
		sheet_width=sheet_width,
		sheet_height=sheet_height,
		item_width=item_width,
		item_height=item_height,
		columns=columns,
		rows=rows,
		margin_left=number("marginLeft", "margin_left", "marginLeftMm") or 0.0,
		margin_top=number("marginTop", "margin_top", "marginTopMm") or 0.0,
		gap_x=number("gapX", "gap_x", "gapXMm") or 0.0,
		gap_y=number("gapY", "gap_y", "gapYMm") or 0.0,
		items_per_sheet=items_per_sheet if items_per_sheet is not None else columns * rows,
	)
	return validate_layout(layout)


#============================================
def instance_position(index: int, layout: LayoutConfig) -> tuple[float, float]:
	"""
	Top-left position of an item slot on its sheet.

	Args:
		index: Zero-based instance index, row-major.
		layout: Layout configuration.

	Returns:
		(x, y) in mm from the sheet's top-left corner.
	"""
	slot = index % layout.items_per_sheet
	col = slot % layout.columns
	row = slot // layout.columns
	x = layout.margin_left + col * (layout.item_width + layout.gap_x)
	y = layout.margin_top + row * (layout.item_height + layout.gap_y)
	return (x, y)


#============================================
def absolute_position(index: int, layout: LayoutConfig) -> Placement:
	"""
	Locate an instance across a run of sheets.

	Args:
		index: Zero-based instance index.
		layout: Layout configuration.

	Returns:
		Placement with sheet index, slot and top-left position.
	"""
	if index < 0:
		raise LayoutError("instance index must be non-negative")
	sheet, slot = divmod(index, layout.items_per_sheet)
	x, y = instance_position(slot, layout)
	return Placement(sheet=sheet, slot=slot, x=x, y=y)


#============================================
def total_sheets(count: int, layout: LayoutConfig) -> int:
	"""
	Number of sheets needed for count items.
	"""
	if count <= 0:
		return 0
	return math.ceil(count / layout.items_per_sheet)


#============================================
def paginate(items: list, layout: LayoutConfig) -> list[list]:
	"""
	Split items into per-sheet groups.

	Args:
		items: Items in output order.
		layout: Layout configuration.

	Returns:
		List of per-sheet item lists.
	"""
	size = layout.items_per_sheet
	return [items[start:start + size] for start in range(0, len(items), size)]
