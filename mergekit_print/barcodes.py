"""
Barcode and QR symbol generation as filled rectangles.

Symbols are produced with reportlab's barcode widgets, then flattened into
plain (x, y, width, height) rectangles in a local y-up space whose lower left
corner is the origin. The renderer only ever sees those rectangles.
"""

# Standard Library
import dataclasses

# PIP3 modules
import reportlab.graphics.barcode
import reportlab.graphics.shapes

# local repo modules
import mergekit_print as mkp
import mergekit_print.errors


BarcodeError = mkp.errors.BarcodeError

# Symbology name -> reportlab widget name.
LINEAR_SYMBOLOGIES = {
	"CODE128": "Code128",
	"CODE39": "Standard39",
	"EAN13": "EAN13",
	"UPC-A": "UPCA",
}
SYMBOLOGY_ALIASES = {
	"CODE-128": "CODE128",
	"CODE-39": "CODE39",
	"EAN-13": "EAN13",
	"UPCA": "UPC-A",
	"UPC": "UPC-A",
}
QR_WIDGET = "QR"
QR_LEVELS = ("L", "M", "Q", "H")
DEFAULT_QR_LEVEL = "M"
QR_BORDER_MODULES = 4
CODE39_CHARS = set("0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ-. $/+%")
# Data digits without the check digit.
GTIN_DIGITS = {"EAN13": 12, "UPC-A": 11}

Rect = tuple[float, float, float, float]


@dataclasses.dataclass(frozen=True)
class BarcodeGlyph:
	symbology: str
	value: str
	rects: tuple[Rect, ...]
	width: float
	height: float


#============================================
def normalize_symbology(name: str | None) -> str | None:
	"""
	Normalize a linear symbology name.

	Args:
		name: Symbology name such as "code128" or "UPCA".

	Returns:
		Canonical name, or None when unsupported.
	"""
	if not name:
		return None
	key = name.strip().upper()
	key = SYMBOLOGY_ALIASES.get(key, key)
	if key in LINEAR_SYMBOLOGIES:
		return key
	return None


#============================================
def normalize_qr_level(level: str | None) -> str | None:
	"""
	Normalize a QR error-correction level.

	Args:
		level: Level letter, or None for the default.

	Returns:
		One of L/M/Q/H, or None when unsupported.
	"""
	if level is None or not str(level).strip():
		return DEFAULT_QR_LEVEL
	key = str(level).strip().upper()
	if key in QR_LEVELS:
		return key
	return None


#============================================
def gtin_check_digit(digits: str) -> str:
	"""
	Compute the GS1 mod-10 check digit for a digit string.
	"""
	total = 0
	for position, char in enumerate(reversed(digits)):
		weight = 3 if position % 2 == 0 else 1
		total += int(char) * weight
	return str((10 - total % 10) % 10)


#============================================
def prepare_linear_value(value: str, symbology: str) -> str:
	"""
	Reject values the encoder would silently pad, truncate, or drop.

	Args:
		value: Raw value.
		symbology: Canonical symbology name.

	Returns:
		Value to hand to the encoder.

	Raises:
		BarcodeError: Value cannot be encoded as given.
	"""
	if value == "":
		raise BarcodeError(f"{symbology}: empty value")

	if symbology == "CODE128":
		if any(ord(char) > 127 for char in value):
			raise BarcodeError(f"CODE128: non-ASCII characters in '{value}'")
		return value

	if symbology == "CODE39":
		upper = value.upper()
		bad = sorted({char for char in upper if char not in CODE39_CHARS})
		if bad:
			raise BarcodeError(f"CODE39: unsupported characters {''.join(bad)!r}")
		return upper

	data_digits = GTIN_DIGITS[symbology]
	if not value.isdigit() or not value.isascii():
		raise BarcodeError(f"{symbology}: value must be numeric, got '{value}'")
	if len(value) == data_digits:
		return value
	if len(value) == data_digits + 1:
		expected = gtin_check_digit(value[:-1])
		if value[-1] != expected:
			raise BarcodeError(
				f"{symbology}: check digit {value[-1]} does not match {expected}"
			)
		return value[:-1]
	raise BarcodeError(
		f"{symbology}: expected {data_digits} or {data_digits + 1} digits, got {len(value)}"
	)


#============================================
def _compose(outer: tuple, inner: tuple) -> tuple:
	a1, b1, c1, d1, e1, f1 = outer
	a2, b2, c2, d2, e2, f2 = inner
	return (
		a1 * a2 + c1 * b2,
		b1 * a2 + d1 * b2,
		a1 * c2 + c1 * d2,
		b1 * c2 + d1 * d2,
		a1 * e2 + c1 * f2 + e1,
		b1 * e2 + d1 * f2 + f1,
	)


#============================================
def _is_dark(color) -> bool:
	if color is None:
		return False
	return (color.red + color.green + color.blue) < 1.5


#============================================
def collect_rects(node, transform: tuple = (1, 0, 0, 1, 0, 0)) -> list[Rect]:
	"""
	Walk a reportlab drawing tree and collect dark filled rectangles.

	Args:
		node: Group or shape.
		transform: Accumulated affine transform.

	Returns:
		Rectangles as (x, y, width, height) after transformation.
	"""
	rects: list[Rect] = []
	if isinstance(node, reportlab.graphics.shapes.Group):
		local = _compose(transform, tuple(node.transform))
		for child in node.contents:
			rects.extend(collect_rects(child, local))
		return rects
	if isinstance(node, reportlab.graphics.shapes.Rect):
		if not _is_dark(node.fillColor) or node.width <= 0 or node.height <= 0:
			return rects
		a, b, c, d, e, f = transform
		x0 = a * node.x + c * node.y + e
		y0 = b * node.x + d * node.y + f
		x1 = a * (node.x + node.width) + c * (node.y + node.height) + e
		y1 = b * (node.x + node.width) + d * (node.y + node.height) + f
		rects.append((min(x0, x1), min(y0, y1), abs(x1 - x0), abs(y1 - y0)))
	return rects


#============================================
def _build_glyph(widget, symbology: str, value: str, bounds: tuple | None = None) -> BarcodeGlyph:
	try:
		group = widget.draw()
	except Exception as error:
		raise BarcodeError(f"{symbology}: cannot encode '{value}': {error}") from error
	if not getattr(widget, "valid", 1):
		raise BarcodeError(f"{symbology}: cannot encode '{value}'")

	rects = collect_rects(group)
	if not rects:
		raise BarcodeError(f"{symbology}: encoder produced no modules for '{value}'")

	if bounds is None:
		bounds = group.getBounds()
	if bounds is None:
		bounds = (
			min(r[0] for r in rects),
			min(r[1] for r in rects),
			max(r[0] + r[2] for r in rects),
			max(r[1] + r[3] for r in rects),
		)
	x0, y0, x1, y1 = bounds
	shifted = tuple((x - x0, y - y0, w, h) for x, y, w, h in rects)
	return BarcodeGlyph(
		symbology=symbology,
		value=value,
		rects=shifted,
		width=x1 - x0,
		height=y1 - y0,
	)


#============================================
def _widget_class(name: str):
	codes = reportlab.graphics.barcode.getCodes()
	widget_class = codes.get(name)
	if widget_class is None:
		raise BarcodeError(f"barcode widget {name} is not available")
	return widget_class


#============================================
def generate_barcode(value: str, symbology: str) -> BarcodeGlyph:
	"""
	Generate a linear barcode.

	Args:
		value: Value to encode.
		symbology: CODE128, CODE39, EAN13 or UPC-A.

	Returns:
		BarcodeGlyph.

	Raises:
		BarcodeError: Unsupported symbology or unencodable value.
	"""
	canonical = normalize_symbology(symbology)
	if canonical is None:
		raise BarcodeError(f"unsupported symbology '{symbology}'")
	encoded = prepare_linear_value(value, canonical)
	widget = _widget_class(LINEAR_SYMBOLOGIES[canonical])(value=encoded)
	widget.humanReadable = 0
	return _build_glyph(widget, canonical, value)


#============================================
def generate_qr(value: str, level: str | None = DEFAULT_QR_LEVEL) -> BarcodeGlyph:
	"""
	Generate a QR code.

	Args:
		value: Value to encode.
		level: Error-correction level L/M/Q/H.

	Returns:
		BarcodeGlyph including the quiet-zone border in its bounds.
	"""
	canonical = normalize_qr_level(level)
	if canonical is None:
		raise BarcodeError(f"unsupported QR error correction level '{level}'")
	if value == "":
		raise BarcodeError("QR: empty value")
	widget = _widget_class(QR_WIDGET)(value=value)
	widget.barLevel = canonical
	widget.barBorder = QR_BORDER_MODULES
	# quiet zone is part of the widget box but holds no modules
	return _build_glyph(widget, "QR", value, (0.0, 0.0, widget.barWidth, widget.barHeight))


#============================================
def fit_glyph(glyph: BarcodeGlyph, width: float, height: float) -> tuple[float, float, float]:
	"""
	Fit a glyph inside a target box preserving aspect ratio.

	Args:
		glyph: Generated glyph.
		width: Target width.
		height: Target height.

	Returns:
		(scale, offset_x, offset_y) that centers the glyph in the box.
	"""
	if glyph.width <= 0 or glyph.height <= 0:
		return (1.0, 0.0, 0.0)
	scale = min(width / glyph.width, height / glyph.height)
	offset_x = (width - glyph.width * scale) / 2.0
	offset_y = (height - glyph.height * scale) / 2.0
	return (scale, offset_x, offset_y)
