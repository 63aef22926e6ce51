"""
Font resolution, word wrapping, text measurement and auto-fit sizing.
"""

# Standard Library
import dataclasses
import logging
import math
import pathlib
import threading

# PIP3 modules
import reportlab.pdfbase.pdfmetrics
import reportlab.pdfbase.ttfonts

# local repo modules
import mergekit_print as mkp
import mergekit_print.config


DEFAULT_LINE_HEIGHT = mkp.config.DEFAULT_LINE_HEIGHT
FIT_STEPS_PER_POINT = mkp.config.FIT_STEPS_PER_POINT

logger = logging.getLogger(__name__)

WEIGHT_NAMES = {
	"thin": 100,
	"light": 300,
	"normal": 400,
	"regular": 400,
	"medium": 500,
	"semibold": 600,
	"bold": 700,
	"extrabold": 800,
	"black": 900,
}
BOLD_WEIGHT = 600

# Base-14 families: (regular, bold, italic, bold italic).
BASE_FAMILIES = {
	"helvetica": ("Helvetica", "Helvetica-Bold", "Helvetica-Oblique", "Helvetica-BoldOblique"),
	"times": ("Times-Roman", "Times-Bold", "Times-Italic", "Times-BoldItalic"),
	"courier": ("Courier", "Courier-Bold", "Courier-Oblique", "Courier-BoldOblique"),
}
FAMILY_SUBSTITUTES = {
	"arial": "helvetica",
	"helvetica neue": "helvetica",
	"sans-serif": "helvetica",
	"roboto": "helvetica",
	"open sans": "helvetica",
	"lato": "helvetica",
	"montserrat": "helvetica",
	"verdana": "helvetica",
	"tahoma": "helvetica",
	"trebuchet ms": "helvetica",
	"inter": "helvetica",
	"serif": "times",
	"times new roman": "times",
	"times-roman": "times",
	"georgia": "times",
	"merriweather": "times",
	"playfair display": "times",
	"garamond": "times",
	"monospace": "courier",
	"courier new": "courier",
	"roboto mono": "courier",
	"consolas": "courier",
}
FALLBACK_FAMILY = "helvetica"
TTF_VARIANTS = ("Regular", "Bold", "Italic", "BoldItalic")


@dataclasses.dataclass(frozen=True)
class TextBlock:
	lines: tuple[str, ...]
	width: float
	height: float


@dataclasses.dataclass(frozen=True)
class FitResult:
	font_size: float
	fits: bool
	iterations: int


#============================================
def normalize_weight(value: str | int | float | None) -> int:
	"""
	Normalize a CSS-style font weight.

	Args:
		value: Weight name or number.

	Returns:
		Numeric weight.
	"""
	if value is None:
		return 400
	if isinstance(value, (int, float)):
		return int(value)
	text = str(value).strip().lower()
	if text.isdigit():
		return int(text)
	return WEIGHT_NAMES.get(text, 400)


#============================================
def normalize_family(family: str | None) -> str:
	"""
	Reduce a CSS font-family list to one lowercase family name.

	Args:
		family: Font family string, e.g. "'Open Sans', sans-serif".

	Returns:
		Lowercase family name.
	"""
	if not family:
		return FALLBACK_FAMILY
	first = family.split(",")[0].strip().strip("\"'").strip()
	return first.lower() or FALLBACK_FAMILY


#============================================
def variant_index(weight: int, italic: bool) -> int:
	"""
	Map weight/italic onto the regular/bold/italic/bold-italic slot.
	"""
	is_bold = weight >= BOLD_WEIGHT
	if italic and is_bold:
		return 3
	if italic:
		return 2
	if is_bold:
		return 1
	return 0


class FontRegistry:
	"""
	Per-job font cache keyed by (family, weight, italic).

	Families found as TrueType files in fonts_dir are registered with
	reportlab once; anything else maps to a base-14 family.
	"""

	def __init__(self, fonts_dir: str | pathlib.Path | None = None):
		self.fonts_dir = pathlib.Path(fonts_dir) if fonts_dir else None
		self.substitutions: dict[str, str] = {}
		self._cache: dict[tuple[str, int, bool], str] = {}
		self._lock = threading.Lock()

	def resolve(self, family: str | None, weight: int = 400, italic: bool = False) -> str:
		"""
		Resolve a design font to a reportlab font name.

		Args:
			family: Requested font family.
			weight: Numeric weight.
			italic: Italic flag.

		Returns:
			Registered reportlab font name.
		"""
		key = (normalize_family(family), weight >= BOLD_WEIGHT, italic)
		cache_key = (key[0], BOLD_WEIGHT if key[1] else 400, italic)
		with self._lock:
			cached = self._cache.get(cache_key)
			if cached is not None:
				return cached
			font_name = self._load(cache_key[0], cache_key[1], italic)
			self._cache[cache_key] = font_name
			return font_name

	def _load(self, family: str, weight: int, italic: bool) -> str:
		slot = variant_index(weight, italic)
		if family in BASE_FAMILIES:
			return BASE_FAMILIES[family][slot]

		font_name = self._register_ttf(family, slot)
		if font_name is not None:
			return font_name

		substitute = FAMILY_SUBSTITUTES.get(family, FALLBACK_FAMILY)
		if family not in self.substitutions:
			self.substitutions[family] = substitute
			if family not in FAMILY_SUBSTITUTES:
				logger.warning("Font family '%s' unavailable, using %s", family, substitute)
		return BASE_FAMILIES[substitute][slot]

	def _register_ttf(self, family: str, slot: int) -> str | None:
		if self.fonts_dir is None:
			return None
		stem = "".join(word.capitalize() for word in family.split())
		candidates = [TTF_VARIANTS[slot]]
		if slot != 0:
			candidates.append(TTF_VARIANTS[0])
		for variant in candidates:
			path = self.fonts_dir / f"{stem}-{variant}.ttf"
			if not path.is_file():
				continue
			font_name = f"{stem}-{variant}"
			if font_name in reportlab.pdfbase.pdfmetrics.getRegisteredFontNames():
				return font_name
			try:
				reportlab.pdfbase.pdfmetrics.registerFont(
					reportlab.pdfbase.ttfonts.TTFont(font_name, str(path))
				)
			except (OSError, reportlab.pdfbase.ttfonts.TTFError) as error:
				logger.warning("Could not load font %s: %s", path, error)
				return None
			return font_name
		return None


#============================================
def string_width(text: str, font_name: str, font_size: float) -> float:
	"""
	Measure a single line in points.
	"""
	return reportlab.pdfbase.pdfmetrics.stringWidth(text, font_name, font_size)


#============================================
def wrap_text(text: str, font_name: str, font_size: float, max_width: float) -> list[str]:
	"""
	Greedy word wrap that keeps explicit newlines as hard breaks.

	Args:
		text: Text to wrap.
		font_name: reportlab font name.
		font_size: Font size in points.
		max_width: Available width in points.

	Returns:
		Wrapped lines. Words wider than max_width stay on their own line.
	"""
	lines: list[str] = []
	for paragraph in text.split("\n"):
		current = ""
		for word in paragraph.split(" "):
			candidate = f"{current} {word}" if current else word
			if current and string_width(candidate, font_name, font_size) > max_width:
				lines.append(current)
				current = word
			else:
				current = candidate
		lines.append(current)
	return lines


#============================================
def measure_text(
	text: str,
	font_name: str,
	font_size: float,
	max_width: float,
	line_height: float = DEFAULT_LINE_HEIGHT,
) -> TextBlock:
	"""
	Wrap and measure a text block.

	Args:
		text: Text to measure.
		font_name: reportlab font name.
		font_size: Font size in points.
		max_width: Wrap width in points.
		line_height: Line height multiplier.

	Returns:
		TextBlock with wrapped lines, widest line width and total height.
	"""
	lines = wrap_text(text, font_name, font_size, max_width)
	width = max((string_width(line, font_name, font_size) for line in lines), default=0.0)
	height = len(lines) * font_size * line_height
	return TextBlock(lines=tuple(lines), width=width, height=height)


#============================================
def fit_text_to_container(
	text: str,
	font_name: str,
	container_width: float,
	container_height: float,
	max_size: float,
	min_size: float,
	line_height: float = DEFAULT_LINE_HEIGHT,
) -> FitResult:
	"""
	Find the largest font size whose wrapped text fits the container.

	Binary search over half-point steps in [min_size, max_size]. A fitting
	size moves the lower bound up, so the committed size is the best fit
	rather than the first. When nothing fits the minimum is returned with
	fits=False.

	Args:
		text: Text to fit.
		font_name: reportlab font name.
		container_width: Width in points.
		container_height: Height in points.
		max_size: Largest size to consider.
		min_size: Smallest size to consider.
		line_height: Line height multiplier.

	Returns:
		FitResult.
	"""
	if min_size <= 0:
		raise ValueError(f"min_size must be positive, got {min_size}")
	if max_size < min_size:
		max_size = min_size

	def fits(size: float) -> bool:
		block = measure_text(text, font_name, size, container_width, line_height)
		return block.width <= container_width and block.height <= container_height

	if fits(max_size):
		return FitResult(font_size=max_size, fits=True, iterations=1)

	low = math.ceil(min_size * FIT_STEPS_PER_POINT)
	high = math.floor(max_size * FIT_STEPS_PER_POINT)
	best: float | None = None
	iterations = 1
	while low <= high:
		mid = (low + high) // 2
		size = mid / FIT_STEPS_PER_POINT
		iterations += 1
		if fits(size):
			best = size
			low = mid + 1
		else:
			high = mid - 1

	if best is None:
		return FitResult(font_size=min_size, fits=False, iterations=iterations)
	return FitResult(font_size=best, fits=True, iterations=iterations)
