"""
Shared configuration and constants.
"""

# Standard Library
import dataclasses
import os


POINTS_PER_INCH = 72.0
MM_PER_INCH = 25.4
POINTS_PER_MM = POINTS_PER_INCH / MM_PER_INCH

DEFAULT_SHEET_WIDTH = 215.9
DEFAULT_SHEET_HEIGHT = 279.4
DEFAULT_OUTER_MARGIN = 12.7
SHEET_SIZES = {
	"letter": (215.9, 279.4),
	"legal": (215.9, 355.6),
	"a3": (297.0, 420.0),
	"a4": (210.0, 297.0),
	"a5": (148.0, 210.0),
}

# Label stock item sizes in mm.
LABEL_PRESETS = {
	"avery-5160": (66.68, 25.4),
	"avery-5161": (101.6, 25.4),
	"avery-5163": (101.6, 50.8),
	"avery-5164": (101.6, 84.67),
	"avery-5167": (44.45, 12.7),
	"avery-5294": (63.5, 63.5),
	"avery-5366": (87.31, 16.93),
	"avery-5390": (101.6, 76.2),
	"avery-5395": (85.73, 59.27),
	"avery-5692": (117.48, 117.48),
}

CROP_MARK_OFFSET_MM = 3.0
CROP_MARK_LENGTH_MM = 10.0
CROP_MARK_SLUG_MM = 2.0
CROP_MARK_STROKE = 0.25
OUTLINE_STROKE = 0.3

DEFAULT_FONT_FAMILY = "Helvetica"
DEFAULT_FONT_SIZE = 12.0
DEFAULT_TEXT_MIN_SIZE = 6.0
DEFAULT_LINE_HEIGHT = 1.2
FIT_STEPS_PER_POINT = 2
FIELD_LABEL_SCALE = 0.7
FIELD_LABEL_GRAY = 0.4
FIELD_LABEL_GAP = 1.0
ERROR_COLOR = (0.8, 0.0, 0.0)
ERROR_TEXT_SIZE = 6.0

PROGRESS_BAR_WIDTH = 20
PROGRESS_UPDATE_EVERY = 10
DEFAULT_TOOL_TIMEOUT = 120.0
# seconds between cancel checks while an external tool runs
TOOL_POLL_INTERVAL = 0.1


@dataclasses.dataclass
class LayoutConfig:
	sheet_width: float
	sheet_height: float
	item_width: float
	item_height: float
	columns: int
	rows: int
	margin_left: float
	margin_top: float
	gap_x: float
	gap_y: float
	items_per_sheet: int


@dataclasses.dataclass
class PrintOptions:
	title: str = "MergeKit Export"
	cmyk: bool = False
	crop_marks: bool = False
	bleed: float = 0.0
	draw_outlines: bool = False
	include_partial: bool = True


@dataclasses.dataclass
class JobResult:
	pdf: bytes
	page_count: int
	record_count: int
	label_count: int
	sheet_count: int
	elapsed_ms: int
	color_mode: str
	crop_marks: bool
	color_fallback: str | None = None
	overflow_count: int = 0
	warnings: list[str] = dataclasses.field(default_factory=list)
	font_substitutions: dict[str, str] = dataclasses.field(default_factory=dict)
	timings: dict[str, float] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class ServiceSettings:
	api_secret: str | None = None
	icc_profile: str | None = None
	ghostscript: str = "gs"
	tool_timeout: float = DEFAULT_TOOL_TIMEOUT
	temp_dir: str | None = None
	fonts_dir: str | None = None
	assets_dir: str | None = None
	log_level: str = "INFO"


#============================================
def mm_to_points(value: float) -> float:
	"""
	Convert millimeters to points.

	Args:
		value: Millimeters value.

	Returns:
		Points value.
	"""
	return value * POINTS_PER_MM


#============================================
def points_to_mm(value: float) -> float:
	"""
	Convert points to millimeters.
	"""
	return value / POINTS_PER_MM


#============================================
def load_settings(environ: dict[str, str] | None = None) -> ServiceSettings:
	"""
	Build service settings from MERGEKIT_* environment variables.

	Args:
		environ: Mapping to read instead of os.environ.

	Returns:
		ServiceSettings.
	"""
	if environ is None:
		environ = dict(os.environ)

	def read(name: str) -> str | None:
		value = environ.get(f"MERGEKIT_{name}", "").strip()
		return value or None

	timeout = DEFAULT_TOOL_TIMEOUT
	raw_timeout = read("TOOL_TIMEOUT")
	if raw_timeout is not None:
		timeout = float(raw_timeout)

	return ServiceSettings(
		api_secret=read("API_SECRET"),
		icc_profile=read("ICC_PROFILE"),
		ghostscript=read("GHOSTSCRIPT") or "gs",
		tool_timeout=timeout,
		temp_dir=read("TEMP_DIR"),
		fonts_dir=read("FONTS_DIR"),
		assets_dir=read("ASSETS_DIR"),
		log_level=(read("LOG_LEVEL") or "INFO").upper(),
	)
