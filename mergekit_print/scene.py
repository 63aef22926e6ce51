"""
Design document model and JSON parsing.

Elements form a closed set of seven kinds. Each kind is its own frozen
dataclass carrying only the fields valid for it, so a shape can never hold a
text binding and a barcode can never hold an address field list.
"""

# Standard Library
import dataclasses
import math
from typing import ClassVar

# local repo modules
import mergekit_print as mkp
import mergekit_print.barcodes
import mergekit_print.bindings
import mergekit_print.config
import mergekit_print.errors
import mergekit_print.typography


SceneError = mkp.errors.SceneError
Binding = mkp.bindings.Binding
StaticBinding = mkp.bindings.StaticBinding
FieldBinding = mkp.bindings.FieldBinding
SequenceConfig = mkp.bindings.SequenceConfig

DEFAULT_FONT_FAMILY = mkp.config.DEFAULT_FONT_FAMILY
DEFAULT_FONT_SIZE = mkp.config.DEFAULT_FONT_SIZE
DEFAULT_TEXT_MIN_SIZE = mkp.config.DEFAULT_TEXT_MIN_SIZE
DEFAULT_LINE_HEIGHT = mkp.config.DEFAULT_LINE_HEIGHT

ELEMENT_KINDS = ("text", "image", "shape", "barcode", "qrcode", "sequence", "address_block")
TAG_TO_KIND = {
	"text": "text",
	"address_block": "address_block",
	"sequence": "sequence",
	"image": "image",
	"barcode": "barcode",
	"qrcode": "qrcode",
}
HORIZONTAL_ALIGNS = ("left", "center", "right")
VERTICAL_ALIGNS = ("top", "middle", "bottom")
SHAPE_TYPES = ("rectangle", "ellipse", "circle", "line")
IMAGE_FITS = ("contain", "cover", "fill", "none")
LABEL_POSITIONS = ("above", "inline")


@dataclasses.dataclass(frozen=True)
class Box:
	x: float
	y: float
	width: float
	height: float


@dataclasses.dataclass(frozen=True)
class TextStyle:
	font_family: str = DEFAULT_FONT_FAMILY
	font_size: float = DEFAULT_FONT_SIZE
	font_weight: int = 400
	italic: bool = False
	align: str = "left"
	vertical_align: str = "top"
	color: str = "#000000"
	line_height: float = DEFAULT_LINE_HEIGHT


@dataclasses.dataclass(frozen=True)
class ShapeStyle:
	fill: str | None = None
	stroke: str | None = "#000000"
	stroke_width: float = 0.25
	opacity: float = 1.0
	corner_radius: float = 0.0


@dataclasses.dataclass(frozen=True)
class FieldLabel:
	text: str
	position: str = "above"


@dataclasses.dataclass(frozen=True, kw_only=True)
class Element:
	kind: ClassVar[str] = ""
	id: str
	box: Box
	rotation: float = 0.0
	z_order: int = 0
	name: str = ""


@dataclasses.dataclass(frozen=True, kw_only=True)
class TextElement(Element):
	kind: ClassVar[str] = "text"
	binding: Binding | None = None
	style: TextStyle = TextStyle()
	auto_fit: bool = False
	min_font_size: float = DEFAULT_TEXT_MIN_SIZE
	label: FieldLabel | None = None


@dataclasses.dataclass(frozen=True, kw_only=True)
class AddressBlockElement(Element):
	kind: ClassVar[str] = "address_block"
	fields: tuple[str, ...]
	style: TextStyle = TextStyle()
	auto_fit: bool = False
	min_font_size: float = DEFAULT_TEXT_MIN_SIZE


@dataclasses.dataclass(frozen=True, kw_only=True)
class SequenceElement(Element):
	kind: ClassVar[str] = "sequence"
	sequence: SequenceConfig = SequenceConfig()
	style: TextStyle = TextStyle()
	auto_fit: bool = False
	min_font_size: float = DEFAULT_TEXT_MIN_SIZE


@dataclasses.dataclass(frozen=True, kw_only=True)
class BarcodeElement(Element):
	kind: ClassVar[str] = "barcode"
	binding: Binding | None = None
	symbology: str = "CODE128"
	color: str = "#000000"


@dataclasses.dataclass(frozen=True, kw_only=True)
class QrCodeElement(Element):
	kind: ClassVar[str] = "qrcode"
	binding: Binding | None = None
	error_correction: str = "M"
	color: str = "#000000"


@dataclasses.dataclass(frozen=True, kw_only=True)
class ImageElement(Element):
	kind: ClassVar[str] = "image"
	source: Binding | None = None
	fit: str = "contain"
	opacity: float = 1.0


@dataclasses.dataclass(frozen=True, kw_only=True)
class ShapeElement(Element):
	kind: ClassVar[str] = "shape"
	shape_type: str = "rectangle"
	style: ShapeStyle = ShapeStyle()


AnyElement = (
	TextElement
	| AddressBlockElement
	| SequenceElement
	| BarcodeElement
	| QrCodeElement
	| ImageElement
	| ShapeElement
)
TEXT_KINDS = (TextElement, AddressBlockElement, SequenceElement)


@dataclasses.dataclass(frozen=True)
class Page:
	id: str
	width: float
	height: float
	bleed: float = 0.0
	elements: tuple[AnyElement, ...] = ()
	background: str | None = None


@dataclasses.dataclass(frozen=True)
class DesignDocument:
	name: str
	pages: tuple[Page, ...]


#============================================
def _get(data: dict, name: str, default=None):
	"""
	Read a key in either snake_case or camelCase.

	Args:
		data: Source mapping.
		name: snake_case key.
		default: Fallback value.

	Returns:
		Value or default.
	"""
	if name in data:
		return data[name]
	head, *rest = name.split("_")
	camel = head + "".join(part.capitalize() for part in rest)
	return data.get(camel, default)


#============================================
def _number(value, context: str, default: float | None = None) -> float:
	"""
	Coerce a JSON number.

	Args:
		value: Raw value.
		context: Location string for error messages.
		default: Used when value is None.

	Returns:
		Float value.
	"""
	if value is None:
		if default is None:
			raise SceneError(f"{context} is required")
		return default
	if isinstance(value, bool):
		raise SceneError(f"{context} must be a number")
	try:
		number = float(value)
	except (TypeError, ValueError) as error:
		raise SceneError(f"{context} must be a number, got {value!r}") from error
	if not math.isfinite(number):
		raise SceneError(f"{context} must be finite")
	return number


#============================================
def _color(value, context: str, default: str | None) -> str | None:
	if value is None:
		return default
	if not isinstance(value, str):
		raise SceneError(f"{context} must be a color string, got {value!r}")
	return value


#============================================
def _choice(value, options: tuple[str, ...], context: str, default: str) -> str:
	if value is None:
		return default
	text = str(value).strip().lower()
	if text not in options:
		raise SceneError(f"{context} must be one of {', '.join(options)}, got {value!r}")
	return text


#============================================
def parse_box(data: dict, context: str) -> Box:
	"""
	Parse element geometry in millimeters.

	Args:
		data: Element mapping.
		context: Location string for error messages.

	Returns:
		Box with non-negative position and positive size.
	"""
	box = Box(
		x=_number(data.get("x"), f"{context}.x", 0.0),
		y=_number(data.get("y"), f"{context}.y", 0.0),
		width=_number(data.get("width"), f"{context}.width"),
		height=_number(data.get("height"), f"{context}.height"),
	)
	if box.x < 0 or box.y < 0:
		raise SceneError(f"{context}: position must be non-negative")
	if box.width <= 0 or box.height <= 0:
		raise SceneError(f"{context}: width and height must be positive")
	return box


#============================================
def parse_text_style(data: dict | None, context: str) -> TextStyle:
	"""
	Parse a text style record.

	Args:
		data: Style mapping or None.
		context: Location string for error messages.

	Returns:
		TextStyle.
	"""
	if data is None:
		return TextStyle()
	if not isinstance(data, dict):
		raise SceneError(f"{context}.style must be an object")
	font_size = _number(_get(data, "font_size"), f"{context}.fontSize", DEFAULT_FONT_SIZE)
	if font_size <= 0:
		raise SceneError(f"{context}.fontSize must be positive")
	italic = _get(data, "italic")
	if italic is None:
		italic = str(_get(data, "font_style", "")).lower() == "italic"
	return TextStyle(
		font_family=str(_get(data, "font_family") or DEFAULT_FONT_FAMILY),
		font_size=font_size,
		font_weight=mkp.typography.normalize_weight(_get(data, "font_weight")),
		italic=bool(italic),
		align=_choice(_get(data, "align"), HORIZONTAL_ALIGNS, f"{context}.align", "left"),
		vertical_align=_choice(
			_get(data, "vertical_align"), VERTICAL_ALIGNS, f"{context}.verticalAlign", "top"
		),
		color=_color(_get(data, "color"), f"{context}.color", "#000000") or "#000000",
		line_height=_number(
			_get(data, "line_height"), f"{context}.lineHeight", DEFAULT_LINE_HEIGHT
		),
	)


#============================================
def parse_shape_style(data: dict | None, context: str) -> ShapeStyle:
	"""
	Parse a shape style record.
	"""
	if data is None:
		return ShapeStyle()
	if not isinstance(data, dict):
		raise SceneError(f"{context}.style must be an object")
	opacity = _number(_get(data, "opacity"), f"{context}.opacity", 1.0)
	return ShapeStyle(
		fill=_color(_get(data, "fill"), f"{context}.fill", None),
		stroke=_color(_get(data, "stroke", "#000000"), f"{context}.stroke", None),
		stroke_width=_number(_get(data, "stroke_width"), f"{context}.strokeWidth", 0.25),
		opacity=min(1.0, max(0.0, opacity)),
		corner_radius=_number(_get(data, "corner_radius"), f"{context}.cornerRadius", 0.0),
	)


#============================================
def _parse_label(data: dict, binding: Binding | None, context: str) -> FieldLabel | None:
	raw = data.get("label")
	if isinstance(raw, dict):
		text = raw.get("text")
		if not text and isinstance(binding, FieldBinding):
			text = binding.field
		if not text:
			raise SceneError(f"{context}.label needs text")
		position = _choice(raw.get("position"), LABEL_POSITIONS, f"{context}.label.position", "above")
		return FieldLabel(text=str(text), position=position)
	if raw is not None:
		raise SceneError(f"{context}.label must be an object")
	if _get(data, "show_label") and isinstance(binding, FieldBinding):
		return FieldLabel(text=binding.field)
	return None


#============================================
def _parse_sequence(data: dict | None, context: str) -> SequenceConfig:
	if data is None:
		return SequenceConfig()
	if not isinstance(data, dict):
		raise SceneError(f"{context}.sequence must be an object")
	start = _number(data.get("start"), f"{context}.sequence.start", 1.0)
	padding = _number(data.get("padding"), f"{context}.sequence.padding", 0.0)
	if start != int(start) or padding != int(padding) or padding < 0:
		raise SceneError(f"{context}.sequence start and padding must be whole numbers")
	return SequenceConfig(
		start=int(start),
		prefix=str(data.get("prefix") or ""),
		suffix=str(data.get("suffix") or ""),
		padding=int(padding),
	)


#============================================
def parse_element(data: dict, context: str = "element") -> AnyElement:
	"""
	Parse one element.

	The kind comes from the "kind" (or "type") key, or from the binding tag
	in the element name when no kind is given. An explicit binding object
	takes precedence over a tag.

	Args:
		data: Element mapping.
		context: Location string for error messages.

	Returns:
		Element variant.
	"""
	if not isinstance(data, dict):
		raise SceneError(f"{context} must be an object")
	name = str(data.get("name") or "")
	tag = mkp.bindings.parse_binding_tag(name)

	kind = data.get("kind") or data.get("type")
	tag_kind = TAG_TO_KIND[tag.kind] if tag is not None else None
	if kind is None:
		kind = tag_kind
	if kind is None:
		raise SceneError(f"{context} has no kind")
	kind = str(kind).strip().lower()
	if kind not in ELEMENT_KINDS:
		raise SceneError(f"{context} has unknown kind '{kind}'")
	if tag_kind is not None and tag_kind != kind:
		raise SceneError(f"{context}: name tag '{name}' does not match kind '{kind}'")

	element_id = str(data.get("id") or context)
	common = {
		"id": element_id,
		"box": parse_box(data, context),
		"rotation": _number(data.get("rotation"), f"{context}.rotation", 0.0),
		"z_order": int(_number(_get(data, "z_order"), f"{context}.zOrder", 0.0)),
		"name": name,
	}

	binding = mkp.bindings.parse_binding(data.get("binding"), context)
	if binding is None and tag is not None and tag.field:
		binding = FieldBinding(field=tag.field)
	if binding is None and kind == "text" and data.get("text") is not None:
		binding = StaticBinding(value=str(data["text"]))

	auto_fit = bool(_get(data, "auto_fit", False))
	min_font_size = _number(
		_get(data, "min_font_size"), f"{context}.minFontSize", DEFAULT_TEXT_MIN_SIZE
	)
	if min_font_size <= 0:
		raise SceneError(f"{context}.minFontSize must be positive")

	if kind == "text":
		return TextElement(
			**common,
			binding=binding,
			style=parse_text_style(data.get("style"), context),
			auto_fit=auto_fit,
			min_font_size=min_font_size,
			label=_parse_label(data, binding, context),
		)

	if kind == "address_block":
		fields = data.get("fields")
		if fields is None and tag is not None:
			fields = tag.fields
		if not isinstance(fields, (list, tuple)) or not fields:
			raise SceneError(f"{context}: address block needs a list of field names")
		if not all(isinstance(field, str) for field in fields):
			raise SceneError(f"{context}: address block needs a list of field names")
		return AddressBlockElement(
			**common,
			fields=tuple(field.strip() for field in fields),
			style=parse_text_style(data.get("style"), context),
			auto_fit=auto_fit,
			min_font_size=min_font_size,
		)

	if kind == "sequence":
		sequence = data.get("sequence")
		if sequence is None and tag is not None:
			config = tag.sequence
		else:
			config = _parse_sequence(sequence, context)
		return SequenceElement(
			**common,
			sequence=config,
			style=parse_text_style(data.get("style"), context),
			auto_fit=auto_fit,
			min_font_size=min_font_size,
		)

	if kind == "barcode":
		raw = data.get("symbology") or data.get("format")
		if raw is None and tag is not None:
			raw = tag.symbology
		symbology = mkp.barcodes.normalize_symbology(str(raw or "CODE128"))
		if symbology is None:
			raise SceneError(f"{context}: unsupported barcode symbology {raw!r}")
		return BarcodeElement(
			**common,
			binding=binding,
			symbology=symbology,
			color=_color(data.get("color"), f"{context}.color", "#000000") or "#000000",
		)

	if kind == "qrcode":
		raw = _get(data, "error_correction")
		if raw is None and tag is not None:
			raw = tag.symbology
		level = mkp.barcodes.normalize_qr_level(raw)
		if level is None:
			raise SceneError(f"{context}: unsupported QR error correction {raw!r}")
		return QrCodeElement(
			**common,
			binding=binding,
			error_correction=level,
			color=_color(data.get("color"), f"{context}.color", "#000000") or "#000000",
		)

	if kind == "image":
		source = binding
		src = data.get("src") or data.get("source")
		if source is None and src is not None:
			source = StaticBinding(value=str(src))
		return ImageElement(
			**common,
			source=source,
			fit=_choice(data.get("fit"), IMAGE_FITS, f"{context}.fit", "contain"),
			opacity=min(1.0, max(0.0, _number(data.get("opacity"), f"{context}.opacity", 1.0))),
		)

	if binding is not None:
		raise SceneError(f"{context}: shape elements cannot carry a binding")
	return ShapeElement(
		**common,
		shape_type=_choice(
			_get(data, "shape_type") or data.get("shape"), SHAPE_TYPES, f"{context}.shape", "rectangle"
		),
		style=parse_shape_style(data.get("style"), context),
	)


#============================================
def parse_page(data: dict, index: int = 0) -> Page:
	"""
	Parse one page.

	Args:
		data: Page mapping with width, height, bleed and elements.
		index: Page index, used for default ids and error messages.

	Returns:
		Page with elements in z-order.
	"""
	context = f"pages[{index}]"
	if not isinstance(data, dict):
		raise SceneError(f"{context} must be an object")
	width = _number(data.get("width"), f"{context}.width")
	height = _number(data.get("height"), f"{context}.height")
	bleed = _number(data.get("bleed"), f"{context}.bleed", 0.0)
	if width <= 0 or height <= 0:
		raise SceneError(f"{context}: width and height must be positive")
	if bleed < 0:
		raise SceneError(f"{context}: bleed must be non-negative")

	raw_elements = data.get("elements") or []
	if not isinstance(raw_elements, list):
		raise SceneError(f"{context}.elements must be a list")
	elements = [
		parse_element(item, f"{context}.elements[{position}]")
		for position, item in enumerate(raw_elements)
	]
	# stable sort keeps document order for equal z
	elements.sort(key=lambda element: element.z_order)
	return Page(
		id=str(data.get("id") or f"page-{index + 1}"),
		width=width,
		height=height,
		bleed=bleed,
		elements=tuple(elements),
		background=_color(data.get("background"), f"{context}.background", None),
	)


#============================================
def parse_document(data: dict) -> DesignDocument:
	"""
	Parse a design document.

	A mapping without "pages" but with "elements" is read as a one-page
	document.

	Args:
		data: Document mapping.

	Returns:
		DesignDocument.

	Raises:
		SceneError: The document is malformed.
	"""
	if not isinstance(data, dict):
		raise SceneError("scene must be an object")
	if "pages" in data:
		raw_pages = data["pages"]
	elif "elements" in data:
		raw_pages = [data]
	else:
		raise SceneError("scene has no pages")
	if not isinstance(raw_pages, list) or not raw_pages:
		raise SceneError("scene.pages must be a non-empty list")
	pages = tuple(parse_page(page, index) for index, page in enumerate(raw_pages))
	return DesignDocument(name=str(data.get("name") or "Untitled"), pages=pages)


#============================================
def parse_records(data) -> list[dict[str, object]]:
	"""
	Validate a list of flat records.

	Args:
		data: List of mappings from field name to scalar value.

	Returns:
		Records as plain dicts, order preserved.
	"""
	if data is None:
		return []
	if not isinstance(data, list):
		raise SceneError("records must be a list")
	records = []
	for index, record in enumerate(data):
		if not isinstance(record, dict):
			raise SceneError(f"records[{index}] must be an object")
		for key, value in record.items():
			if not isinstance(key, str):
				raise SceneError(f"records[{index}] has a non-string field name")
			if value is not None and not isinstance(value, (str, int, float, bool)):
				raise SceneError(f"records[{index}].{key} must be a scalar value")
		records.append(dict(record))
	return records
