"""
Data-binding resolver.

resolve_document(baseline, record, index, fonts) is a pure function of its
inputs: the design document is never modified, so any number of records can
be resolved against one baseline, in sequence or in parallel.
"""

# Standard Library
import dataclasses
import logging
import math

# local repo modules
import mergekit_print as mkp
import mergekit_print.barcodes
import mergekit_print.bindings
import mergekit_print.config
import mergekit_print.errors
import mergekit_print.scene
import mergekit_print.typography


BarcodeError = mkp.errors.BarcodeError
BarcodeGlyph = mkp.barcodes.BarcodeGlyph
FieldBinding = mkp.bindings.FieldBinding
StaticBinding = mkp.bindings.StaticBinding
SequenceConfig = mkp.bindings.SequenceConfig
FontRegistry = mkp.typography.FontRegistry
DesignDocument = mkp.scene.DesignDocument
Page = mkp.scene.Page
TextElement = mkp.scene.TextElement
AddressBlockElement = mkp.scene.AddressBlockElement
SequenceElement = mkp.scene.SequenceElement
BarcodeElement = mkp.scene.BarcodeElement
QrCodeElement = mkp.scene.QrCodeElement
ImageElement = mkp.scene.ImageElement
ShapeElement = mkp.scene.ShapeElement
FieldLabel = mkp.scene.FieldLabel

POINTS_PER_MM = mkp.config.POINTS_PER_MM
FIELD_LABEL_SCALE = mkp.config.FIELD_LABEL_SCALE
FIELD_LABEL_GAP = mkp.config.FIELD_LABEL_GAP

NULL_LIKE = {"", "null", "none", "nan", "undefined"}
EMPTY_TEXT = " "

logger = logging.getLogger(__name__)

Record = dict[str, object]


@dataclasses.dataclass(frozen=True)
class ResolvedText:
	element: TextElement | AddressBlockElement | SequenceElement
	text: str
	font_name: str
	font_size: float
	fits: bool
	clip: bool = False
	label: FieldLabel | None = None
	label_font_name: str | None = None
	label_font_size: float = 0.0


@dataclasses.dataclass(frozen=True)
class ResolvedGlyph:
	element: BarcodeElement | QrCodeElement
	value: str
	glyph: BarcodeGlyph | None
	error: str | None = None


@dataclasses.dataclass(frozen=True)
class ResolvedImage:
	element: ImageElement
	reference: str
	error: str | None = None


@dataclasses.dataclass(frozen=True)
class ResolvedShape:
	element: ShapeElement


ResolvedElement = ResolvedText | ResolvedGlyph | ResolvedImage | ResolvedShape


@dataclasses.dataclass(frozen=True)
class ResolvedPage:
	page: Page
	elements: tuple[ResolvedElement, ...]
	warnings: tuple[str, ...] = ()
	overflow_count: int = 0


@dataclasses.dataclass(frozen=True)
class ResolvedDocument:
	name: str
	record_index: int
	pages: tuple[ResolvedPage, ...]

	@property
	def warnings(self) -> list[str]:
		return [warning for page in self.pages for warning in page.warnings]

	@property
	def overflow_count(self) -> int:
		return sum(page.overflow_count for page in self.pages)


#============================================
def format_value(value: object) -> str | None:
	"""
	Coerce a record value to display text.

	Args:
		value: Scalar record value.

	Returns:
		String, or None for a missing value.
	"""
	if value is None:
		return None
	if isinstance(value, bool):
		return "true" if value else "false"
	if isinstance(value, float) and math.isfinite(value) and value.is_integer():
		return str(int(value))
	return str(value)


#============================================
def lookup_field(record: Record, field: str) -> str | None:
	"""
	Look up a field, falling back to a case-insensitive match.
	"""
	if field in record:
		return format_value(record[field])
	lowered = field.lower()
	for key, value in record.items():
		if key.lower() == lowered:
			return format_value(value)
	return None


#============================================
def is_null_like(value: str | None) -> bool:
	if value is None:
		return True
	return value.strip().lower() in NULL_LIKE


#============================================
def resolve_binding(binding, record: Record) -> str:
	"""
	Resolve a binding to a string, empty when missing.

	Args:
		binding: StaticBinding, FieldBinding or None.
		record: Data record.

	Returns:
		Resolved string.
	"""
	if binding is None:
		return ""
	if isinstance(binding, FieldBinding):
		return lookup_field(record, binding.field) or ""
	return mkp.bindings.fill_placeholders(
		binding.value, lambda field: lookup_field(record, field)
	)


#============================================
def resolve_sequence(config: SequenceConfig, index: int) -> str:
	"""
	Sequence value for a record index.

	Args:
		config: Start, prefix, suffix and padding.
		index: Zero-based record index.

	Returns:
		prefix + zero-padded (start + index) + suffix.
	"""
	number = config.start + index
	digits = str(abs(number)).zfill(config.padding)
	if number < 0:
		digits = "-" + digits
	return f"{config.prefix}{digits}{config.suffix}"


#============================================
def resolve_address_lines(fields: tuple[str, ...] | list[str], record: Record) -> list[str]:
	"""
	Resolve address lines, dropping blank and null-like values.

	Args:
		fields: Field names in output order.
		record: Data record.

	Returns:
		Non-empty trimmed lines in field order.
	"""
	lines = []
	for field in fields:
		value = lookup_field(record, field)
		if is_null_like(value):
			continue
		lines.append(value.strip())
	return lines


#============================================
def extract_used_fields(document: DesignDocument) -> list[str]:
	"""
	List every record field the document references, in first-use order.

	Args:
		document: Design document.

	Returns:
		Field names.
	"""
	seen: dict[str, None] = {}

	def add_binding(binding) -> None:
		if isinstance(binding, FieldBinding):
			seen.setdefault(binding.field, None)
		elif isinstance(binding, StaticBinding):
			for field in mkp.bindings.placeholder_fields(binding.value):
				seen.setdefault(field, None)

	for page in document.pages:
		for element in page.elements:
			if isinstance(element, AddressBlockElement):
				for field in element.fields:
					seen.setdefault(field, None)
			elif isinstance(element, ImageElement):
				add_binding(element.source)
			elif isinstance(element, (TextElement, BarcodeElement, QrCodeElement)):
				add_binding(element.binding)
	return list(seen)


#============================================
def _label_metrics(label: FieldLabel | None, style, fonts: FontRegistry) -> tuple[str | None, float]:
	if label is None:
		return (None, 0.0)
	font_name = fonts.resolve(style.font_family, style.font_weight, style.italic)
	return (font_name, style.font_size * FIELD_LABEL_SCALE)


#============================================
def resolve_text_element(
	element: TextElement | AddressBlockElement | SequenceElement,
	text: str,
	fonts: FontRegistry,
	context: str,
) -> tuple[ResolvedText, str | None]:
	"""
	Resolve font and size for a text-bearing element.

	Args:
		element: Text, address block or sequence element.
		text: Resolved content.
		fonts: Per-job font registry.
		context: Location string for warnings.

	Returns:
		(ResolvedText, warning or None).
	"""
	style = element.style
	font_name = fonts.resolve(style.font_family, style.font_weight, style.italic)
	width = element.box.width * POINTS_PER_MM
	height = element.box.height * POINTS_PER_MM

	label = getattr(element, "label", None)
	label_font_name, label_font_size = _label_metrics(label, style, fonts)
	if label is not None:
		if label.position == "above":
			height -= label_font_size * style.line_height + FIELD_LABEL_GAP
		else:
			label_text = label.text.upper() + " "
			width -= mkp.typography.string_width(label_text, label_font_name, label_font_size)
		width = max(width, 0.0)
		height = max(height, 0.0)

	font_size = style.font_size
	warning = None
	if element.auto_fit:
		result = mkp.typography.fit_text_to_container(
			text,
			font_name,
			width,
			height,
			max_size=style.font_size,
			min_size=min(element.min_font_size, style.font_size),
			line_height=style.line_height,
		)
		font_size = result.font_size
		fits = result.fits
		if not fits:
			warning = f"{context}: text overflows at minimum size {font_size:g}pt"
	else:
		block = mkp.typography.measure_text(text, font_name, font_size, width, style.line_height)
		fits = block.width <= width and block.height <= height

	resolved = ResolvedText(
		element=element,
		text=text,
		font_name=font_name,
		font_size=font_size,
		fits=fits,
		clip=element.auto_fit and not fits,
		label=label,
		label_font_name=label_font_name,
		label_font_size=label_font_size,
	)
	return resolved, warning


#============================================
def resolve_glyph(element: BarcodeElement | QrCodeElement, record: Record) -> ResolvedGlyph:
	"""
	Generate the barcode or QR glyph for an element.

	Encoding failures are kept on the result instead of raised.

	Args:
		element: Barcode or QR element.
		record: Data record.

	Returns:
		ResolvedGlyph with a glyph or an error message.
	"""
	value = resolve_binding(element.binding, record).strip()
	try:
		if isinstance(element, QrCodeElement):
			glyph = mkp.barcodes.generate_qr(value, element.error_correction)
		else:
			glyph = mkp.barcodes.generate_barcode(value, element.symbology)
	except BarcodeError as error:
		return ResolvedGlyph(element=element, value=value, glyph=None, error=str(error))
	return ResolvedGlyph(element=element, value=value, glyph=glyph)


#============================================
def resolve_page(page: Page, record: Record, index: int, fonts: FontRegistry) -> ResolvedPage:
	"""
	Resolve every element on a page for one record.

	Args:
		page: Baseline page.
		record: Data record.
		index: Zero-based record index.
		fonts: Per-job font registry.

	Returns:
		ResolvedPage.
	"""
	resolved: list[ResolvedElement] = []
	warnings: list[str] = []
	overflow_count = 0

	for element in page.elements:
		context = f"record {index} page {page.id} element {element.id}"

		if isinstance(element, (TextElement, AddressBlockElement, SequenceElement)):
			if isinstance(element, AddressBlockElement):
				text = "\n".join(resolve_address_lines(element.fields, record))
			elif isinstance(element, SequenceElement):
				text = resolve_sequence(element.sequence, index)
			else:
				text = resolve_binding(element.binding, record)
			if not text.strip():
				text = EMPTY_TEXT
			item, warning = resolve_text_element(element, text, fonts, context)
			if warning is not None:
				overflow_count += 1
				warnings.append(warning)
				logger.warning(warning)
			resolved.append(item)

		elif isinstance(element, (BarcodeElement, QrCodeElement)):
			item = resolve_glyph(element, record)
			if item.error is not None:
				warnings.append(f"{context}: {item.error}")
				logger.warning("%s: %s", context, item.error)
			resolved.append(item)

		elif isinstance(element, ImageElement):
			reference = resolve_binding(element.source, record).strip()
			error = None
			if not reference:
				error = "image reference is empty"
				warnings.append(f"{context}: {error}")
				logger.warning("%s: %s", context, error)
			resolved.append(ResolvedImage(element=element, reference=reference, error=error))

		else:
			resolved.append(ResolvedShape(element=element))

	return ResolvedPage(
		page=page,
		elements=tuple(resolved),
		warnings=tuple(warnings),
		overflow_count=overflow_count,
	)


#============================================
def resolve_document(
	document: DesignDocument,
	record: Record,
	index: int,
	fonts: FontRegistry,
) -> ResolvedDocument:
	"""
	Resolve a whole document for one record.

	Args:
		document: Immutable baseline document.
		record: Data record.
		index: Zero-based record index.
		fonts: Per-job font registry.

	Returns:
		ResolvedDocument.
	"""
	pages = tuple(resolve_page(page, record, index, fonts) for page in document.pages)
	return ResolvedDocument(name=document.name, record_index=index, pages=pages)
