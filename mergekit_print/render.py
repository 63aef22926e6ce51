"""
Page rendering and label imposition.

Geometry arrives as top-left-origin millimeters. Each element is drawn in a
local frame whose origin is the element's top-left corner, so the axis flip
and the mm to point conversion happen once, in element_frame().
"""

# Standard Library
import io
import logging
import pathlib
import re
import threading

# PIP3 modules
import PIL.Image
import pypdf
import reportlab.lib.utils
import reportlab.pdfbase.pdfmetrics
import reportlab.pdfgen.canvas

# local repo modules
import mergekit_print as mkp
import mergekit_print.barcodes
import mergekit_print.config
import mergekit_print.layout
import mergekit_print.postprocess
import mergekit_print.resolver
import mergekit_print.typography


LayoutConfig = mkp.config.LayoutConfig
PrintOptions = mkp.config.PrintOptions
PageBoxes = mkp.postprocess.PageBoxes
ResolvedDocument = mkp.resolver.ResolvedDocument
ResolvedPage = mkp.resolver.ResolvedPage
ResolvedText = mkp.resolver.ResolvedText
ResolvedGlyph = mkp.resolver.ResolvedGlyph
ResolvedImage = mkp.resolver.ResolvedImage
ResolvedShape = mkp.resolver.ResolvedShape

POINTS_PER_MM = mkp.config.POINTS_PER_MM
FIELD_LABEL_GRAY = mkp.config.FIELD_LABEL_GRAY
FIELD_LABEL_GAP = mkp.config.FIELD_LABEL_GAP
ERROR_COLOR = mkp.config.ERROR_COLOR
ERROR_TEXT_SIZE = mkp.config.ERROR_TEXT_SIZE
OUTLINE_STROKE = mkp.config.OUTLINE_STROKE

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tif", ".tiff")
NAMED_COLORS = {
	"black": (0.0, 0.0, 0.0),
	"white": (1.0, 1.0, 1.0),
	"red": (1.0, 0.0, 0.0),
	"green": (0.0, 0.5, 0.0),
	"blue": (0.0, 0.0, 1.0),
	"gray": (0.5, 0.5, 0.5),
	"grey": (0.5, 0.5, 0.5),
}
ERROR_FONT = "Helvetica-Bold"

logger = logging.getLogger(__name__)


#============================================
def to_points(value: float) -> float:
	return value * POINTS_PER_MM


#============================================
def parse_hex_color(value: str | None) -> tuple[float, float, float] | None:
	"""
	Parse a color string into RGB floats.

	Args:
		value: "#RGB", "#RRGGBB", a basic color name, or "transparent".

	Returns:
		Tuple of (r, g, b) in 0.0-1.0 range, or None for no color.
	"""
	if not value:
		return None
	value = value.strip().lower()
	if value in ("none", "transparent"):
		return None
	if value in NAMED_COLORS:
		return NAMED_COLORS[value]
	if re.fullmatch(r"#[0-9a-f]{3}", value):
		value = "#" + "".join(char * 2 for char in value[1:])
	if not re.fullmatch(r"#[0-9a-f]{6}([0-9a-f]{2})?", value):
		return (0.0, 0.0, 0.0)
	red = int(value[1:3], 16) / 255.0
	green = int(value[3:5], 16) / 255.0
	blue = int(value[5:7], 16) / 255.0
	return (red, green, blue)


#============================================
def compute_align_offset(available: float, used: float, align: str) -> float:
	"""
	Offset of content within an available span.

	Args:
		available: Available span.
		used: Content span.
		align: left/top, center/middle, or right/bottom.

	Returns:
		Offset from the leading edge, never negative.
	"""
	if align in ("left", "top"):
		return 0.0
	if align in ("right", "bottom"):
		return max(0.0, available - used)
	return max(0.0, (available - used) / 2.0)


#============================================
def normalize_asset_name(reference: str) -> str:
	"""
	Normalize an image reference for matching.

	"Photos/Logo.PNG?x=1" and "logo" normalize to the same key.

	Args:
		reference: Image path, URL or name.

	Returns:
		Lowercase basename without query string or image extension.
	"""
	name = reference.strip().split("?")[0].split("#")[0]
	name = re.split(r"[\\/]", name)[-1].lower()
	for extension in IMAGE_EXTENSIONS:
		if name.endswith(extension):
			name = name[: -len(extension)]
			break
	return name


class AssetLibrary:
	"""
	Image assets keyed by normalized name, loaded lazily and cached.
	"""

	def __init__(self, sources: dict[str, bytes | pathlib.Path | str] | None = None):
		self._sources: dict[str, bytes | pathlib.Path | str] = {}
		self._readers: dict[str, reportlab.lib.utils.ImageReader] = {}
		self._lock = threading.Lock()
		self.missing: set[str] = set()
		for name, source in (sources or {}).items():
			self._sources[normalize_asset_name(name)] = source

	@classmethod
	def from_directory(cls, directory: str | pathlib.Path | None) -> "AssetLibrary":
		"""
		Index the image files in a directory.
		"""
		sources: dict[str, bytes | pathlib.Path | str] = {}
		if directory is not None and pathlib.Path(directory).is_dir():
			for path in sorted(pathlib.Path(directory).iterdir()):
				if path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS:
					sources[path.name] = path
		return cls(sources)

	def lookup(self, reference: str) -> reportlab.lib.utils.ImageReader | None:
		"""
		Find the image for a reference.

		Args:
			reference: Image reference from a resolved element.

		Returns:
			ImageReader, or None when nothing matches or decoding fails.
		"""
		key = normalize_asset_name(reference)
		with self._lock:
			if key in self._readers:
				return self._readers[key]
			source = self._sources.get(key)
			if source is None:
				self.missing.add(reference)
				return None
			try:
				if isinstance(source, bytes):
					image = PIL.Image.open(io.BytesIO(source))
				else:
					image = PIL.Image.open(source)
				image.load()
			except (OSError, PIL.UnidentifiedImageError) as error:
				logger.warning("Could not load image %s: %s", reference, error)
				self.missing.add(reference)
				return None
			reader = reportlab.lib.utils.ImageReader(image)
			self._readers[key] = reader
			return reader


#============================================
def element_frame(
	pdf: reportlab.pdfgen.canvas.Canvas,
	element,
	page_height: float,
	origin: tuple[float, float],
) -> tuple[float, float]:
	"""
	Move the canvas into an element's local frame.

	After the call the element's top-left corner is at (0, 0), its box spans
	x in [0, width] and y in [-height, 0], and rotation is applied clockwise
	about that corner. Callers wrap this in saveState/restoreState.

	Args:
		pdf: ReportLab canvas.
		element: Element with a box in mm.
		page_height: Trim height of the page in mm.
		origin: Lower-left corner of the trim box in points.

	Returns:
		(width, height) of the element box in points.
	"""
	box = element.box
	pdf.translate(origin[0] + to_points(box.x), origin[1] + to_points(page_height - box.y))
	if element.rotation:
		pdf.rotate(-element.rotation)
	return (to_points(box.width), to_points(box.height))


#============================================
def clip_to_box(pdf: reportlab.pdfgen.canvas.Canvas, width: float, height: float) -> None:
	path = pdf.beginPath()
	path.rect(0, -height, width, height)
	pdf.clipPath(path, stroke=0, fill=0)


#============================================
def draw_error_placeholder(
	pdf: reportlab.pdfgen.canvas.Canvas,
	width: float,
	height: float,
	message: str,
) -> None:
	"""
	Draw a red framed error marker filling the element box.
	"""
	pdf.setStrokeColorRGB(*ERROR_COLOR)
	pdf.setFillColorRGB(*ERROR_COLOR)
	pdf.setLineWidth(1.0)
	pdf.rect(0, -height, width, height, stroke=1, fill=0)
	pdf.line(0, -height, width, 0)
	pdf.setFont(ERROR_FONT, ERROR_TEXT_SIZE)
	text_width = pdf.stringWidth(message, ERROR_FONT, ERROR_TEXT_SIZE)
	pdf.drawString((width - text_width) / 2.0, -height / 2.0 - ERROR_TEXT_SIZE / 3.0, message)


#============================================
def line_baseline(font_name: str, font_size: float, line_height: float) -> float:
	"""
	Distance from the top of a line box to its baseline.
	"""
	ascent, descent = reportlab.pdfbase.pdfmetrics.getAscentDescent(font_name, font_size)
	advance = font_size * line_height
	return (advance - (ascent - descent)) / 2.0 + ascent


#============================================
def draw_text(pdf: reportlab.pdfgen.canvas.Canvas, item: ResolvedText, width: float, height: float) -> None:
	"""
	Draw a resolved text, address block or sequence element.

	Args:
		pdf: ReportLab canvas in the element frame.
		item: Resolved text.
		width: Box width in points.
		height: Box height in points.
	"""
	style = item.element.style
	if item.clip:
		clip_to_box(pdf, width, height)

	top = 0.0
	indent = 0.0
	label_text = item.label.text.upper() if item.label is not None else ""
	if item.label is not None:
		pdf.setFillGray(FIELD_LABEL_GRAY)
		pdf.setFont(item.label_font_name, item.label_font_size)
		label_width = pdf.stringWidth(label_text + " ", item.label_font_name, item.label_font_size)
		if item.label.position == "above":
			baseline = line_baseline(item.label_font_name, item.label_font_size, style.line_height)
			pdf.drawString(0, -baseline, label_text)
			top = -(item.label_font_size * style.line_height + FIELD_LABEL_GAP)
		else:
			indent = label_width

	available_width = max(0.0, width - indent)
	available_height = height + top
	lines = mkp.typography.wrap_text(item.text, item.font_name, item.font_size, available_width)
	advance = item.font_size * style.line_height
	block_height = len(lines) * advance
	first_top = top - compute_align_offset(available_height, block_height, style.vertical_align)
	baseline = line_baseline(item.font_name, item.font_size, style.line_height)

	if item.label is not None and item.label.position == "inline":
		label_baseline = first_top - baseline
		pdf.drawString(0, label_baseline, label_text)

	color = parse_hex_color(style.color) or (0.0, 0.0, 0.0)
	pdf.setFillColorRGB(*color)
	pdf.setFont(item.font_name, item.font_size)
	for index, line in enumerate(lines):
		line_width = pdf.stringWidth(line, item.font_name, item.font_size)
		x = indent + compute_align_offset(available_width, line_width, style.align)
		y = first_top - index * advance - baseline
		pdf.drawString(x, y, line)


#============================================
def draw_glyph(pdf: reportlab.pdfgen.canvas.Canvas, item: ResolvedGlyph, width: float, height: float) -> None:
	"""
	Draw a barcode or QR glyph centered in its box, or an error marker.
	"""
	if item.glyph is None:
		message = "QR ERROR" if item.element.kind == "qrcode" else "BARCODE ERROR"
		draw_error_placeholder(pdf, width, height, message)
		return
	scale, offset_x, offset_y = mkp.barcodes.fit_glyph(item.glyph, width, height)
	color = parse_hex_color(item.element.color) or (0.0, 0.0, 0.0)
	pdf.setFillColorRGB(*color)
	for x, y, rect_width, rect_height in item.glyph.rects:
		pdf.rect(
			offset_x + x * scale,
			-height + offset_y + y * scale,
			rect_width * scale,
			rect_height * scale,
			stroke=0,
			fill=1,
		)


#============================================
def draw_image(
	pdf: reportlab.pdfgen.canvas.Canvas,
	item: ResolvedImage,
	width: float,
	height: float,
	assets: AssetLibrary,
) -> None:
	"""
	Draw an image using its fit mode.

	Args:
		pdf: ReportLab canvas in the element frame.
		item: Resolved image.
		width: Box width in points.
		height: Box height in points.
		assets: Asset library.
	"""
	reader = None
	if item.error is None:
		reader = assets.lookup(item.reference)
	if reader is None:
		draw_error_placeholder(pdf, width, height, "IMAGE MISSING")
		return

	image_width, image_height = reader.getSize()
	fit = item.element.fit
	if fit == "fill":
		draw_width, draw_height = width, height
	elif fit == "none":
		draw_width, draw_height = float(image_width), float(image_height)
	else:
		scale_x = width / image_width
		scale_y = height / image_height
		scale = max(scale_x, scale_y) if fit == "cover" else min(scale_x, scale_y)
		draw_width, draw_height = image_width * scale, image_height * scale

	if fit in ("cover", "none"):
		clip_to_box(pdf, width, height)
	pdf.setFillAlpha(item.element.opacity)
	pdf.drawImage(
		reader,
		(width - draw_width) / 2.0,
		-height + (height - draw_height) / 2.0,
		width=draw_width,
		height=draw_height,
		mask="auto",
		preserveAspectRatio=False,
	)


#============================================
def draw_shape(pdf: reportlab.pdfgen.canvas.Canvas, item: ResolvedShape, width: float, height: float) -> None:
	"""
	Draw a rectangle, ellipse, circle or line.
	"""
	element = item.element
	style = element.style
	fill = parse_hex_color(style.fill)
	stroke = parse_hex_color(style.stroke)
	if style.stroke_width <= 0:
		stroke = None
	if element.shape_type == "line" and stroke is None:
		stroke = fill or (0.0, 0.0, 0.0)
	if fill is None and stroke is None:
		return

	if fill is not None:
		pdf.setFillColorRGB(*fill)
		pdf.setFillAlpha(style.opacity)
	if stroke is not None:
		pdf.setStrokeColorRGB(*stroke)
		pdf.setStrokeAlpha(style.opacity)
		pdf.setLineWidth(to_points(style.stroke_width))
	do_fill = 1 if fill is not None else 0
	do_stroke = 1 if stroke is not None else 0

	if element.shape_type == "line":
		pdf.line(0, -height / 2.0, width, -height / 2.0)
	elif element.shape_type == "circle":
		diameter = min(width, height)
		center_x = width / 2.0
		center_y = -height / 2.0
		pdf.circle(center_x, center_y, diameter / 2.0, stroke=do_stroke, fill=do_fill)
	elif element.shape_type == "ellipse":
		pdf.ellipse(0, -height, width, 0, stroke=do_stroke, fill=do_fill)
	elif style.corner_radius > 0:
		radius = min(to_points(style.corner_radius), width / 2.0, height / 2.0)
		pdf.roundRect(0, -height, width, height, radius, stroke=do_stroke, fill=do_fill)
	else:
		pdf.rect(0, -height, width, height, stroke=do_stroke, fill=do_fill)


#============================================
def draw_resolved_page(
	pdf: reportlab.pdfgen.canvas.Canvas,
	resolved: ResolvedPage,
	assets: AssetLibrary,
	origin: tuple[float, float] = (0.0, 0.0),
) -> None:
	"""
	Draw every resolved element of a page in z-order.

	Args:
		pdf: ReportLab canvas positioned on the target page.
		resolved: Resolved page.
		assets: Asset library for image elements.
		origin: Lower-left corner of the trim box in points.
	"""
	page = resolved.page
	for item in resolved.elements:
		pdf.saveState()
		width, height = element_frame(pdf, item.element, page.height, origin)
		if isinstance(item, ResolvedText):
			draw_text(pdf, item, width, height)
		elif isinstance(item, ResolvedGlyph):
			draw_glyph(pdf, item, width, height)
		elif isinstance(item, ResolvedImage):
			draw_image(pdf, item, width, height, assets)
		else:
			draw_shape(pdf, item, width, height)
		pdf.restoreState()


#============================================
def draw_background(
	pdf: reportlab.pdfgen.canvas.Canvas,
	color: str | None,
	boxes: PageBoxes,
) -> None:
	"""
	Fill the bleed box with the page background color.
	"""
	rgb = parse_hex_color(color)
	if rgb is None:
		return
	x0, y0, x1, y1 = boxes.bleed
	pdf.setFillColorRGB(*rgb)
	pdf.rect(x0, y0, x1 - x0, y1 - y0, stroke=0, fill=1)


#============================================
def render_documents(
	documents: list[ResolvedDocument],
	options: PrintOptions,
	assets: AssetLibrary,
) -> tuple[bytes, list[PageBoxes]]:
	"""
	Render resolved documents into one multi-page PDF.

	Pages appear record by record, each record's pages in design order. Page
	size includes bleed, plus room for crop marks when requested.

	Args:
		documents: Resolved documents in record order.
		options: Print options.
		assets: Asset library.

	Returns:
		(pdf_bytes, page boxes in page order).
	"""
	buffer = io.BytesIO()
	pdf = reportlab.pdfgen.canvas.Canvas(buffer)
	pdf.setTitle(options.title)
	pdf.setCreator("mergekit-print")
	all_boxes: list[PageBoxes] = []
	for document in documents:
		for resolved in document.pages:
			page = resolved.page
			bleed = max(page.bleed, options.bleed)
			boxes = mkp.postprocess.compute_page_boxes(
				page.width, page.height, bleed, options.crop_marks
			)
			pdf.setPageSize((boxes.media_width, boxes.media_height))
			draw_background(pdf, page.background, boxes)
			draw_resolved_page(pdf, resolved, assets, boxes.origin)
			pdf.showPage()
			all_boxes.append(boxes)
	pdf.save()
	return buffer.getvalue(), all_boxes


#============================================
def render_tile_pdf(
	resolved: ResolvedPage,
	output_path: pathlib.Path,
	assets: AssetLibrary,
) -> None:
	"""
	Render one resolved page as a single-page tile PDF at trim size.

	Args:
		resolved: Resolved page.
		output_path: Output file path.
		assets: Asset library.
	"""
	page = resolved.page
	boxes = mkp.postprocess.compute_page_boxes(page.width, page.height)
	pdf = reportlab.pdfgen.canvas.Canvas(
		str(output_path),
		pagesize=(boxes.media_width, boxes.media_height),
	)
	draw_background(pdf, page.background, boxes)
	draw_resolved_page(pdf, resolved, assets)
	pdf.save()


#============================================
def draw_item_outlines(pdf: reportlab.pdfgen.canvas.Canvas, layout: LayoutConfig) -> None:
	"""
	Draw hairline outlines for every item slot on a sheet.
	"""
	sheet_height = to_points(layout.sheet_height)
	pdf.setLineWidth(OUTLINE_STROKE)
	pdf.setStrokeColorRGB(0.7, 0.7, 0.7)
	for slot in range(layout.items_per_sheet):
		x, y = mkp.layout.instance_position(slot, layout)
		pdf.rect(
			to_points(x),
			sheet_height - to_points(y + layout.item_height),
			to_points(layout.item_width),
			to_points(layout.item_height),
			stroke=1,
			fill=0,
		)


#============================================
def build_outline_overlay(layout: LayoutConfig) -> pypdf.PageObject:
	"""
	Build a sheet-sized overlay page with item outlines.
	"""
	buffer = io.BytesIO()
	pdf = reportlab.pdfgen.canvas.Canvas(
		buffer,
		pagesize=(to_points(layout.sheet_width), to_points(layout.sheet_height)),
	)
	draw_item_outlines(pdf, layout)
	pdf.save()
	buffer.seek(0)
	reader = pypdf.PdfReader(buffer)
	return reader.pages[0]


#============================================
def fit_tile(
	tile_width: float,
	tile_height: float,
	cell_width: float,
	cell_height: float,
) -> tuple[float, float, float]:
	"""
	Uniform scale and centering offset for a tile inside a sheet cell.

	Args:
		tile_width: Tile width in points.
		tile_height: Tile height in points.
		cell_width: Cell width in points.
		cell_height: Cell height in points.

	Returns:
		(scale, offset_x, offset_y) with offsets measured from the cell's
		bottom-left corner.
	"""
	scale = min(cell_width / tile_width, cell_height / tile_height)
	offset_x = (cell_width - tile_width * scale) / 2.0
	offset_y = (cell_height - tile_height * scale) / 2.0
	return scale, offset_x, offset_y


#============================================
def impose_tiles(
	tile_paths: list[pathlib.Path],
	layout: LayoutConfig,
	options: PrintOptions,
) -> tuple[bytes, int]:
	"""
	Place tile PDFs onto sheets.

	Args:
		tile_paths: Tile PDFs in instance order.
		layout: Layout configuration.
		options: Print options; include_partial and draw_outlines apply.

	Returns:
		(pdf_bytes, printed tile count).
	"""
	writer = pypdf.PdfWriter()
	writer.add_metadata({"/Title": options.title, "/Creator": "mergekit-print"})
	sheet_width = to_points(layout.sheet_width)
	sheet_height = to_points(layout.sheet_height)
	per_sheet = layout.items_per_sheet

	tiles_to_print = len(tile_paths)
	if not options.include_partial:
		tiles_to_print = (tiles_to_print // per_sheet) * per_sheet

	outline_page = None
	if options.draw_outlines:
		outline_page = build_outline_overlay(layout)

	item_width = to_points(layout.item_width)
	item_height = to_points(layout.item_height)
	for index in range(tiles_to_print):
		placement = mkp.layout.absolute_position(index, layout)
		if placement.slot == 0:
			writer.add_blank_page(width=sheet_width, height=sheet_height)
		sheet = writer.pages[-1]

		reader = pypdf.PdfReader(str(tile_paths[index]))
		tile_page = reader.pages[0]
		scale, offset_x, offset_y = fit_tile(
			float(tile_page.mediabox.width),
			float(tile_page.mediabox.height),
			item_width,
			item_height,
		)
		cell_x = to_points(placement.x) + offset_x
		cell_y = sheet_height - to_points(placement.y) - item_height + offset_y
		transform = pypdf.Transformation().scale(scale, scale).translate(cell_x, cell_y)
		sheet.merge_transformed_page(tile_page, transform)

	if outline_page is not None:
		for sheet in writer.pages:
			sheet.merge_page(outline_page)

	buffer = io.BytesIO()
	writer.write(buffer)
	return buffer.getvalue(), tiles_to_print
